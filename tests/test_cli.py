"""
Tests for the modstems command line.
"""

import json
import os

import pytest

from conftest import CORRUPT, FakeModuleLibrary
from stem_engine.cli import build_parser, config_from_args, main
from stem_engine.decoder import SampleContainer, SampleFormat
from stem_engine.logging_config import LOG_DIR, LOG_FILE, get_logger


@pytest.fixture
def library(monkeypatch):
    library = FakeModuleLibrary(channels=2, instruments=0, samples=2, duration=0.5)
    monkeypatch.setattr("stem_engine.song.default_decoder_factory", lambda: library.load)
    return library


@pytest.fixture
def songs(tmp_path):
    directory = tmp_path / "songs"
    directory.mkdir()
    (directory / "tune.mod").write_bytes(b"module")
    return directory


class TestConfigFromArgs:

    def test_defaults(self):
        config = config_from_args(build_parser().parse_args(["-i", "x"]))
        assert config.full_mix
        assert config.per_instrument
        assert config.per_channel is None
        assert config.channel_stems
        assert not config.channel_instruments
        assert config.sample_rate == 48000
        assert config.sample_format is SampleFormat.INT16
        assert config.container is SampleContainer.WAV

    def test_channels_replaces_instrument_stems(self):
        args = build_parser().parse_args([
            "-i", "x", "-o", "out", "--channels", "--no-full", "--stereo", "-f", "float",
            "--container", "flac", "--stereo-separation", "150", "-w", "3",
        ])
        config = config_from_args(args)
        assert config.channel_instruments
        assert not config.per_instrument
        assert not config.channel_stems
        assert not config.full_mix
        assert config.stereo_output
        assert config.sample_format is SampleFormat.FLOAT32
        assert config.container is SampleContainer.FLAC
        assert config.stereo_separation == 150
        assert config.max_workers == 3
        assert config.output_dir == "out"


class TestMain:

    @pytest.mark.parametrize("argv", [
        ["-i", "x", "-s", "7000"],
        ["-i", "x", "--stereo-separation", "300"],
        ["-i", "x", "-w", "0"],
        ["-i", "x", "-f", "int24"],
    ])
    def test_bad_arguments_exit_with_usage_error(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        assert exc_info.value.code == 2

    def test_missing_input(self, tmp_path, library):
        assert main(["-i", str(tmp_path / "missing")]) == 1

    def test_renders_directory(self, tmp_path, songs, library, capsys):
        out = tmp_path / "stems"

        code = main(["-i", str(songs), "-o", str(out), "-s", "8000", "-w", "1"])

        assert code == 0
        assert sorted(p.name for p in out.iterdir()) == [
            "tune.wav", "tune_0001_chan_full.wav", "tune_0002_chan_full.wav",
            "tune_full_chan_0000.wav", "tune_full_chan_0001.wav",
        ]
        assert "5 stems written" in capsys.readouterr().out

    def test_failed_file_sets_exit_code(self, tmp_path, songs, library):
        (songs / "broken.mod").write_bytes(CORRUPT)
        code = main(["-i", str(songs), "-o", str(tmp_path / "stems"), "-s", "8000"])
        assert code == 1
        assert (tmp_path / "stems" / "tune.wav").exists()

    def test_info_prints_json(self, songs, library, capsys):
        code = main(["-i", str(songs / "tune.mod"), "--info"])

        assert code == 0
        info = json.loads(capsys.readouterr().out)
        assert info["status"] == "loaded"
        assert info["channel_count"] == 2
        assert info["instrument_count"] == 2

    def test_no_per_channel(self, tmp_path, songs, library):
        out = tmp_path / "stems"
        assert main(["-i", str(songs), "-o", str(out), "-s", "8000", "--no-per-channel"]) == 0
        assert not list(out.glob("*_full_chan_*"))

    def test_info_exports_samples(self, tmp_path, songs, library, capsys):
        out = tmp_path / "samples"

        code = main(["-i", str(songs / "tune.mod"), "-o", str(out), "--info",
                     "--export-samples", "--sample-container", "flac"])

        assert code == 0
        assert sorted(p.name for p in out.iterdir()) == ["tune_sample_0001.flac", "tune_sample_0002.flac"]
        info = json.loads(capsys.readouterr().out)
        assert info["samples"].endswith("tune_sample_*.flac")

    def test_info_without_export_writes_nothing(self, tmp_path, songs, library):
        out = tmp_path / "samples"
        assert main(["-i", str(songs / "tune.mod"), "-o", str(out), "--info"]) == 0
        assert not out.exists()


class TestLogFile:

    def test_flag_alone_uses_default_log_file(self):
        args = build_parser().parse_args(["-i", "x", "--log-file"])
        assert args.log_file == LOG_FILE
        assert os.path.dirname(LOG_FILE) == LOG_DIR

    def test_explicit_path(self, tmp_path):
        args = build_parser().parse_args(["-i", "x", "--log-file", str(tmp_path / "run.log")])
        assert args.log_file == str(tmp_path / "run.log")

    def test_default_log_file_is_written(self, tmp_path, songs, library, monkeypatch):
        log_file = tmp_path / "logs" / "modstems.log"
        monkeypatch.setattr("stem_engine.cli.LOG_FILE", str(log_file))

        main(["-i", str(songs), "-o", str(tmp_path / "stems"), "-s", "8000", "--log-file"])

        for handler in get_logger().handlers:
            handler.flush()
        assert "Batch complete" in log_file.read_text(encoding="utf-8")
