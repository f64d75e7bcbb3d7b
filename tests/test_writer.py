"""
Tests for the container writer (real soundfile round trips).
"""

import numpy as np
import pytest
import soundfile as sf

from stem_engine.decoder import SampleContainer, SampleFormat
from stem_engine.writer import buffer_to_array, is_silent, write_audio_file


def sine(frames, dtype, sample_rate=8000):
    t = np.arange(frames) / sample_rate
    wave = 0.5 * np.sin(2 * np.pi * 440 * t)
    if dtype == np.int16:
        return (wave * 32767).astype('<i2')
    return wave.astype('<f4')


class TestBufferToArray:

    def test_mono(self):
        data = sine(100, np.int16).tobytes()
        audio = buffer_to_array(data, 1, SampleFormat.INT16)
        assert audio.shape == (100,)

    def test_stereo_is_frames_by_channels(self):
        data = np.arange(8, dtype='<f4').tobytes()
        audio = buffer_to_array(data, 2, SampleFormat.FLOAT32)
        assert audio.shape == (4, 2)
        assert audio[1].tolist() == [2.0, 3.0]

    def test_ignores_incomplete_trailing_frame(self):
        data = np.arange(5, dtype='<i2').tobytes()
        assert buffer_to_array(data, 2, SampleFormat.INT16).shape == (2, 2)


def test_is_silent():
    assert is_silent(bytes(64))
    assert is_silent(b"")
    assert not is_silent(bytes(63) + b"\x01")


class TestWriteAudioFile:

    def test_wav_int16_round_trip(self, tmp_path):
        samples = sine(800, np.int16)
        path = tmp_path / "stem.wav"

        size = write_audio_file(path, samples.tobytes(), 8000, 1, SampleFormat.INT16)

        assert size == path.stat().st_size
        info = sf.info(str(path))
        assert info.subtype == 'PCM_16'
        assert info.channels == 1
        data, rate = sf.read(str(path), dtype='int16')
        assert rate == 8000
        np.testing.assert_array_equal(data, samples)

    def test_wav_float_stereo(self, tmp_path):
        samples = sine(1600, np.float32)
        path = tmp_path / "stereo.wav"

        write_audio_file(path, samples.tobytes(), 8000, 2, SampleFormat.FLOAT32)

        info = sf.info(str(path))
        assert info.subtype == 'FLOAT'
        assert info.channels == 2
        assert info.frames == 800

    @pytest.mark.parametrize("sample_format, subtype", [
        (SampleFormat.INT16, 'PCM_16'),
        (SampleFormat.FLOAT32, 'PCM_24'),
    ])
    def test_flac_subtypes(self, tmp_path, sample_format, subtype):
        dtype = np.int16 if sample_format is SampleFormat.INT16 else np.float32
        samples = sine(800, dtype)
        path = tmp_path / "stem.flac"

        write_audio_file(path, samples.tobytes(), 8000, 1, sample_format, SampleContainer.FLAC)

        info = sf.info(str(path))
        assert info.format == 'FLAC'
        assert info.subtype == subtype

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "a" / "b" / "stem.wav"
        write_audio_file(path, bytes(400), 8000, 1, SampleFormat.INT16)
        assert path.exists()
