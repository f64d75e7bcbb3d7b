"""
Command Line Interface - Extract stems from tracker modules

Usage:
  modstems -i songs/ -o stems/ --recursive --stereo --format float
  modstems -i song.xm -o stems/ --channels --container flac
  modstems -i song.mod --info
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .batch import NUM_CORES, BatchConfig, BatchOrchestrator, collect_input_files
from .decoder import SampleContainer, SampleFormat
from .logging_config import LOG_FILE, setup_logging
from .song import get_song_info, probe_song
from .utils import format_file_size, validate_sample_rate, validate_stereo_separation

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modstems",
        description="Render per-channel and per-instrument stems from tracker modules",
    )
    parser.add_argument("-i", "--input", required=True,
                        help="Input file or directory of files supported by libopenmpt")
    parser.add_argument("-o", "--output", default=".",
                        help="Output directory for the generated files (default: .)")
    parser.add_argument("-r", "--recursive", action="store_true",
                        help="Recurse into sub-directories when input is a directory")
    parser.add_argument("--full", action=argparse.BooleanOptionalAction, default=True,
                        help="Render the whole song as is (default: on)")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar per file")
    parser.add_argument("-s", "--sample-rate", type=int, default=48000,
                        help="Output sample rate in [8000, 192000] (default: 48000)")
    parser.add_argument("--stereo", action="store_true",
                        help="Render stereo files (mono is default)")
    parser.add_argument("-c", "--channels", action="store_true",
                        help="Render each instrument on each channel instead of one file per instrument")
    parser.add_argument("--per-channel", action=argparse.BooleanOptionalAction, default=None,
                        help="Render one file per channel with all instruments "
                             "(default: on whenever instrument stems are rendered)")
    parser.add_argument("--no-instruments", action="store_true",
                        help="Do not render one file per instrument")
    parser.add_argument("-f", "--format", choices=[f.value for f in SampleFormat],
                        default=SampleFormat.INT16.value, help="Sample depth (default: int16)")
    parser.add_argument("--stereo-separation", type=int, default=None, metavar="PERCENT",
                        help="Stereo separation in percent, 0-200 (default: decoder default)")
    parser.add_argument("--container", choices=[c.value for c in SampleContainer],
                        default=SampleContainer.WAV.value, help="Stem file container (default: wav)")
    parser.add_argument("--export-samples", action="store_true",
                        help="Also write each sample to <song>_sample_NNNN.<ext>")
    parser.add_argument("--sample-container", choices=[c.value for c in SampleContainer],
                        default=SampleContainer.WAV.value,
                        help="Container for exported samples (default: wav)")
    parser.add_argument("-w", "--workers", type=int, default=None,
                        help=f"Parallel render workers (default: {NUM_CORES})")
    parser.add_argument("--info", action="store_true",
                        help="Print song info as JSON and exit (with --export-samples, also export samples)")
    parser.add_argument("--log-file", nargs="?", const=LOG_FILE, default=None, metavar="PATH",
                        help=f"Also write logs to PATH (default when given without a path: {LOG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    valid, message = validate_sample_rate(args.sample_rate)
    if not valid:
        parser.error(message)
    if args.stereo_separation is not None:
        valid, message = validate_stereo_separation(args.stereo_separation)
        if not valid:
            parser.error(message)
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")


def config_from_args(args: argparse.Namespace) -> BatchConfig:
    return BatchConfig(
        output_dir=args.output,
        container=SampleContainer(args.container),
        sample_rate=args.sample_rate,
        sample_format=SampleFormat(args.format),
        stereo_output=args.stereo,
        stereo_separation=args.stereo_separation,
        full_mix=args.full,
        per_channel=args.per_channel,
        per_instrument=not args.channels and not args.no_instruments,
        channel_instruments=args.channels,
        export_samples=args.export_samples,
        sample_container=SampleContainer(args.sample_container),
        max_workers=args.workers,
        progress=args.progress,
    )


def print_info(paths, sample_dir: Optional[str] = None,
               sample_container: SampleContainer = SampleContainer.WAV) -> int:
    """
    Print one JSON record per file.

    Args:
        paths: Module files
        sample_dir: When set, samples are exported to <sample_dir>/<song>_sample_NNNN.<ext>
        sample_container: Container for exported samples

    Returns:
        Exit status (1 if any file failed to load)
    """
    failures = 0
    for path in paths:
        data = path.read_bytes()
        probe = probe_song(data)
        failures += 0 if probe.ok else 1
        record = {"file": str(path), **probe.to_dict()}
        if sample_dir is not None:
            output_stem = Path(sample_dir) / path.stem
            get_song_info(data, output_stem=str(output_stem), sample_container=sample_container)
            record["samples"] = str(output_stem) + "_sample_*." + sample_container.extension
        print(json.dumps(record, indent=2))
    return 1 if failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _validate_args(parser, args)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    files = collect_input_files(args.input, args.recursive)
    if not files:
        return 1

    if args.info:
        return print_info(files, args.output if args.export_samples else None,
                          SampleContainer(args.sample_container))

    orchestrator = BatchOrchestrator(config_from_args(args))
    report = orchestrator.run(files)

    total_bytes = sum(t.bytes_written for f in report.files for t in f.written)
    print(f"{report.stems_written} stems written to {args.output} ({format_file_size(total_bytes)} of audio)")
    for file_report in report.files:
        if not file_report.ok:
            print(f"  ⚠️ {file_report.input_path}: {file_report.status.value}"
                  f"{' - ' + file_report.error if file_report.error else ''}"
                  f", {len(file_report.failed_targets)} failed stems")

    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
