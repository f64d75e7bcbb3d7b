"""
Batch Orchestrator - Render stems for many module files

For every input file: read the song info, pick the isolation targets the
run asks for, render each one from a fresh Song into a fresh buffer and
write it out. Targets run on a thread pool; a failing target or file is
recorded and the batch carries on.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from tqdm import tqdm

from .decoder import DecoderFactory, SampleContainer, SampleFormat
from .mute import IsolationTarget, TargetKind
from .renderer import DEFAULT_PADDING_SECONDS, AudioBuffer, RenderConfig, render_song
from .samples import SampleExporter, SampleExportReport
from .song import LoadStatus, SongInfo, probe_song
from .utils import format_duration, validate_sample_rate, validate_stereo_separation
from .writer import is_silent, write_audio_file

logger = logging.getLogger(__name__)

NUM_CORES = os.cpu_count() or 4


@dataclass
class BatchConfig:
    """Configuration for a batch run."""
    # Output
    output_dir: str = "."
    container: SampleContainer = SampleContainer.WAV

    # Render settings
    sample_rate: int = 48000
    sample_format: SampleFormat = SampleFormat.INT16
    stereo_output: bool = False
    stereo_separation: Optional[int] = None
    padding_seconds: float = DEFAULT_PADDING_SECONDS

    # Target selection
    full_mix: bool = True
    per_channel: Optional[bool] = None  # None: follow per_instrument
    per_instrument: bool = True
    channel_instruments: bool = False   # One stem per instrument on each channel

    # Sample export
    export_samples: bool = False
    sample_container: SampleContainer = SampleContainer.WAV

    # Behaviour
    skip_silent: bool = True
    max_workers: Optional[int] = None
    progress: bool = False

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any setting is invalid
        """
        valid, message = validate_sample_rate(self.sample_rate)
        if not valid:
            raise ValueError(message)
        if self.stereo_separation is not None:
            valid, message = validate_stereo_separation(self.stereo_separation)
            if not valid:
                raise ValueError(message)
        if self.padding_seconds < 0:
            raise ValueError(f"Padding must be non-negative, got {self.padding_seconds}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")

    @property
    def workers(self) -> int:
        return self.max_workers or NUM_CORES

    @property
    def channel_stems(self) -> bool:
        """Whether one stem per channel is rendered."""
        return self.per_instrument if self.per_channel is None else self.per_channel

    def render_config(self, target: IsolationTarget) -> RenderConfig:
        return RenderConfig(
            sample_rate=self.sample_rate,
            sample_format=self.sample_format,
            stereo_output=self.stereo_output,
            stereo_separation=self.stereo_separation,
            target=target,
        )


# === Target selection and naming ===

def enumerate_targets(config: BatchConfig, channel_count: int,
                      instrument_count: int) -> List[IsolationTarget]:
    """
    List the targets to render for a song, in a stable order.

    Args:
        config: Batch configuration
        channel_count: Song channel count
        instrument_count: Effective instrument count

    Returns:
        Full mix first, then channels, instruments and instrument/channel pairs
    """
    targets: List[IsolationTarget] = []
    if config.full_mix:
        targets.append(IsolationTarget.full_mix())
    if config.channel_stems:
        targets.extend(IsolationTarget.for_channel(c) for c in range(channel_count))
    if config.per_instrument:
        targets.extend(IsolationTarget.for_instrument(i) for i in range(instrument_count))
    if config.channel_instruments:
        targets.extend(
            IsolationTarget.for_channel_instrument(c, i)
            for i in range(instrument_count)
            for c in range(channel_count)
        )
    return targets


def target_filename(stem: str, target: IsolationTarget, container: SampleContainer) -> str:
    """
    Deterministic output name for a target.

    Instruments are numbered from 1 and channels from 0:
    ``song.wav``, ``song_0003_chan_full.wav``, ``song_full_chan_0002.wav``,
    ``song_0003_chan_0002.wav``.
    """
    ext = container.extension
    if target.kind is TargetKind.FULL_MIX:
        return f"{stem}.{ext}"
    if target.kind is TargetKind.INSTRUMENT:
        return f"{stem}_{target.instrument + 1:04d}_chan_full.{ext}"
    if target.kind is TargetKind.CHANNEL:
        return f"{stem}_full_chan_{target.channel:04d}.{ext}"
    return f"{stem}_{target.instrument + 1:04d}_chan_{target.channel:04d}.{ext}"


def collect_input_files(path: Union[str, Path], recursive: bool = False) -> List[Path]:
    """
    Expand an input path into the files to process.

    A file yields itself; a directory yields its files (recursively when
    asked) in sorted order; a missing path yields nothing.
    """
    path = Path(path)
    if not path.exists():
        logger.info(f'Path/File "{path}" doesn\'t exist. No file(s) will be processed.')
        return []
    if path.is_file():
        return [path]

    entries = path.rglob("*") if recursive else path.iterdir()
    return sorted(p for p in entries if p.is_file())


# === Reports ===

class TargetStatus(Enum):
    WRITTEN = "written"
    SILENT = "silent"      # Rendered but all-zero, not written
    FAILED = "failed"


class FileStatus(Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"    # No channels, instruments or duration
    FAILED = "failed"


@dataclass
class TargetResult:
    """Outcome of one stem."""
    target: IsolationTarget
    status: TargetStatus
    output_path: Optional[str] = None
    bytes_written: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.describe(),
            "status": self.status.value,
            "output_path": self.output_path,
            "bytes_written": self.bytes_written,
            "error": self.error,
        }


@dataclass
class FileReport:
    """Outcome of one input file."""
    input_path: str
    status: FileStatus = FileStatus.PROCESSED
    info: SongInfo = field(default_factory=SongInfo)
    targets: List[TargetResult] = field(default_factory=list)
    samples: Optional[SampleExportReport] = None
    error: Optional[str] = None
    processing_time: float = 0.0

    @property
    def failed_targets(self) -> List[TargetResult]:
        return [t for t in self.targets if t.status is TargetStatus.FAILED]

    @property
    def written(self) -> List[TargetResult]:
        return [t for t in self.targets if t.status is TargetStatus.WRITTEN]

    @property
    def ok(self) -> bool:
        samples_ok = self.samples is None or self.samples.ok
        return self.status is not FileStatus.FAILED and not self.failed_targets and samples_ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_path": self.input_path,
            "status": self.status.value,
            "info": self.info.to_dict(),
            "targets": [t.to_dict() for t in self.targets],
            "samples": self.samples.to_dict() if self.samples else None,
            "error": self.error,
            "processing_time": f"{self.processing_time:.1f}s",
        }


@dataclass
class BatchReport:
    """Outcome of a batch run."""
    files: List[FileReport] = field(default_factory=list)

    @property
    def stems_written(self) -> int:
        return sum(len(f.written) for f in self.files)

    @property
    def failures(self) -> int:
        return sum(0 if f.ok else 1 for f in self.files)

    @property
    def ok(self) -> bool:
        return self.failures == 0

    def count(self, status: FileStatus) -> int:
        return sum(1 for f in self.files if f.status is status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "summary": {
                "processed": self.count(FileStatus.PROCESSED),
                "skipped": self.count(FileStatus.SKIPPED),
                "failed": self.count(FileStatus.FAILED),
                "stems_written": self.stems_written,
                "files_with_failures": self.failures,
            },
        }


# === Orchestrator ===

class BatchOrchestrator:
    """
    Renders stems for a list of module files.

    Handles:
    - Skipping files with no channels, instruments or duration
    - Optional per-file sample export
    - Parallel rendering of targets, one fresh Song per target
    - Writing non-silent stems with deterministic names
    - Failure isolation per target and per file
    """

    def __init__(self, config: BatchConfig = None, factory: DecoderFactory = None):
        """
        Args:
            config: Batch configuration (uses defaults if None)
            factory: Decoder factory (defaults to libopenmpt)
        """
        self.config = config or BatchConfig()
        self.config.validate()
        self.factory = factory

        logger.info(f"Initialized BatchOrchestrator: rate={self.config.sample_rate} Hz, "
                    f"format={self.config.sample_format.value}, "
                    f"{'stereo' if self.config.stereo_output else 'mono'}, "
                    f"container={self.config.container.value}, workers={self.config.workers}")

    def run_path(self, path: Union[str, Path], recursive: bool = False) -> BatchReport:
        """Process a file or directory."""
        return self.run(collect_input_files(path, recursive))

    def run(self, inputs: Iterable[Union[str, Path]]) -> BatchReport:
        """
        Process every input file.

        Returns:
            BatchReport with one FileReport per input
        """
        start_time = time.time()
        report = BatchReport()
        for path in inputs:
            report.files.append(self.process_file(path))

        logger.info(f"✅ Batch complete in {time.time() - start_time:.1f}s: "
                    f"{report.count(FileStatus.PROCESSED)} processed, "
                    f"{report.count(FileStatus.SKIPPED)} skipped, "
                    f"{report.count(FileStatus.FAILED)} failed, "
                    f"{report.stems_written} stems written")
        return report

    def process_file(self, path: Union[str, Path]) -> FileReport:
        """Render all targets of one file. Never raises."""
        path = Path(path)
        file_report = FileReport(input_path=str(path))
        start_time = time.time()

        try:
            self._process_file(path, file_report)
        except Exception as e:
            logger.error(f"❌ Failed to process {path}: {e}")
            file_report.status = FileStatus.FAILED
            file_report.error = str(e)

        file_report.processing_time = time.time() - start_time
        return file_report

    def _process_file(self, path: Path, file_report: FileReport) -> None:
        data = path.read_bytes()
        logger.info(f"Processing file {path}")

        probe = probe_song(data, self.factory)
        info = probe.info
        file_report.info = info

        if probe.status is LoadStatus.FAILED:
            file_report.status = FileStatus.FAILED
            file_report.error = probe.error
            logger.error(f"Song {path} could not be decoded: {probe.error}")
            return
        if info.is_empty:
            file_report.status = FileStatus.SKIPPED
            file_report.error = "no channels or instruments"
            logger.error(f"Song {path} doesn't contain any channels or instruments so is being skipped!")
            return
        if info.duration_seconds <= 0.0:
            file_report.status = FileStatus.SKIPPED
            file_report.error = "no duration"
            logger.error(f"Song {path} doesn't have a duration. Skipping")
            return

        logger.info(f"  {info.channel_count} channels, {info.instrument_count} instruments, "
                    f"{format_duration(info.duration_seconds)}")

        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        if self.config.export_samples:
            exporter = SampleExporter(self.config.sample_container, factory=self.factory)
            file_report.samples = exporter.export_all(data, output_dir / path.stem)

        targets = enumerate_targets(self.config, info.channel_count, info.instrument_count)
        file_report.targets = self._render_targets(data, path.stem, info, targets)
        file_report.status = FileStatus.PROCESSED

        logger.info(f"  {len(file_report.written)}/{len(targets)} stems written, "
                    f"{len(file_report.failed_targets)} failed")

    def _render_targets(self, data: bytes, stem: str, info: SongInfo,
                        targets: List[IsolationTarget]) -> List[TargetResult]:
        results: List[Optional[TargetResult]] = [None] * len(targets)

        with tqdm(total=len(targets), desc=stem, unit="stem",
                  disable=not self.config.progress, leave=False) as bar:
            with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
                futures = {
                    executor.submit(self.render_target, data, stem, info, target): index
                    for index, target in enumerate(targets)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    bar.update(1)

        return results

    def render_target(self, data: bytes, stem: str, info: SongInfo,
                      target: IsolationTarget) -> TargetResult:
        """Render and write one stem. Never raises."""
        output_path = Path(self.config.output_dir) / target_filename(stem, target, self.config.container)

        try:
            config = self.config.render_config(target)
            buffer = AudioBuffer.for_duration(info.duration_seconds, config, self.config.padding_seconds)
            result = render_song(data, config, buffer=buffer, factory=self.factory)
            if not result.ok:
                return TargetResult(target, TargetStatus.FAILED, error=result.error)

            payload = result.data
            if self.config.skip_silent and is_silent(payload):
                logger.debug(f"Skipping silent stem {output_path.name}")
                return TargetResult(target, TargetStatus.SILENT)

            write_audio_file(output_path, payload, config.sample_rate, config.output_channels,
                             config.sample_format, self.config.container)
            return TargetResult(target, TargetStatus.WRITTEN, output_path=str(output_path),
                                bytes_written=result.bytes_written)
        except Exception as e:
            logger.error(f"Unable to render {target.describe()} to {output_path}: {e}")
            return TargetResult(target, TargetStatus.FAILED, error=str(e))

    def __repr__(self) -> str:
        return (f"BatchOrchestrator(output_dir={self.config.output_dir}, "
                f"container={self.config.container.value})")
