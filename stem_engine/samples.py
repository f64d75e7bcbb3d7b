"""
Sample Exporter - Write every sample of a module to its own file

Each sample is exported from a freshly loaded decoder, because triggering
a sample changes mute flags and playback position.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .decoder import (
    DecodeError, DecoderFactory, LoaderOptions, SampleContainer, SampleExportError,
)
from .song import open_song

logger = logging.getLogger(__name__)


def sample_filename(output_stem: Union[str, Path], index: int,
                    container: SampleContainer) -> Path:
    """``<stem>_sample_<NNNN>.<ext>`` for a 1-based sample index."""
    output_stem = Path(output_stem)
    return output_stem.with_name(f"{output_stem.name}_sample_{index:04d}.{container.extension}")


@dataclass
class SampleExportReport:
    """Outcome of exporting all samples of one module."""
    sample_count: int = 0
    written: List[Path] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "written": [str(p) for p in self.written],
            "failures": [{"index": i, "error": e} for i, e in self.failures],
            "error": self.error,
        }


class SampleExporter:
    """
    Exports each sample waveform to ``<stem>_sample_<NNNN>.<ext>``.

    A failing sample is logged and recorded; the remaining samples are
    still exported.
    """

    def __init__(self, container: SampleContainer = SampleContainer.WAV,
                 factory: DecoderFactory = None,
                 options: LoaderOptions = None):
        """
        Args:
            container: Container for written files
            factory: Decoder factory (defaults to libopenmpt)
            options: Loader options (samples must be loaded)
        """
        self.container = container
        self.factory = factory
        self.options = options or LoaderOptions.render()

    def export_sample(self, data: bytes, index: int, output_stem: Union[str, Path]) -> Path:
        """
        Export one sample.

        Raises:
            SampleExportError: If the sample cannot be encoded or written
        """
        path = sample_filename(output_stem, index, self.container)
        try:
            with open_song(data, self.options, self.factory) as song:
                encoded = song.decoder.export_sample(index, self.container)
        except DecodeError as e:
            raise SampleExportError(f"Sample {index}: {e}") from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(encoded)
        except OSError as e:
            raise SampleExportError(f"Cannot write {path}: {e}") from e
        return path

    def export_all(self, data: bytes, output_stem: Union[str, Path]) -> SampleExportReport:
        """
        Export samples 1..sample_count.

        Args:
            data: Raw module file contents
            output_stem: Path prefix for written files

        Returns:
            SampleExportReport
        """
        report = SampleExportReport()
        try:
            with open_song(data, LoaderOptions.info_only(), self.factory) as song:
                report.sample_count = song.sample_count
        except DecodeError as e:
            logger.error(f"Cannot export samples for {output_stem}: {e}")
            report.error = str(e)
            return report

        for index in range(1, report.sample_count + 1):
            try:
                report.written.append(self.export_sample(data, index, output_stem))
            except SampleExportError as e:
                logger.error(f"Sample export failed: {e}")
                report.failures.append((index, str(e)))

        logger.info(f"Exported {len(report.written)}/{report.sample_count} samples "
                    f"for {Path(output_stem).name}")
        return report
