"""
Decoder Interface - Contract between the stem engine and a module decoder

The stem engine never parses tracker formats itself. Everything it needs
from a decoder (counts, duration, mute flags, stereo separation, chunked
frame generation and per-sample export) is described by ModuleDecoder.
The production implementation is OpenMPTDecoder in openmpt.py.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

import numpy as np

logger = logging.getLogger(__name__)


# === Errors ===

class StemEngineError(Exception):
    """Base class for stem engine errors."""


class DecodeError(StemEngineError):
    """Module data is malformed, unsupported or could not be decoded."""


class DecoderUnavailableError(DecodeError):
    """The native decoder library could not be located or loaded."""


class SampleExportError(StemEngineError):
    """A single sample asset could not be exported."""


# === Formats ===

class SampleFormat(Enum):
    """Sample encoding of rendered audio."""
    INT16 = "int16"      # 16-bit signed integer PCM
    FLOAT32 = "float"    # 32-bit IEEE float

    @property
    def bytes_per_sample(self) -> int:
        return 2 if self is SampleFormat.INT16 else 4

    @property
    def dtype(self) -> np.dtype:
        """Little-endian numpy dtype used for buffers of this format."""
        return np.dtype('<i2') if self is SampleFormat.INT16 else np.dtype('<f4')

    @classmethod
    def from_bytes_per_sample(cls, bytes_per_sample: int) -> 'SampleFormat':
        if bytes_per_sample == 2:
            return cls.INT16
        if bytes_per_sample == 4:
            return cls.FLOAT32
        raise ValueError(f"Unsupported bytes per sample: {bytes_per_sample} (expected 2 or 4)")


class SampleContainer(Enum):
    """Audio container used for written files."""
    WAV = "wav"
    FLAC = "flac"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def soundfile_format(self) -> str:
        return self.value.upper()


# === Loader options ===

@dataclass(frozen=True)
class LoaderOptions:
    """Options recognised when loading a module."""
    skip_samples: bool = False
    skip_plugins: bool = False

    @classmethod
    def info_only(cls) -> 'LoaderOptions':
        """Fast load for metadata queries (no sample data, no plugins)."""
        return cls(skip_samples=True, skip_plugins=True)

    @classmethod
    def render(cls) -> 'LoaderOptions':
        """Full load for rendering and sample export."""
        return cls(skip_samples=False, skip_plugins=True)

    def to_ctls(self) -> Dict[str, str]:
        """Map to libopenmpt initial ctl keys."""
        return {
            "load.skip_samples": "1" if self.skip_samples else "0",
            "load.skip_plugins": "1" if self.skip_plugins else "0",
        }


# === Decoder contract ===

class ModuleDecoder(ABC):
    """
    A loaded module with live playback state.

    Mute flags and the play cursor are mutated in place and are never reset
    by the decoder itself, so an instance must not be shared between
    isolation targets or threads.
    """

    @abstractmethod
    def channel_count(self) -> int:
        """Number of pattern channels."""

    @abstractmethod
    def instrument_count(self) -> int:
        """Number of instruments (0 for sample-only formats such as MOD)."""

    @abstractmethod
    def sample_count(self) -> int:
        """Number of samples."""

    @abstractmethod
    def duration_seconds(self) -> float:
        """Estimated song duration."""

    @abstractmethod
    def set_channel_muted(self, index: int, muted: bool) -> None:
        pass

    @abstractmethod
    def set_instrument_muted(self, index: int, muted: bool) -> None:
        pass

    @abstractmethod
    def set_stereo_separation(self, percent: int) -> None:
        pass

    @abstractmethod
    def read_frames(self, sample_rate: int, out: np.ndarray, stereo: bool) -> int:
        """
        Render audio into ``out``.

        Args:
            sample_rate: Output sample rate in Hz
            out: 1-D int16 or float32 array; interleaved L/R when stereo
            stereo: Render interleaved stereo instead of mono

        Returns:
            Number of frames produced. Fewer than requested means the
            end of the song was reached.
        """

    @abstractmethod
    def export_sample(self, index: int, container: SampleContainer) -> bytes:
        """
        Encode the waveform of sample ``index`` (1-based).

        Raises:
            SampleExportError: If the sample cannot be exported
        """

    def close(self) -> None:
        """Release native resources. Safe to call more than once."""

    def __enter__(self) -> 'ModuleDecoder':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


DecoderFactory = Callable[[bytes, LoaderOptions], ModuleDecoder]


def default_decoder_factory() -> DecoderFactory:
    """Return the libopenmpt-backed factory."""
    from .openmpt import OpenMPTDecoder
    return OpenMPTDecoder.load
