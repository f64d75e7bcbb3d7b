"""
Song Info Module - Load modules and report their shape

A Song wraps one live decoder instance. Songs are cheap to recreate and
are always opened through open_song() so the native handle is released
when the block exits, even on error.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from .decoder import (
    DecodeError, DecoderFactory, LoaderOptions, ModuleDecoder, SampleContainer,
    default_decoder_factory,
)
from .utils import format_duration

logger = logging.getLogger(__name__)


def effective_instrument_count(raw_instrument_count: int, sample_count: int) -> int:
    """Instrument count with the sample-count fallback for sample-only formats."""
    return raw_instrument_count if raw_instrument_count > 0 else sample_count


@dataclass
class SongInfo:
    """Shape of a module. All zero when the module could not be loaded."""
    channel_count: int = 0
    instrument_count: int = 0
    duration_seconds: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.channel_count == 0 or self.instrument_count == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "channel_count": self.channel_count,
            "instrument_count": self.instrument_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "duration_formatted": format_duration(self.duration_seconds),
        }


class LoadStatus(Enum):
    """Outcome of probing a module."""
    LOADED = "loaded"    # Decoded, has channels and instruments
    EMPTY = "empty"      # Decoded, but no channels or no instruments
    FAILED = "failed"    # Could not be decoded


@dataclass
class SongProbe:
    """Song info together with how it was obtained."""
    info: SongInfo
    status: LoadStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.LOADED

    def to_dict(self) -> Dict[str, Any]:
        return {**self.info.to_dict(), "status": self.status.value, "error": self.error}


class Song:
    """
    A decoded module.

    Owns its decoder exclusively. Mute flags and the play cursor live in
    the decoder and are never reset, so a Song serves exactly one render.
    """

    def __init__(self, decoder: ModuleDecoder):
        self._decoder = decoder
        self.channel_count = decoder.channel_count()
        self.raw_instrument_count = decoder.instrument_count()
        self.sample_count = decoder.sample_count()
        self.duration_seconds = decoder.duration_seconds()

    @property
    def decoder(self) -> ModuleDecoder:
        return self._decoder

    @property
    def effective_instrument_count(self) -> int:
        return effective_instrument_count(self.raw_instrument_count, self.sample_count)

    def info(self) -> SongInfo:
        return SongInfo(
            channel_count=self.channel_count,
            instrument_count=self.effective_instrument_count,
            duration_seconds=self.duration_seconds,
        )

    def close(self) -> None:
        self._decoder.close()

    def __repr__(self) -> str:
        return (f"Song(channels={self.channel_count}, "
                f"instruments={self.effective_instrument_count}, "
                f"duration={format_duration(self.duration_seconds)})")


@contextmanager
def open_song(data: bytes, options: LoaderOptions = None,
              factory: DecoderFactory = None) -> Iterator[Song]:
    """
    Decode ``data`` into a fresh Song for the duration of the block.

    Raises:
        DecodeError: If the module cannot be decoded
    """
    factory = factory or default_decoder_factory()
    decoder = factory(data, options or LoaderOptions.render())
    try:
        song = Song(decoder)
    except BaseException:
        decoder.close()
        raise
    try:
        yield song
    finally:
        song.close()


def probe_song(data: bytes, factory: DecoderFactory = None) -> SongProbe:
    """
    Load a module without samples or plugins and report its shape.

    Never raises for bad input; the status tells a decode failure apart
    from a module that decoded but is empty.
    """
    try:
        with open_song(data, LoaderOptions.info_only(), factory) as song:
            info = song.info()
    except DecodeError as e:
        logger.warning(f"Could not decode module: {e}")
        return SongProbe(info=SongInfo(), status=LoadStatus.FAILED, error=str(e))

    status = LoadStatus.EMPTY if info.is_empty else LoadStatus.LOADED
    logger.debug(f"Loaded module info: {info.to_dict()} ({status.value})")
    return SongProbe(info=info, status=status)


def get_song_info(data: bytes, output_stem: Optional[str] = None,
                  sample_container: Optional[SampleContainer] = None,
                  factory: DecoderFactory = None) -> SongInfo:
    """
    Report channel count, effective instrument count and duration.

    Returns a zeroed SongInfo when the module cannot be decoded, which is
    indistinguishable from an empty module. Use probe_song() when the
    difference matters.

    Args:
        data: Raw module file contents
        output_stem: When given, also export every sample next to this stem
        sample_container: Container for exported samples (defaults to WAV)
        factory: Decoder factory (defaults to libopenmpt)

    Returns:
        SongInfo
    """
    probe = probe_song(data, factory)

    if output_stem is not None and probe.status is not LoadStatus.FAILED:
        from .samples import SampleExporter

        exporter = SampleExporter(sample_container or SampleContainer.WAV, factory=factory)
        exporter.export_all(data, output_stem)

    return probe.info
