"""
Chunked Renderer - Render one isolation target into a fixed-size buffer

Drives the decoder one second at a time, writing frames straight into a
caller-sized buffer. Rendering stops at end of song (the final partial
second is kept) or when the next full second no longer fits (that second
is dropped entirely, never truncated).
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import numpy as np

from .decoder import DecodeError, DecoderFactory, LoaderOptions, SampleFormat
from .mute import IsolationTarget, MuteMatrix, NO_ISOLATION, apply_mute_matrix, compute_mute_matrix
from .song import Song, open_song
from .utils import validate_sample_rate, validate_stereo_separation

logger = logging.getLogger(__name__)

# Headroom added to the reported duration when sizing output buffers
DEFAULT_PADDING_SECONDS = 5.0


@dataclass
class RenderConfig:
    """Configuration for rendering one stem."""
    sample_rate: int = 48000
    sample_format: SampleFormat = SampleFormat.INT16
    stereo_output: bool = False
    stereo_separation: Optional[int] = None   # Percent, None = decoder default
    target: IsolationTarget = field(default_factory=IsolationTarget.full_mix)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any parameter is out of range
        """
        valid, message = validate_sample_rate(self.sample_rate)
        if not valid:
            raise ValueError(message)
        if self.stereo_separation is not None:
            valid, message = validate_stereo_separation(self.stereo_separation)
            if not valid:
                raise ValueError(message)
        if not isinstance(self.sample_format, SampleFormat):
            raise ValueError(f"Invalid sample format: {self.sample_format!r}")

    @classmethod
    def from_params(cls, sample_rate: int, bytes_per_sample: int,
                    channel_to_play: int = NO_ISOLATION,
                    instrument_to_play: int = NO_ISOLATION,
                    stereo_separation: int = 100,
                    stereo_separation_enabled: bool = False,
                    stereo_output: bool = False) -> 'RenderConfig':
        """Build a config from flat render parameters (-1 = no isolation)."""
        return cls(
            sample_rate=sample_rate,
            sample_format=SampleFormat.from_bytes_per_sample(bytes_per_sample),
            stereo_output=stereo_output,
            stereo_separation=stereo_separation if stereo_separation_enabled else None,
            target=IsolationTarget.from_indices(channel_to_play, instrument_to_play),
        )

    def with_target(self, target: IsolationTarget) -> 'RenderConfig':
        return replace(self, target=target)

    @property
    def bytes_per_sample(self) -> int:
        return self.sample_format.bytes_per_sample

    @property
    def output_channels(self) -> int:
        return 2 if self.stereo_output else 1

    @property
    def bytes_per_frame(self) -> int:
        return self.output_channels * self.bytes_per_sample

    @property
    def chunk_frames(self) -> int:
        """Frames requested per decoder call (one second)."""
        return self.sample_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "sample_format": self.sample_format.value,
            "stereo_output": self.stereo_output,
            "stereo_separation": self.stereo_separation,
            "target": self.target.describe(),
        }


class AudioBuffer:
    """
    Fixed-capacity output region for rendered audio.

    Writes go through views handed out by view(); advance() commits them.
    Nothing is ever written past ``capacity``.
    """

    def __init__(self, capacity: int = 0, data: Optional[bytearray] = None):
        """
        Args:
            capacity: Size in bytes (ignored when ``data`` is given)
            data: Existing writable buffer to render into
        """
        self._data = data if data is not None else bytearray(capacity)
        self._used = 0

    @classmethod
    def for_duration(cls, duration_seconds: float, config: RenderConfig,
                     padding_seconds: float = DEFAULT_PADDING_SECONDS) -> 'AudioBuffer':
        """Size a buffer for a song of ``duration_seconds`` plus headroom."""
        seconds = int(max(duration_seconds, 0.0) + padding_seconds)
        return cls(seconds * config.sample_rate * config.bytes_per_frame)

    @property
    def capacity(self) -> int:
        return len(self._data)

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self.capacity - self._used

    def view(self, dtype: np.dtype, count: int) -> np.ndarray:
        """Writable array of ``count`` items starting at the write position."""
        dtype = np.dtype(dtype)
        if count * dtype.itemsize > self.remaining:
            raise ValueError(f"View of {count * dtype.itemsize} bytes exceeds "
                             f"remaining capacity {self.remaining}")
        return np.frombuffer(self._data, dtype=dtype, count=count, offset=self._used)

    def advance(self, nbytes: int) -> None:
        if not 0 <= nbytes <= self.remaining:
            raise ValueError(f"Cannot advance {nbytes} bytes ({self.remaining} remaining)")
        self._used += nbytes

    def reset(self) -> None:
        self._used = 0

    def getvalue(self) -> bytes:
        """Rendered bytes."""
        return bytes(self._data[:self._used])

    def __repr__(self) -> str:
        return f"AudioBuffer(used={self._used}, capacity={self.capacity})"


@dataclass
class RenderResult:
    """Result of rendering one target."""
    bytes_written: int = 0
    frames_rendered: int = 0
    chunks_read: int = 0
    end_of_stream: bool = False
    capacity_reached: bool = False
    error: Optional[str] = None
    buffer: Optional[AudioBuffer] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def data(self) -> bytes:
        return self.buffer.getvalue() if self.buffer is not None else b""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bytes_written": self.bytes_written,
            "frames_rendered": self.frames_rendered,
            "chunks_read": self.chunks_read,
            "end_of_stream": self.end_of_stream,
            "capacity_reached": self.capacity_reached,
            "error": self.error,
        }


class ChunkedRenderer:
    """Renders a Song one second at a time."""

    def render(self, song: Song, config: RenderConfig, mute_matrix: MuteMatrix,
               buffer: AudioBuffer) -> RenderResult:
        """
        Apply mute flags and render until end of song or full buffer.

        Args:
            song: Freshly opened song (its playback state is consumed)
            config: Render configuration
            mute_matrix: Flags computed for config.target
            buffer: Destination buffer

        Returns:
            RenderResult; bytes_written is frames x channels x bytes per sample

        Raises:
            DecodeError: If the decoder fails mid-render
        """
        decoder = song.decoder
        apply_mute_matrix(decoder, mute_matrix)
        if config.stereo_separation is not None:
            decoder.set_stereo_separation(config.stereo_separation)

        chunk_frames = config.chunk_frames
        chunk_samples = chunk_frames * config.output_channels
        chunk_bytes = chunk_frames * config.bytes_per_frame
        dtype = config.sample_format.dtype

        result = RenderResult(buffer=buffer)
        while True:
            if chunk_bytes > buffer.remaining:
                result.capacity_reached = True
                break

            out = buffer.view(dtype, chunk_samples)
            frames = decoder.read_frames(config.sample_rate, out, config.stereo_output)
            frames = max(0, min(frames, chunk_frames))
            result.chunks_read += 1

            buffer.advance(frames * config.bytes_per_frame)
            result.frames_rendered += frames

            if frames < chunk_frames:
                result.end_of_stream = True
                break

        result.bytes_written = result.frames_rendered * config.bytes_per_frame
        if result.capacity_reached:
            logger.debug(f"Buffer full after {result.chunks_read} chunks, remaining audio dropped")
        return result


def render_song(data: bytes, config: RenderConfig, buffer: Optional[AudioBuffer] = None,
                factory: DecoderFactory = None,
                renderer: Optional[ChunkedRenderer] = None) -> RenderResult:
    """
    Render one isolation target from raw module bytes.

    A fresh Song is opened for the call and closed afterwards, so mute
    state never leaks between targets.

    Args:
        data: Raw module file contents
        config: Render configuration, including the target
        buffer: Destination (sized from the song duration when omitted)
        factory: Decoder factory (defaults to libopenmpt)
        renderer: Renderer instance (defaults to ChunkedRenderer)

    Returns:
        RenderResult. On decode failure bytes_written is 0 and error is set.

    Raises:
        ValueError: If the target indices are out of range for the song
    """
    renderer = renderer or ChunkedRenderer()
    start_time = time.time()

    try:
        with open_song(data, LoaderOptions.render(), factory) as song:
            instrument_count = song.effective_instrument_count
            config.target.validate(song.channel_count, instrument_count)
            matrix = compute_mute_matrix(config.target, song.channel_count, instrument_count)
            if buffer is None:
                buffer = AudioBuffer.for_duration(song.duration_seconds, config)
            result = renderer.render(song, config, matrix, buffer)
    except DecodeError as e:
        logger.error(f"Render of {config.target.describe()} failed: {e}")
        if buffer is not None:
            buffer.reset()
        return RenderResult(error=str(e), buffer=buffer)

    logger.debug(f"Rendered {config.target.describe()}: {result.frames_rendered} frames, "
                 f"{result.bytes_written} bytes in {time.time() - start_time:.2f}s")
    return result


def render(output_buffer: bytearray, input_bytes: bytes, config: RenderConfig,
           factory: DecoderFactory = None) -> int:
    """
    Render into a caller-owned bytearray and return the bytes written.

    Returns 0 on any decode or parameter failure, which is indistinguishable
    from an empty render. Use render_song() when the difference matters.
    """
    buffer = AudioBuffer(data=output_buffer)
    try:
        result = render_song(input_bytes, config, buffer=buffer, factory=factory)
    except ValueError as e:
        logger.error(f"Invalid render request: {e}")
        return 0
    return result.bytes_written
