"""
Container Writer - Persist rendered buffers as WAV or FLAC

Rendered buffers are raw little-endian int16 or float32 frames. They are
reshaped into numpy arrays and written with soundfile.
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import soundfile as sf

from .decoder import SampleContainer, SampleFormat

logger = logging.getLogger(__name__)

# soundfile subtype per (container, sample format)
SUBTYPES = {
    (SampleContainer.WAV, SampleFormat.INT16): 'PCM_16',
    (SampleContainer.WAV, SampleFormat.FLOAT32): 'FLOAT',
    (SampleContainer.FLAC, SampleFormat.INT16): 'PCM_16',
    (SampleContainer.FLAC, SampleFormat.FLOAT32): 'PCM_24',   # FLAC has no float subtype
}


def buffer_to_array(data: bytes, channels: int, sample_format: SampleFormat) -> np.ndarray:
    """
    Interpret raw rendered bytes as audio.

    Args:
        data: Interleaved little-endian samples
        channels: 1 (mono) or 2 (stereo)
        sample_format: Encoding of each sample

    Returns:
        1-D array for mono, (frames, channels) array otherwise
    """
    frame_bytes = channels * sample_format.bytes_per_sample
    usable = len(data) - (len(data) % frame_bytes)
    audio = np.frombuffer(data, dtype=sample_format.dtype, count=usable // sample_format.bytes_per_sample)
    if channels > 1:
        audio = audio.reshape(-1, channels)
    return audio


def is_silent(data: bytes) -> bool:
    """True when every byte of the rendered buffer is zero."""
    return not np.any(np.frombuffer(data, dtype=np.uint8))


def write_audio_file(path: Union[str, Path], data: bytes, sample_rate: int, channels: int,
                     sample_format: SampleFormat,
                     container: SampleContainer = SampleContainer.WAV) -> int:
    """
    Write a rendered buffer to disk.

    Args:
        path: Output file path (extension is not changed)
        data: Raw rendered bytes
        sample_rate: Sample rate in Hz
        channels: 1 or 2
        sample_format: Encoding of ``data``
        container: WAV or FLAC

    Returns:
        File size in bytes

    Raises:
        RuntimeError: If libsndfile fails to write the file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    audio = buffer_to_array(data, channels, sample_format)
    subtype = SUBTYPES[(container, sample_format)]
    sf.write(str(path), audio, sample_rate, subtype=subtype, format=container.soundfile_format)

    size = path.stat().st_size
    logger.debug(f"Wrote {path.name}: {len(audio)} frames, {subtype}")
    return size
