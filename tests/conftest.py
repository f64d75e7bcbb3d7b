"""
Shared fixtures: an in-memory ModuleDecoder so tests never need libopenmpt.
"""

import struct
import sys
import os
from typing import Iterable, List, Optional

import numpy as np
import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stem_engine.decoder import (
    DecodeError, LoaderOptions, ModuleDecoder, SampleContainer, SampleExportError,
)
from stem_engine.logging_config import get_logger

CORRUPT = b"not a module"


class FakeDecoder(ModuleDecoder):
    """
    Deterministic stand-in for a decoded module.

    Produces a constant signal while at least one audible channel in
    ``active_channels`` and one audible instrument in ``active_instruments``
    remain unmuted, silence otherwise.
    """

    def __init__(self, channels: int = 4, instruments: int = 0, samples: int = 8,
                 duration: float = 3.35, active_channels: Optional[Iterable[int]] = None,
                 active_instruments: Optional[Iterable[int]] = None,
                 fail_on_read: bool = False, failing_samples: Iterable[int] = ()):
        self.channels = channels
        self.instruments = instruments
        self.samples = samples
        self.duration = duration
        self.active_channels = set(range(channels) if active_channels is None else active_channels)
        effective = instruments or samples
        self.active_instruments = set(range(effective) if active_instruments is None else active_instruments)
        self.fail_on_read = fail_on_read
        self.failing_samples = set(failing_samples)

        self.channel_mutes = {}
        self.instrument_mutes = {}
        self.separation = None
        self.frames_played = 0
        self.read_calls: List[int] = []
        self.exported: List[int] = []
        self.closed = False

    def channel_count(self):
        return self.channels

    def instrument_count(self):
        return self.instruments

    def sample_count(self):
        return self.samples

    def duration_seconds(self):
        return self.duration

    def set_channel_muted(self, index, muted):
        self.channel_mutes[index] = muted

    def set_instrument_muted(self, index, muted):
        self.instrument_mutes[index] = muted

    def set_stereo_separation(self, percent):
        self.separation = percent

    def _audible(self) -> bool:
        channels = any(not self.channel_mutes.get(c, False) for c in self.active_channels)
        instruments = any(not self.instrument_mutes.get(i, False) for i in self.active_instruments)
        return channels and instruments

    def read_frames(self, sample_rate, out, stereo):
        if self.fail_on_read:
            raise DecodeError("decoder crashed")
        requested = out.size // 2 if stereo else out.size
        self.read_calls.append(requested)

        total = int(round(self.duration * sample_rate))
        frames = max(0, min(requested, total - self.frames_played))
        self.frames_played += frames

        values = frames * (2 if stereo else 1)
        level = 8192 if out.dtype == np.int16 else 0.25
        out[:values] = level if self._audible() else 0
        return frames

    def export_sample(self, index, container):
        if self.exported:
            raise AssertionError("decoder reused for a second sample export")
        self.exported.append(index)
        if index in self.failing_samples:
            raise SampleExportError(f"sample {index} is broken")
        return f"{container.value}:{index}".encode()

    def close(self):
        self.closed = True


class FakeModuleLibrary:
    """Decoder factory that records every decoder and load option it hands out."""

    def __init__(self, **decoder_kwargs):
        self.decoder_kwargs = decoder_kwargs
        self.decoders: List[FakeDecoder] = []
        self.options: List[LoaderOptions] = []

    def load(self, data: bytes, options: LoaderOptions) -> FakeDecoder:
        self.options.append(options)
        if data == CORRUPT:
            raise DecodeError("unrecognised module format")
        decoder = FakeDecoder(**self.decoder_kwargs)
        self.decoders.append(decoder)
        return decoder


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers setup_logging() attached so they never outlive a test's streams."""
    yield
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def four_channel_mod():
    """4 channels, sample-only (8 samples), 3.35 seconds."""
    return FakeModuleLibrary(channels=4, instruments=0, samples=8, duration=3.35)


@pytest.fixture
def module_bytes():
    return b"M.K. fake module data"


def build_xm(instruments, patterns: int = 1) -> bytes:
    """
    Minimal XM 1.04 file.

    Args:
        instruments: List of (keymap, sample_lengths); keymap holds 96
            instrument-local sample indices, an empty sample list makes an
            instrument without samples
        patterns: Number of empty 64-row patterns
    """
    data = (b"Extended Module: " + b"test".ljust(20, b"\0") + b"\x1a"
            + b"modstems".ljust(20, b"\0") + struct.pack('<H', 0x0104))
    data += struct.pack('<I', 276) + struct.pack('<8H', 1, 0, 4, patterns, len(instruments), 1, 6, 125)
    data += bytes(256)

    for _ in range(patterns):
        packed = b"\x80" * 4 * 64
        data += struct.pack('<IBHH', 9, 0, 64, len(packed)) + packed

    for keymap, lengths in instruments:
        if not lengths:
            data += struct.pack('<I', 29) + b"empty".ljust(22, b"\0") + struct.pack('<BH', 0, 0)
            continue
        header = (struct.pack('<I', 263) + b"inst".ljust(22, b"\0")
                  + struct.pack('<BHI', 0, len(lengths), 40) + bytes(keymap))
        data += header + bytes(263 - len(header))
        for length in lengths:
            data += struct.pack('<I', length) + bytes(36)
        for length in lengths:
            data += bytes(length)
    return data


def build_it(keyboards, use_instruments: bool = True) -> bytes:
    """
    Minimal IT file whose instruments carry the given keyboards.

    Args:
        keyboards: One list of 120 sample numbers (1-based, 0 = none) per
            instrument, indexed by key
        use_instruments: Set the "use instruments" header flag
    """
    orders = bytes([0, 255])
    flags = 0x0C if use_instruments else 0x08
    header = b"IMPM" + b"test".ljust(26, b"\0") + bytes(2)
    header += struct.pack('<8H', len(orders), len(keyboards), 0, 0, 0x0214, 0x0214, flags, 0)
    header += bytes(0xC0 - len(header)) + orders

    first = len(header) + 4 * len(keyboards)
    instruments = b""
    pointers = []
    for keyboard in keyboards:
        pointers.append(first + len(instruments))
        table = b"".join(bytes([key, sample]) for key, sample in enumerate(keyboard))
        body = b"IMPI" + bytes(0x3C) + table
        instruments += body + bytes(554 - len(body))
    return header + struct.pack(f'<{len(pointers)}I', *pointers) + instruments
