"""
Sample Keymap - Find the instrument and note that trigger each sample

In instrument-based formats a sample cannot be played directly: a note is
played on an instrument and the instrument's keyboard table picks the
sample. This module reads those tables from the raw XM and IT (and MPTM)
headers so every sample can be reached through some (instrument, note).
"""

import logging
import struct
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

XM_MAGIC = b"Extended Module: "
XM_VERSION = 0x0104
IT_MAGIC = b"IMPM"
IT_INSTRUMENT_MAGIC = b"IMPI"
IT_USE_INSTRUMENTS = 0x04

XM_KEYS = 96
IT_KEYS = 120
XM_NOTE_OFFSET = 12     # XM key 0 (C-0) plays as C-1
PREFERRED_NOTE = 60     # C-5

# 1-based sample number -> (0-based instrument, note)
Triggers = Dict[int, Tuple[int, int]]


def _closest_key(keys: List[int], offset: int = 0) -> Optional[int]:
    """Note nearest to C-5 among the keys that map to a sample."""
    if not keys:
        return None
    return min((k + offset for k in keys), key=lambda note: abs(note - PREFERRED_NOTE))


def _xm_triggers(data: bytes) -> Optional[Triggers]:
    version = struct.unpack_from('<H', data, 58)[0]
    if version != XM_VERSION:
        logger.debug(f"XM version {version:#06x} has no supported instrument layout")
        return None

    header_size = struct.unpack_from('<I', data, 60)[0]
    num_patterns, num_instruments = struct.unpack_from('<HH', data, 70)

    offset = 60 + header_size
    for _ in range(num_patterns):
        header_length = struct.unpack_from('<I', data, offset)[0]
        packed_size = struct.unpack_from('<H', data, offset + 7)[0]
        offset += max(header_length, 9) + packed_size

    triggers: Triggers = {}
    sample_number = 0
    for instrument in range(num_instruments):
        instrument_size = struct.unpack_from('<I', data, offset)[0]
        num_samples = struct.unpack_from('<H', data, offset + 27)[0]
        if num_samples == 0:
            offset += max(instrument_size, 29)
            continue

        sample_header_size = struct.unpack_from('<I', data, offset + 29)[0]
        keymap = data[offset + 33:offset + 33 + XM_KEYS]
        offset += max(instrument_size, 29)

        lengths = []
        for _ in range(num_samples):
            lengths.append(struct.unpack_from('<I', data, offset)[0])
            offset += sample_header_size
        offset += sum(lengths)

        for local in range(num_samples):
            sample_number += 1
            keys = [key for key, mapped in enumerate(keymap) if mapped == local]
            note = _closest_key(keys, XM_NOTE_OFFSET)
            if note is not None:
                triggers[sample_number] = (instrument, note)
    return triggers


def _it_triggers(data: bytes) -> Triggers:
    order_count, instrument_count = struct.unpack_from('<HH', data, 0x20)
    flags = struct.unpack_from('<H', data, 0x2C)[0]
    if not flags & IT_USE_INSTRUMENTS:
        return {}

    table = 0xC0 + order_count
    pointers = struct.unpack_from(f'<{instrument_count}I', data, table)

    keys_by_sample: Dict[int, Dict[int, List[int]]] = {}
    for instrument, pointer in enumerate(pointers):
        if data[pointer:pointer + 4] != IT_INSTRUMENT_MAGIC:
            continue
        # 120 (note, sample) pairs; sample is 1-based, 0 = none
        keyboard = data[pointer + 0x40:pointer + 0x40 + 2 * IT_KEYS]
        for key in range(len(keyboard) // 2):
            sample = keyboard[2 * key + 1]
            if sample:
                keys_by_sample.setdefault(sample, {}).setdefault(instrument, []).append(key)

    triggers: Triggers = {}
    for sample, by_instrument in keys_by_sample.items():
        instrument = min(by_instrument)
        triggers[sample] = (instrument, _closest_key(by_instrument[instrument]))
    return triggers


def sample_triggers(data: bytes) -> Optional[Triggers]:
    """
    Map every sample to an instrument and note that plays it.

    Args:
        data: Raw module file contents

    Returns:
        {sample number (1-based): (instrument index (0-based), note)}, where
        note uses libopenmpt's numbering (60 = C-5). Samples no instrument
        plays are absent. None when the format's tables are not understood.
    """
    try:
        if data.startswith(XM_MAGIC):
            return _xm_triggers(data)
        if data.startswith(IT_MAGIC):
            return _it_triggers(data)
    except struct.error as e:
        logger.warning(f"Truncated instrument tables, no sample keymap: {e}")
        return None
    return None
