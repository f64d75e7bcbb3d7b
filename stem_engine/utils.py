"""
Utility Functions - Validation and display helpers

Contains small helpers shared by the renderer, the batch orchestrator
and the command line front end.
"""

import logging
from typing import Tuple

logger = logging.getLogger(__name__)

MIN_SAMPLE_RATE = 8000
MAX_SAMPLE_RATE = 192000

MIN_STEREO_SEPARATION = 0
MAX_STEREO_SEPARATION = 200


# === Validation ===

def validate_sample_rate(sample_rate: int) -> Tuple[bool, str]:
    """
    Validate an output sample rate.

    Args:
        sample_rate: Sample rate in Hz

    Returns:
        Tuple of (is_valid, error_message)
    """
    if sample_rate < MIN_SAMPLE_RATE:
        return False, f"Sample rate {sample_rate} Hz is too low (minimum {MIN_SAMPLE_RATE} Hz)"
    if sample_rate > MAX_SAMPLE_RATE:
        return False, f"Sample rate {sample_rate} Hz is too high (maximum {MAX_SAMPLE_RATE} Hz)"
    return True, "Valid"


def validate_stereo_separation(percent: int) -> Tuple[bool, str]:
    """Validate a stereo separation percentage (0 = mono, 100 = default, 200 = widest)."""
    if not MIN_STEREO_SEPARATION <= percent <= MAX_STEREO_SEPARATION:
        return False, (f"Stereo separation {percent}% is outside "
                       f"[{MIN_STEREO_SEPARATION}, {MAX_STEREO_SEPARATION}]")
    return True, "Valid"


def validate_index(index: int, count: int, what: str) -> None:
    """Raise ValueError unless 0 <= index < count."""
    if not 0 <= index < count:
        raise ValueError(f"{what} index {index} out of range [0, {count})")


# === Display Helpers ===

def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (HH:MM:SS or MM:SS)
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    else:
        return f"{minutes:02d}:{secs:02d}"


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (KB, MB, GB)
    """
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"
