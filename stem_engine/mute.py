"""
Mute Matrix Module - Decide what to silence for an isolation target

Channels and instruments are independent axes. Isolating a channel
leaves every instrument audible on it, isolating an instrument leaves
every channel open, and the combined target narrows both.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .decoder import ModuleDecoder
from .utils import validate_index

logger = logging.getLogger(__name__)

NO_ISOLATION = -1


class TargetKind(Enum):
    """What an isolation target keeps audible."""
    FULL_MIX = "full"
    CHANNEL = "channel"
    INSTRUMENT = "instrument"
    CHANNEL_INSTRUMENT = "channel_instrument"


@dataclass(frozen=True)
class IsolationTarget:
    """A single stem to render. Indices are zero-based."""
    kind: TargetKind
    channel: Optional[int] = None
    instrument: Optional[int] = None

    @classmethod
    def full_mix(cls) -> 'IsolationTarget':
        return cls(TargetKind.FULL_MIX)

    @classmethod
    def for_channel(cls, index: int) -> 'IsolationTarget':
        return cls(TargetKind.CHANNEL, channel=index)

    @classmethod
    def for_instrument(cls, index: int) -> 'IsolationTarget':
        return cls(TargetKind.INSTRUMENT, instrument=index)

    @classmethod
    def for_channel_instrument(cls, channel: int, instrument: int) -> 'IsolationTarget':
        return cls(TargetKind.CHANNEL_INSTRUMENT, channel=channel, instrument=instrument)

    @classmethod
    def from_indices(cls, channel_to_play: int = NO_ISOLATION,
                     instrument_to_play: int = NO_ISOLATION) -> 'IsolationTarget':
        """Build a target from the flat -1 = "everything" convention."""
        has_channel = channel_to_play != NO_ISOLATION
        has_instrument = instrument_to_play != NO_ISOLATION
        if has_channel and has_instrument:
            return cls.for_channel_instrument(channel_to_play, instrument_to_play)
        if has_channel:
            return cls.for_channel(channel_to_play)
        if has_instrument:
            return cls.for_instrument(instrument_to_play)
        return cls.full_mix()

    @property
    def isolates_channel(self) -> bool:
        return self.kind in (TargetKind.CHANNEL, TargetKind.CHANNEL_INSTRUMENT)

    @property
    def isolates_instrument(self) -> bool:
        return self.kind in (TargetKind.INSTRUMENT, TargetKind.CHANNEL_INSTRUMENT)

    def validate(self, channel_count: int, instrument_count: int) -> None:
        """
        Check indices against a song.

        Raises:
            ValueError: If an index is missing or out of range
        """
        if self.isolates_channel:
            if self.channel is None:
                raise ValueError(f"{self.kind.value} target requires a channel index")
            validate_index(self.channel, channel_count, "Channel")
        if self.isolates_instrument:
            if self.instrument is None:
                raise ValueError(f"{self.kind.value} target requires an instrument index")
            validate_index(self.instrument, instrument_count, "Instrument")

    def describe(self) -> str:
        if self.kind is TargetKind.FULL_MIX:
            return "full mix"
        if self.kind is TargetKind.CHANNEL:
            return f"channel {self.channel}"
        if self.kind is TargetKind.INSTRUMENT:
            return f"instrument {self.instrument + 1}"
        return f"instrument {self.instrument + 1} on channel {self.channel}"


@dataclass(frozen=True)
class MuteMatrix:
    """Per-channel and per-instrument mute flags (True = muted)."""
    channels: Tuple[bool, ...]
    instruments: Tuple[bool, ...]

    @property
    def audible_channels(self) -> Tuple[int, ...]:
        return tuple(i for i, muted in enumerate(self.channels) if not muted)

    @property
    def audible_instruments(self) -> Tuple[int, ...]:
        return tuple(i for i, muted in enumerate(self.instruments) if not muted)


def _isolate(count: int, keep: Optional[int]) -> Tuple[bool, ...]:
    if keep is None:
        return (False,) * count
    return tuple(i != keep for i in range(count))


def compute_mute_matrix(target: IsolationTarget, channel_count: int,
                        instrument_count: int) -> MuteMatrix:
    """
    Compute mute flags for ``target``.

    Indices must already be validated and ``instrument_count`` must be the
    effective instrument count.
    """
    channel = target.channel if target.isolates_channel else None
    instrument = target.instrument if target.isolates_instrument else None
    return MuteMatrix(
        channels=_isolate(channel_count, channel),
        instruments=_isolate(instrument_count, instrument),
    )


def apply_mute_matrix(decoder: ModuleDecoder, matrix: MuteMatrix) -> None:
    """Set every channel and instrument flag on ``decoder``."""
    for index, muted in enumerate(matrix.channels):
        decoder.set_channel_muted(index, muted)
    for index, muted in enumerate(matrix.instruments):
        decoder.set_instrument_muted(index, muted)
    logger.debug(f"Applied mute matrix: channels={matrix.audible_channels}, "
                 f"instruments={matrix.audible_instruments}")
