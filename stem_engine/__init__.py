"""
Stem Engine - Per-channel and per-instrument stems from tracker modules

Core modules for isolating channels and instruments of MOD/S3M/XM/IT
(and every other libopenmpt-supported) module and rendering each one
to its own audio file.
"""

from .decoder import (
    DecodeError, LoaderOptions, ModuleDecoder, SampleContainer, SampleExportError,
    SampleFormat, StemEngineError,
)
from .song import Song, SongInfo, SongProbe, LoadStatus, get_song_info, open_song, probe_song
from .mute import IsolationTarget, MuteMatrix, TargetKind, compute_mute_matrix
from .renderer import AudioBuffer, ChunkedRenderer, RenderConfig, RenderResult, render, render_song
from .samples import SampleExporter
from .batch import BatchConfig, BatchOrchestrator

__version__ = "1.0.0"
__all__ = [
    "DecodeError", "LoaderOptions", "ModuleDecoder", "SampleContainer", "SampleExportError",
    "SampleFormat", "StemEngineError",
    "Song", "SongInfo", "SongProbe", "LoadStatus", "get_song_info", "open_song", "probe_song",
    "IsolationTarget", "MuteMatrix", "TargetKind", "compute_mute_matrix",
    "AudioBuffer", "ChunkedRenderer", "RenderConfig", "RenderResult", "render", "render_song",
    "SampleExporter",
    "BatchConfig", "BatchOrchestrator",
]
