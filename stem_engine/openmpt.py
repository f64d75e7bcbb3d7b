"""
libopenmpt Binding - ModuleDecoder on top of the libopenmpt C API

Loads the shared library through ctypes and exposes the subset of the
libopenmpt / libopenmpt_ext API the stem engine needs: module loading with
initial ctls, counts and duration, the "interactive" extension for channel
and instrument mute flags, render parameters and the four read functions.

Set MODSTEMS_LIBOPENMPT to an explicit library path when the library is not
on the default search path.
"""

import ctypes
import ctypes.util
import io
import logging
import os
import threading
from typing import Dict, Optional, Tuple

import numpy as np
import soundfile as sf

from .decoder import (
    DecodeError, DecoderUnavailableError, LoaderOptions, ModuleDecoder,
    SampleContainer, SampleExportError,
)
from .keymap import Triggers, sample_triggers

logger = logging.getLogger(__name__)

LIBRARY_ENV_VAR = "MODSTEMS_LIBOPENMPT"

# openmpt_module_render_param
RENDER_STEREOSEPARATION_PERCENT = 2

INTERACTIVE_INTERFACE_ID = b"interactive"

# Sample export settings
SAMPLE_EXPORT_RATE = 44100
SAMPLE_EXPORT_NOTE = 60          # C-5
MAX_SAMPLE_SECONDS = 10
SILENCE_THRESHOLD = 1e-4


# === C types ===

_LOG_FUNC = ctypes.CFUNCTYPE(None, ctypes.c_char_p, ctypes.c_void_p)


class _InitialCtl(ctypes.Structure):
    _fields_ = [("ctl", ctypes.c_char_p), ("value", ctypes.c_char_p)]


class _InteractiveInterface(ctypes.Structure):
    """openmpt_module_ext_interface_interactive (field order matters)."""
    _fields_ = [
        ("set_current_speed", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32)),
        ("set_current_tempo", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32)),
        ("set_tempo_factor", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_double)),
        ("get_tempo_factor", ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_void_p)),
        ("set_pitch_factor", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_double)),
        ("get_pitch_factor", ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_void_p)),
        ("set_global_volume", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_double)),
        ("get_global_volume", ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_void_p)),
        ("set_channel_volume", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32, ctypes.c_double)),
        ("get_channel_volume", ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_void_p, ctypes.c_int32)),
        ("set_channel_mute_status", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32, ctypes.c_int)),
        ("get_channel_mute_status", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32)),
        ("set_instrument_mute_status", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32, ctypes.c_int)),
        ("get_instrument_mute_status", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32)),
        ("play_note", ctypes.CFUNCTYPE(ctypes.c_int32, ctypes.c_void_p, ctypes.c_int32, ctypes.c_int32,
                                       ctypes.c_double, ctypes.c_double)),
        ("stop_note", ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.c_int32)),
    ]


@_LOG_FUNC
def _forward_log(message, user):
    if message:
        logger.debug(f"libopenmpt: {message.decode('utf-8', errors='replace')}")


# === Library loading ===

_LIB: Optional[ctypes.CDLL] = None
_LIB_LOCK = threading.Lock()


def _configure(lib: ctypes.CDLL) -> None:
    """Declare argument and return types for every function we call."""
    vp = ctypes.c_void_p

    lib.openmpt_module_ext_create_from_memory.argtypes = [
        vp, ctypes.c_size_t, _LOG_FUNC, vp, vp, vp,
        ctypes.POINTER(ctypes.c_int), ctypes.POINTER(vp), ctypes.POINTER(_InitialCtl),
    ]
    lib.openmpt_module_ext_create_from_memory.restype = vp
    lib.openmpt_module_ext_destroy.argtypes = [vp]
    lib.openmpt_module_ext_destroy.restype = None
    lib.openmpt_module_ext_get_module.argtypes = [vp]
    lib.openmpt_module_ext_get_module.restype = vp
    lib.openmpt_module_ext_get_interface.argtypes = [vp, ctypes.c_char_p, vp, ctypes.c_size_t]
    lib.openmpt_module_ext_get_interface.restype = ctypes.c_int
    lib.openmpt_free_string.argtypes = [vp]
    lib.openmpt_free_string.restype = None

    for name in ("openmpt_module_get_num_channels", "openmpt_module_get_num_instruments",
                 "openmpt_module_get_num_samples"):
        getattr(lib, name).argtypes = [vp]
        getattr(lib, name).restype = ctypes.c_int32
    lib.openmpt_module_get_duration_seconds.argtypes = [vp]
    lib.openmpt_module_get_duration_seconds.restype = ctypes.c_double

    lib.openmpt_module_set_render_param.argtypes = [vp, ctypes.c_int, ctypes.c_int32]
    lib.openmpt_module_set_render_param.restype = ctypes.c_int
    lib.openmpt_module_set_repeat_count.argtypes = [vp, ctypes.c_int32]
    lib.openmpt_module_set_repeat_count.restype = ctypes.c_int

    for name in ("openmpt_module_read_mono", "openmpt_module_read_float_mono",
                 "openmpt_module_read_interleaved_stereo",
                 "openmpt_module_read_interleaved_float_stereo"):
        getattr(lib, name).argtypes = [vp, ctypes.c_int32, ctypes.c_size_t, vp]
        getattr(lib, name).restype = ctypes.c_size_t


def _load_library() -> ctypes.CDLL:
    """Locate, load and configure libopenmpt once per process."""
    global _LIB
    with _LIB_LOCK:
        if _LIB is None:
            path = os.environ.get(LIBRARY_ENV_VAR) or ctypes.util.find_library("openmpt")
            if not path:
                raise DecoderUnavailableError(
                    f"libopenmpt not found; install it or set {LIBRARY_ENV_VAR}"
                )
            try:
                lib = ctypes.CDLL(path)
                _configure(lib)
            except (OSError, AttributeError) as e:
                raise DecoderUnavailableError(f"Failed to load libopenmpt from {path}: {e}") from e
            logger.info(f"Loaded libopenmpt: {path}")
            _LIB = lib
        return _LIB


def _build_ctls(ctls: Dict[str, str]) -> ctypes.Array:
    """Build a NULL-terminated openmpt_module_initial_ctl array."""
    array = (_InitialCtl * (len(ctls) + 1))()
    for i, (key, value) in enumerate(sorted(ctls.items())):
        array[i].ctl = key.encode("ascii")
        array[i].value = value.encode("ascii")
    return array


def _trim_trailing_silence(waveform: np.ndarray,
                           threshold: float = SILENCE_THRESHOLD) -> np.ndarray:
    audible = np.flatnonzero(np.abs(waveform) > threshold)
    if audible.size == 0:
        return waveform[:0]
    return waveform[:audible[-1] + 1]


# === Decoder ===

class OpenMPTDecoder(ModuleDecoder):
    """libopenmpt module with the interactive extension attached."""

    def __init__(self, lib: ctypes.CDLL, ext: int, interactive: _InteractiveInterface,
                 data: bytes = b""):
        self._lib = lib
        self._ext = ext
        self._mod = lib.openmpt_module_ext_get_module(ext)
        self._iface = interactive
        self._data = data
        self._triggers: Optional[Triggers] = None
        self._triggers_read = False

    @classmethod
    def load(cls, data: bytes, options: LoaderOptions = None) -> 'OpenMPTDecoder':
        """
        Load a module from memory.

        Args:
            data: Raw module file contents
            options: Loader options (defaults to LoaderOptions.render())

        Returns:
            Loaded decoder; the caller owns it and must close it

        Raises:
            DecoderUnavailableError: If libopenmpt cannot be loaded
            DecodeError: If libopenmpt rejects the data
        """
        options = options or LoaderOptions.render()
        lib = _load_library()

        data = bytes(data)
        source = ctypes.create_string_buffer(data, len(data))
        error = ctypes.c_int(0)
        error_message = ctypes.c_void_p()
        ctls = _build_ctls(options.to_ctls())

        ext = lib.openmpt_module_ext_create_from_memory(
            source, len(data), _forward_log, None, None, None,
            ctypes.byref(error), ctypes.byref(error_message), ctls,
        )
        if not ext:
            message = "unknown error"
            if error_message.value:
                message = ctypes.string_at(error_message.value).decode("utf-8", errors="replace")
                lib.openmpt_free_string(error_message.value)
            raise DecodeError(f"libopenmpt could not load module (error {error.value}): {message}")

        interactive = _InteractiveInterface()
        ok = lib.openmpt_module_ext_get_interface(
            ext, INTERACTIVE_INTERFACE_ID, ctypes.byref(interactive), ctypes.sizeof(interactive)
        )
        if not ok:
            lib.openmpt_module_ext_destroy(ext)
            raise DecodeError("libopenmpt interactive interface unavailable")

        return cls(lib, ext, interactive, data)

    def _handle(self) -> int:
        if not self._ext:
            raise DecodeError("Module already closed")
        return self._mod

    # --- metadata ---

    def channel_count(self) -> int:
        return int(self._lib.openmpt_module_get_num_channels(self._handle()))

    def instrument_count(self) -> int:
        return int(self._lib.openmpt_module_get_num_instruments(self._handle()))

    def sample_count(self) -> int:
        return int(self._lib.openmpt_module_get_num_samples(self._handle()))

    def duration_seconds(self) -> float:
        return float(self._lib.openmpt_module_get_duration_seconds(self._handle()))

    # --- playback state ---

    def set_channel_muted(self, index: int, muted: bool) -> None:
        self._handle()
        if not self._iface.set_channel_mute_status(self._ext, index, int(muted)):
            raise DecodeError(f"Cannot set mute status of channel {index}")

    def set_instrument_muted(self, index: int, muted: bool) -> None:
        self._handle()
        if not self._iface.set_instrument_mute_status(self._ext, index, int(muted)):
            raise DecodeError(f"Cannot set mute status of instrument {index}")

    def set_stereo_separation(self, percent: int) -> None:
        if not self._lib.openmpt_module_set_render_param(
                self._handle(), RENDER_STEREOSEPARATION_PERCENT, int(percent)):
            raise DecodeError(f"Cannot set stereo separation to {percent}%")

    def read_frames(self, sample_rate: int, out: np.ndarray, stereo: bool) -> int:
        mod = self._handle()
        if not out.flags.c_contiguous or not out.flags.writeable:
            raise ValueError("Output array must be C-contiguous and writeable")

        if out.dtype == np.int16:
            read = (self._lib.openmpt_module_read_interleaved_stereo if stereo
                    else self._lib.openmpt_module_read_mono)
        elif out.dtype == np.float32:
            read = (self._lib.openmpt_module_read_interleaved_float_stereo if stereo
                    else self._lib.openmpt_module_read_float_mono)
        else:
            raise ValueError(f"Unsupported output dtype: {out.dtype}")

        count = out.size // 2 if stereo else out.size
        return int(read(mod, sample_rate, count, out.ctypes.data_as(ctypes.c_void_p)))

    # --- sample export ---

    def _sample_trigger(self, index: int) -> Tuple[int, int]:
        """(instrument or sample index for play_note, note) that sounds sample ``index``."""
        instruments = self.instrument_count()
        if instruments == 0:
            # Sample-based modules play samples directly
            return index - 1, SAMPLE_EXPORT_NOTE

        if not self._triggers_read:
            self._triggers = sample_triggers(self._data)
            self._triggers_read = True

        if self._triggers is None:
            if instruments == self.sample_count():
                return index - 1, SAMPLE_EXPORT_NOTE
            raise SampleExportError(f"Cannot tell which of {instruments} instruments plays sample {index}")
        if index not in self._triggers:
            raise SampleExportError(f"Sample {index} is not played by any instrument")
        return self._triggers[index]

    def export_sample(self, index: int, container: SampleContainer) -> bytes:
        """
        Render sample ``index`` (1-based) in isolation and encode it.

        Every pattern channel is muted and the song is set to loop, then the
        sample is triggered as a free-standing note (through an instrument
        whose keyboard maps to it, for instrument-based modules) and rendered
        until it decays or MAX_SAMPLE_SECONDS elapse. Trailing silence is
        trimmed.
        """
        try:
            count = self.sample_count()
            if not 1 <= index <= count:
                raise SampleExportError(f"Sample index {index} out of range 1..{count}")
            instrument, note = self._sample_trigger(index)

            for channel in range(self.channel_count()):
                self.set_channel_muted(channel, True)
            self._lib.openmpt_module_set_repeat_count(self._mod, -1)

            voice = self._iface.play_note(self._ext, instrument, note, 1.0, 0.0)
            if voice < 0:
                raise SampleExportError(f"libopenmpt refused to play sample {index}")

            waveform = np.zeros(SAMPLE_EXPORT_RATE * MAX_SAMPLE_SECONDS, dtype=np.float32)
            produced = self.read_frames(SAMPLE_EXPORT_RATE, waveform, stereo=False)
            waveform = _trim_trailing_silence(waveform[:produced])
            if waveform.size == 0:
                raise SampleExportError(f"Sample {index} rendered as silence")

            subtype = 'FLOAT' if container is SampleContainer.WAV else 'PCM_24'
            encoded = io.BytesIO()
            sf.write(encoded, waveform, SAMPLE_EXPORT_RATE,
                     format=container.soundfile_format, subtype=subtype)
            return encoded.getvalue()
        except SampleExportError:
            raise
        except (DecodeError, RuntimeError, ValueError) as e:
            raise SampleExportError(f"Sample {index}: {e}") from e

    def close(self) -> None:
        if self._ext:
            self._lib.openmpt_module_ext_destroy(self._ext)
            self._ext = None
            self._mod = None

    def __repr__(self) -> str:
        state = "open" if self._ext else "closed"
        return f"OpenMPTDecoder({state})"
