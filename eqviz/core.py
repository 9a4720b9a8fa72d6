"""Core audio: capture micro + analyse FFT en trames d'octets.

Expose the capture-source interface used by the session controller and
`MicrophoneSource`, its sounddevice implementation:
- acquire(constraints) -> handle (raises AcquisitionError)
- handle.read_frequency_data(out) / handle.read_time_domain_data(out)
- release(handle)

The frequency frame mimics a browser AnalyserNode: Blackman window, FFT
magnitude smoothed over time, converted to dB and mapped from
[min_db, max_db] onto 0..255.
"""
import logging
import threading
from typing import Optional

import numpy as np

from .config import CaptureConstraints
from .errors import AcquisitionError, AcquisitionReason, BufferLengthMismatch

_sd_import_err = None
try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_err = e

logger = logging.getLogger("eqviz.core")


class CaptureHandle:
    """Abstract: an open capture. Frame lengths are fixed for the handle's lifetime.

    Subclasses set `bin_count` and override both read methods; each fills the
    caller's uint8 buffer of length `bin_count` in place.
    """
    bin_count = 0

    def read_frequency_data(self, out: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def read_time_domain_data(self, out: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class CaptureSource:
    """Abstract: opens and closes capture handles.

    Subclasses override both methods. `acquire` returns a handle or raises
    AcquisitionError; `release` must accept a handle it already released.
    """

    def acquire(self, constraints: CaptureConstraints) -> CaptureHandle:
        raise NotImplementedError

    def release(self, handle: CaptureHandle) -> None:
        raise NotImplementedError


def _check_out(out: np.ndarray, expected: int) -> None:
    if out.shape != (expected,):
        raise BufferLengthMismatch(expected, int(out.size))


class MicrophoneHandle(CaptureHandle):
    """Keeps the last ``fft_size`` mono samples and turns them into frames."""

    def __init__(self, constraints: CaptureConstraints):
        self.constraints = constraints
        self.fft_size = constraints.fft_size
        self.bin_count = constraints.bin_count
        self._lock = threading.Lock()
        self._ring = np.zeros(self.fft_size, dtype=np.float32)
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)
        self._db_scale = 255.0 / (constraints.max_db - constraints.min_db)
        self._stream = None

    def feed(self, samples: np.ndarray) -> None:
        """Push new mono samples (float, -1..1) into the ring."""
        x = np.asarray(samples, dtype=np.float32).reshape(-1)
        n = x.size
        if n == 0:
            return
        with self._lock:
            if n >= self.fft_size:
                self._ring[:] = x[-self.fft_size:]
            else:
                self._ring[:-n] = self._ring[n:]
                self._ring[-n:] = x

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("input stream status: %s", status)
        if indata.ndim > 1:
            mono = indata[:, 0]
        else:
            mono = indata
        self.feed(mono)

    def read_frequency_data(self, out: np.ndarray) -> np.ndarray:
        _check_out(out, self.bin_count)
        with self._lock:
            frame = self._ring * self._window
        spec = np.abs(np.fft.rfft(frame))[:self.bin_count] / self.fft_size
        tau = self.constraints.smoothing
        self._smoothed = tau * self._smoothed + (1.0 - tau) * spec
        db = 20.0 * np.log10(np.maximum(self._smoothed, 1e-12))
        scaled = np.floor((db - self.constraints.min_db) * self._db_scale)
        out[:] = np.clip(scaled, 0, 255)
        return out

    def read_time_domain_data(self, out: np.ndarray) -> np.ndarray:
        _check_out(out, self.bin_count)
        with self._lock:
            recent = self._ring[-self.bin_count:].copy()
        out[:] = np.clip(np.floor(128.0 * (1.0 + recent)), 0, 255)
        return out

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("error while closing input stream: %s", e)


_BUSY_HINTS = ("device unavailable", "busy", "resource temporarily unavailable")
_NOT_FOUND_HINTS = ("invalid device", "no input device", "no device", "error querying device",
                    "no default input")
_CONSTRAINT_HINTS = ("invalid number of channels", "invalid sample rate", "sample format",
                     "samplerate", "blocksize")


def classify_error(exc: BaseException) -> AcquisitionError:
    """Map a PortAudio / OS error raised while opening the mic to an AcquisitionError."""
    if isinstance(exc, AcquisitionError):
        return exc
    msg = str(exc)
    low = msg.lower()
    if isinstance(exc, PermissionError) or "permission" in low or "access denied" in low:
        reason = AcquisitionReason.PERMISSION_DENIED
    elif any(h in low for h in _BUSY_HINTS):
        reason = AcquisitionReason.DEVICE_BUSY
    elif any(h in low for h in _NOT_FOUND_HINTS):
        reason = AcquisitionReason.DEVICE_NOT_FOUND
    elif any(h in low for h in _CONSTRAINT_HINTS):
        reason = AcquisitionReason.CONSTRAINTS_UNSATISFIABLE
    else:
        reason = AcquisitionReason.UNKNOWN
    return AcquisitionError(reason, msg)


class MicrophoneSource(CaptureSource):
    """Capture live du périphérique audio (entrée micro) via sounddevice."""

    def __init__(self, blocksize: Optional[int] = None):
        self.blocksize = blocksize

    def acquire(self, constraints: CaptureConstraints) -> MicrophoneHandle:
        if sd is None:
            raise AcquisitionError(AcquisitionReason.UNKNOWN,
                                   f"sounddevice non disponible: {_sd_import_err}")
        handle = MicrophoneHandle(constraints)
        stream = None
        try:
            stream = sd.InputStream(samplerate=int(constraints.sample_rate),
                                    blocksize=self.blocksize or constraints.fft_size // 4,
                                    device=constraints.device, channels=constraints.channels,
                                    dtype="float32", callback=handle._callback)
            stream.start()
        except Exception as e:
            if stream is not None:
                # opened but never started
                try:
                    stream.close()
                except Exception as close_err:
                    logger.warning("error while closing input stream: %s", close_err)
            raise classify_error(e) from e
        handle._stream = stream
        logger.info("microphone opened (device=%s, %d Hz, fft=%d)",
                    constraints.device if constraints.device is not None else "default",
                    constraints.sample_rate, constraints.fft_size)
        return handle

    def release(self, handle: CaptureHandle) -> None:
        if isinstance(handle, MicrophoneHandle):
            handle.close()
            logger.info("microphone released")
