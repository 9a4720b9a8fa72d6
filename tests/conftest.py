import threading

import numpy as np
import pytest

from eqviz.config import Config
from eqviz.core import CaptureHandle, CaptureSource


class FakeHandle(CaptureHandle):
    """Replays a fixed list of frames, repeating the last one."""

    def __init__(self, frames, time_frames=None, bin_count=8):
        self.bin_count = bin_count
        self.frames = [np.asarray(f, dtype=np.uint8) for f in frames] or [np.zeros(bin_count, np.uint8)]
        self.time_frames = [np.asarray(f, dtype=np.uint8) for f in (time_frames or [])] \
            or [np.full(bin_count, 128, np.uint8)]
        self.reads = 0
        self.released = False

    def read_frequency_data(self, out):
        assert not self.released, "read after release"
        out[:] = self.frames[min(self.reads, len(self.frames) - 1)]
        self.reads += 1
        return out

    def read_time_domain_data(self, out):
        assert not self.released, "read after release"
        out[:] = self.time_frames[min(self.reads - 1, len(self.time_frames) - 1)]
        return out


class FakeSource(CaptureSource):
    def __init__(self, frames=(), time_frames=None, bin_count=8, error=None, gate=None):
        self.frames = list(frames)
        self.time_frames = time_frames
        self.bin_count = bin_count
        self.error = error
        self.gate = gate
        self.acquire_calls = 0
        self.handles = []
        self.released = []
        # concurrency bookkeeping: acquisitions in flight and handles held open
        self._lock = threading.Lock()
        self.in_flight = self.max_in_flight = 0
        self.open = self.max_open = 0

    def acquire(self, constraints):
        with self._lock:
            self.acquire_calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.error is not None:
                raise self.error
            handle = FakeHandle(self.frames, self.time_frames, self.bin_count)
            with self._lock:
                self.handles.append(handle)
                self.open += 1
                self.max_open = max(self.max_open, self.open)
            return handle
        finally:
            with self._lock:
                self.in_flight -= 1

    def release(self, handle):
        with self._lock:
            if not handle.released:
                self.open -= 1
        handle.released = True
        self.released.append(handle)


@pytest.fixture
def small_config():
    # 16-point FFT -> 8 bins, 4 bars of 2 bins each
    return Config(fft_size=16, num_bars=4, log_scaling=False)


@pytest.fixture
def frames():
    return [
        [0, 10, 20, 30, 40, 50, 60, 70],
        [100, 100, 100, 100, 200, 200, 200, 200],
        [255, 0, 255, 0, 255, 0, 255, 0],
    ]


@pytest.fixture
def gate():
    return threading.Event()
