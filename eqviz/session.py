"""Recording session: owns the microphone handle and drives per-frame analysis.

The host calls `tick()` once per displayed frame. While the session is
RUNNING each tick reads fresh frames from the capture handle, smooths the
frequency frame against the previous one, computes statistics and bars and
publishes a single immutable `Snapshot` to subscribers.

Acquisition runs on a worker thread so the host loop keeps rendering while
the device opens. `stop()` is the one place where resources are released and
it shares a lock with `tick()`, so no tick runs against a released handle.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from .analysis import (AudioStatistics, BarDatum, calculate_audio_stats, calculate_rms,
                       create_circular_visualization_data, smooth_frequency_data)
from .config import CaptureConstraints, Config
from .core import CaptureHandle, CaptureSource
from .errors import AcquisitionError, AcquisitionReason
from .patterns import generate_test_data

logger = logging.getLogger("eqviz.session")


class SessionState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(frozen=True)
class Snapshot:
    """Everything the presentation layer needs for one frame."""
    is_running: bool = False
    frequency_data: Optional[np.ndarray] = None
    loudness: float = 0.0
    statistics: AudioStatistics = field(default_factory=AudioStatistics.empty)
    bars: Tuple[BarDatum, ...] = ()
    state: SessionState = SessionState.IDLE
    error: Optional[str] = None


Subscriber = Callable[[Snapshot], None]


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


class SessionController:
    def __init__(self, source: CaptureSource, config: Optional[Config] = None,
                 on_snapshot: Optional[Subscriber] = None,
                 rng: Optional[np.random.Generator] = None):
        self.source = source
        self.config = config or Config()
        self._rng = rng
        self._subs: List[Subscriber] = []
        if on_snapshot is not None:
            self._subs.append(on_snapshot)

        # re-entrant: subscribers may call stop()/start() from inside a publish
        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._failure: Optional[AcquisitionError] = None
        self._generation = 0
        self._settled = threading.Event()
        self._settled.set()
        self._worker: Optional[threading.Thread] = None

        self._handle: Optional[CaptureHandle] = None
        self._fft_size = self.config.fft_size
        self._freq_buf: Optional[np.ndarray] = None
        self._time_buf: Optional[np.ndarray] = None
        self._smooth_bufs: Optional[Tuple[np.ndarray, np.ndarray]] = None
        self._smooth_idx = 0
        self._previous: Optional[np.ndarray] = None

        self._snapshot = Snapshot()

    # ---------- Public API ----------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> Optional[AcquisitionError]:
        return self._failure

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, fn: Subscriber) -> None:
        self._subs.append(fn)

    def start(self) -> bool:
        """Request the microphone. Returns False if a session is already up or pending."""
        with self._lock:
            if self._state in (SessionState.ACQUIRING, SessionState.RUNNING):
                return False
            self._generation += 1
            generation = self._generation
            self._state = SessionState.ACQUIRING
            self._failure = None
            self._settled.clear()
            constraints = self.config.constraints()
            # a cancelled acquisition may still be blocked in the source
            stale = self._worker if self._worker is not None and self._worker.is_alive() else None
            self._worker = threading.Thread(target=self._acquire,
                                            args=(generation, constraints, stale),
                                            name="eqviz-acquire", daemon=True)
            worker = self._worker
        logger.debug("acquiring microphone (session %d)", generation)
        worker.start()
        return True

    def stop(self) -> None:
        """Release everything and go back to IDLE. Safe from any state."""
        with self._lock:
            previous_state = self._state
            # any acquisition still in flight is now stale
            self._generation += 1
            handle, self._handle = self._handle, None
            if previous_state is SessionState.RUNNING:
                self._state = SessionState.STOPPING
            if handle is not None:
                try:
                    self.source.release(handle)
                except Exception:
                    logger.exception("error while releasing capture handle")
            self._freq_buf = None
            self._time_buf = None
            self._smooth_bufs = None
            self._previous = None
            self._failure = None
            self._state = SessionState.IDLE
            self._settled.set()
            if previous_state is not SessionState.IDLE:
                logger.info("session stopped (was %s)", previous_state.value)
                self._snapshot = Snapshot()
                self._publish(self._snapshot)

    def toggle(self) -> None:
        with self._lock:
            if self._state is SessionState.RUNNING:
                self.stop()
            else:
                self.start()

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        """Block until a pending acquisition has resolved (RUNNING or FAILED)."""
        return self._settled.wait(timeout)

    def tick(self) -> Optional[Snapshot]:
        """Analyse one frame. Does nothing unless RUNNING."""
        with self._lock:
            if self._state is not SessionState.RUNNING:
                return None
            cfg = self.config
            self._handle.read_frequency_data(self._freq_buf)
            self._handle.read_time_domain_data(self._time_buf)

            out = self._smooth_bufs[self._smooth_idx]
            smoothed = smooth_frequency_data(self._freq_buf, self._previous, cfg.live_smoothing, out=out)
            self._previous = smoothed
            self._smooth_idx ^= 1

            snap = Snapshot(
                is_running=True,
                frequency_data=_frozen(smoothed.copy()),
                loudness=calculate_rms(self._time_buf),
                statistics=calculate_audio_stats(smoothed, self._time_buf,
                                                 cfg.sample_rate, self._fft_size),
                bars=create_circular_visualization_data(smoothed, cfg.num_bars,
                                                        log_scaling=cfg.log_scaling,
                                                        sample_rate=cfg.sample_rate,
                                                        fft_size=self._fft_size),
                state=SessionState.RUNNING,
            )
            self._snapshot = snap
            self._publish(snap)
            return snap

    def generate_test_audio(self, kind: str = "sine", frequency: float = 440.0,
                            length: int = 256) -> Optional[Snapshot]:
        """Publish a synthetic frame without touching the microphone.

        Ignored while a live session is running.
        """
        cfg = self.config
        data = generate_test_data(length, kind, frequency, rng=self._rng)
        with self._lock:
            if self._state is SessionState.RUNNING:
                logger.debug("test pattern ignored while running")
                return None
            snap = Snapshot(
                is_running=False,
                frequency_data=_frozen(data),
                loudness=0.5,
                statistics=calculate_audio_stats(data, None, cfg.sample_rate, cfg.fft_size),
                bars=create_circular_visualization_data(data, cfg.num_bars,
                                                        log_scaling=cfg.log_scaling,
                                                        sample_rate=cfg.sample_rate,
                                                        fft_size=cfg.fft_size),
                state=self._state,
            )
            self._snapshot = snap
            self._publish(snap)
            return snap

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    # ---------- Internal ----------

    def _acquire(self, generation: int, constraints: CaptureConstraints,
                 stale: Optional[threading.Thread] = None) -> None:
        if stale is not None:
            # one acquisition in flight: the stale worker releases its late handle first
            logger.debug("waiting for cancelled acquisition to finish (session %d)", generation)
            stale.join()
            with self._lock:
                if generation != self._generation:
                    return
        try:
            handle = self.source.acquire(constraints)
        except AcquisitionError as e:
            self._acquisition_failed(generation, e)
            return
        except Exception as e:
            logger.exception("unexpected error while opening the microphone")
            self._acquisition_failed(generation, AcquisitionError(AcquisitionReason.UNKNOWN, str(e)))
            return

        with self._lock:
            if generation == self._generation and self._state is SessionState.ACQUIRING:
                self._install(handle)
                handle = None
        if handle is not None:
            # stop() won the race; nobody owns this handle
            logger.debug("releasing microphone acquired by a cancelled session")
            self.source.release(handle)

    def _install(self, handle: CaptureHandle) -> None:
        n = int(handle.bin_count)
        self._handle = handle
        self._fft_size = 2 * n
        self._freq_buf = np.zeros(n, dtype=np.uint8)
        self._time_buf = np.zeros(n, dtype=np.uint8)
        self._smooth_bufs = (np.zeros(n, dtype=np.uint8), np.zeros(n, dtype=np.uint8))
        self._smooth_idx = 0
        self._previous = None
        self._state = SessionState.RUNNING
        self._settled.set()
        logger.info("session running (%d bins)", n)

    def _acquisition_failed(self, generation: int, error: AcquisitionError) -> None:
        with self._lock:
            if generation != self._generation or self._state is not SessionState.ACQUIRING:
                return
            logger.warning("microphone acquisition failed (%s): %s", error.reason.value, error)
            self._state = SessionState.FAILED
            self._failure = error
            self._settled.set()
            self._snapshot = Snapshot(state=SessionState.FAILED, error=error.user_message)
            self._publish(self._snapshot)

    def _publish(self, snap: Snapshot) -> None:
        for fn in list(self._subs):
            try:
                fn(snap)
            except Exception:
                logger.exception("snapshot subscriber failed")
