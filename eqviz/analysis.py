"""Spectral analysis of byte-valued audio frames.

Everything here is a pure function over explicit buffers: a frequency frame
(``fft_size / 2`` magnitudes in 0..255, bin ``i`` centred on
``i * sample_rate / fft_size``) and a time-domain frame (unsigned bytes
centred on 128). The only state that crosses frames is the previous
frequency frame used for smoothing, and that is always passed in by the
caller.

Nothing in this module raises on empty or silent input; degenerate frames
produce the zero/default values so a render loop can keep going.
"""
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import AUDIO_CONSTANTS
from .errors import BufferLengthMismatch

ByteFrame = Union[np.ndarray, Sequence[int]]

SAMPLE_RATE = AUDIO_CONSTANTS["SAMPLE_RATE"]
FFT_SIZE = AUDIO_CONSTANTS["FFT_SIZE"]
FREQUENCY_BANDS = AUDIO_CONSTANTS["FREQUENCY_BANDS"]

# floor applied before taking logs in the flatness measure
FLATNESS_EPSILON = 1e-4
BAR_EASING_EXPONENT = 1.5


def _as_bytes(data: ByteFrame) -> np.ndarray:
    arr = np.asarray(data)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return arr.reshape(-1)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def frequency_for_index(index: float, fft_size: int = FFT_SIZE, sample_rate: int = SAMPLE_RATE) -> float:
    return index * sample_rate / fft_size


def index_for_frequency(frequency: float, fft_size: int = FFT_SIZE, sample_rate: int = SAMPLE_RATE) -> int:
    return int(math.floor(frequency * fft_size / sample_rate))


# ---------- Value objects ----------

@dataclass(frozen=True)
class FrequencyRange:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    total: float = 0.0


@dataclass(frozen=True)
class LevelStats:
    rms: float = 0.0
    peak: float = 0.0
    avg: float = 0.0


@dataclass(frozen=True)
class SpectralStats:
    centroid: float = 0.0
    flatness: float = 0.0
    rolloff: float = 0.0


def _zero_bands() -> Mapping[str, float]:
    return MappingProxyType({name: 0.0 for name in FREQUENCY_BANDS})


@dataclass(frozen=True)
class AudioStatistics:
    frequency_range: FrequencyRange = field(default_factory=FrequencyRange)
    level: LevelStats = field(default_factory=LevelStats)
    band_energies: Mapping[str, float] = field(default_factory=_zero_bands)
    spectral: SpectralStats = field(default_factory=SpectralStats)

    @classmethod
    def empty(cls) -> "AudioStatistics":
        return cls()


@dataclass(frozen=True)
class BarDatum:
    index: int
    angle: float
    height: float
    frequency: float
    raw_value: float


@dataclass(frozen=True)
class BeatInfo:
    is_beat: bool
    intensity: float
    energy: float = 0.0
    previous_energy: float = 0.0


# ---------- Level ----------

def _normalized_samples(time_domain: ByteFrame) -> np.ndarray:
    return (_as_bytes(time_domain).astype(np.float64) - 128.0) / 128.0


def calculate_rms(time_domain: ByteFrame) -> float:
    """RMS level of a time-domain frame, in [0, 1]."""
    x = _normalized_samples(time_domain)
    if x.size == 0:
        return 0.0
    return float(min(math.sqrt(float(np.mean(x * x))), 1.0))


def calculate_peak(time_domain: ByteFrame) -> float:
    x = _normalized_samples(time_domain)
    if x.size == 0:
        return 0.0
    return float(min(float(np.max(np.abs(x))), 1.0))


# ---------- Frame shaping ----------

def smooth_frequency_data(current: ByteFrame, previous: Optional[ByteFrame] = None,
                          smoothing_factor: float = AUDIO_CONSTANTS["LIVE_SMOOTHING"],
                          out: Optional[np.ndarray] = None) -> np.ndarray:
    """Exponential moving average of two frequency frames.

    ``out[i] = round(previous[i] * a + current[i] * (1 - a))``. Without a
    previous frame the result is a copy of ``current``. When ``out`` is given
    the result is written into it (it must be a uint8 array of the same
    length) so callers can reuse storage across frames.

    Raises BufferLengthMismatch when the frames disagree in length.
    """
    if not 0.0 <= smoothing_factor <= 1.0:
        raise ValueError(f"smoothing_factor must be within [0, 1], got {smoothing_factor}")
    cur = _as_bytes(current)
    if out is None:
        out = np.empty(cur.shape, dtype=np.uint8)
    elif out.shape != cur.shape:
        raise BufferLengthMismatch(cur.size, out.size)

    if previous is None:
        np.copyto(out, cur)
        return out

    prev = _as_bytes(previous)
    if prev.shape != cur.shape:
        raise BufferLengthMismatch(cur.size, prev.size)
    blended = prev * smoothing_factor + cur * (1.0 - smoothing_factor)
    out[:] = _round_half_up(blended)
    return out


def normalize_frequency_data(data: ByteFrame, max_value: float = 255.0) -> np.ndarray:
    return np.asarray(data, dtype=np.float64).reshape(-1) / max_value


def apply_log_scaling(data: ByteFrame) -> np.ndarray:
    """Remap bins on a log10 axis so the low end is compressed.

    Output bin ``i`` reads source bin ``floor(log10(i + 1) / log10(n) * n)``;
    positions that land past the end read as 0. Large bar counts over short
    frames can read the same source bin several times.
    """
    arr = np.asarray(data, dtype=np.float64).reshape(-1)
    n = arr.size
    if n <= 1:
        return arr.copy()
    positions = np.floor(np.log10(np.arange(1, n + 1)) / math.log10(n) * n).astype(np.intp)
    scaled = np.zeros(n, dtype=np.float64)
    valid = positions < n
    scaled[valid] = arr[positions[valid]]
    return scaled


# ---------- Spectral descriptors ----------

def calculate_spectral_centroid(frequency_data: ByteFrame, sample_rate: int = SAMPLE_RATE,
                                fft_size: int = FFT_SIZE) -> float:
    mag = _as_bytes(frequency_data).astype(np.float64)
    total = float(mag.sum())
    if total <= 0:
        return 0.0
    freqs = np.arange(mag.size) * (sample_rate / fft_size)
    return float(np.dot(freqs, mag) / total)


def calculate_spectral_flatness(frequency_data: ByteFrame) -> float:
    """Geometric over arithmetic mean of the magnitudes.

    Close to 1 for noise-like frames, close to 0 for tonal ones. A frame with
    no energy at all has no shape and yields 0.
    """
    mag = _as_bytes(frequency_data).astype(np.float64)
    if mag.size == 0 or not mag.any():
        return 0.0
    floored = np.maximum(mag, FLATNESS_EPSILON)
    geometric = math.exp(float(np.mean(np.log(floored))))
    arithmetic = float(np.mean(floored))
    return min(geometric / arithmetic, 1.0)


def calculate_spectral_rolloff(frequency_data: ByteFrame, sample_rate: int = SAMPLE_RATE,
                               fft_size: int = FFT_SIZE, percentile: float = 0.85) -> float:
    if not 0.0 <= percentile <= 1.0:
        raise ValueError(f"percentile must be within [0, 1], got {percentile}")
    mag = _as_bytes(frequency_data)
    n = mag.size
    if n == 0:
        return 0.0
    cumulative = np.cumsum(mag, dtype=np.int64)
    total = int(cumulative[-1])
    if total == 0:
        return frequency_for_index(n - 1, fft_size, sample_rate)
    idx = int(np.searchsorted(cumulative, total * percentile, side="left"))
    return frequency_for_index(min(idx, n - 1), fft_size, sample_rate)


def calculate_band_averages(frequency_data: ByteFrame, sample_rate: int = SAMPLE_RATE,
                            fft_size: int = FFT_SIZE) -> Mapping[str, float]:
    mag = _as_bytes(frequency_data)
    n = mag.size
    results = {}
    for name, (low, high) in FREQUENCY_BANDS.items():
        lo = index_for_frequency(low, fft_size, sample_rate)
        hi = min(index_for_frequency(high, fft_size, sample_rate), n - 1)
        if lo > hi:
            results[name] = 0.0
        else:
            results[name] = float(mag[lo:hi + 1].mean())
    return MappingProxyType(results)


def calculate_audio_stats(frequency_data: ByteFrame, time_domain: Optional[ByteFrame] = None,
                          sample_rate: int = SAMPLE_RATE, fft_size: int = FFT_SIZE) -> AudioStatistics:
    """Full statistics snapshot of one frame.

    Level statistics are only filled in when a time-domain frame is given.
    """
    mag = _as_bytes(frequency_data)
    if mag.size:
        total = float(mag.sum(dtype=np.int64))
        freq_range = FrequencyRange(
            min=float(mag.min()),
            max=float(mag.max()),
            avg=total / mag.size,
            total=total,
        )
    else:
        freq_range = FrequencyRange()

    level = LevelStats()
    if time_domain is not None:
        td = _as_bytes(time_domain)
        if td.size:
            level = LevelStats(
                rms=calculate_rms(td),
                peak=calculate_peak(td),
                avg=float(td.mean()),
            )

    return AudioStatistics(
        frequency_range=freq_range,
        level=level,
        band_energies=calculate_band_averages(mag, sample_rate, fft_size),
        spectral=SpectralStats(
            centroid=calculate_spectral_centroid(mag, sample_rate, fft_size),
            flatness=calculate_spectral_flatness(mag),
            rolloff=calculate_spectral_rolloff(mag, sample_rate, fft_size),
        ),
    )


# ---------- Circular bars ----------

def create_circular_visualization_data(frequency_data: ByteFrame, num_bars: int = AUDIO_CONSTANTS["NUM_BARS"],
                                       previous: Optional[ByteFrame] = None,
                                       smoothing_factor: float = 0.7,
                                       log_scaling: bool = True,
                                       min_bar_height: float = 0.05,
                                       max_bar_height: float = 1.0,
                                       sample_rate: int = SAMPLE_RATE,
                                       fft_size: int = FFT_SIZE) -> Tuple[BarDatum, ...]:
    """Reduce a frequency frame to ``num_bars`` bars laid out around a circle.

    Each bar averages an equal-width run of normalised bins, is clamped to
    ``[min_bar_height, max_bar_height]`` and eased with ``x ** 1.5``; the eased
    height is clamped again so quiet bars sit on the floor. ``previous`` (if
    given) is blended in first with ``smoothing_factor``.
    """
    if num_bars < 1:
        raise ValueError("num_bars must be at least 1")
    if not 0.0 <= min_bar_height <= max_bar_height:
        raise ValueError("expected 0 <= min_bar_height <= max_bar_height")

    frame = _as_bytes(frequency_data)
    if previous is not None:
        frame = smooth_frequency_data(frame, previous, smoothing_factor)
    source = apply_log_scaling(frame) if log_scaling else frame
    normalized = normalize_frequency_data(source)

    step = normalized.size // num_bars
    if step > 0:
        raw_values = normalized[:step * num_bars].reshape(num_bars, step).mean(axis=1)
    else:
        raw_values = np.zeros(num_bars, dtype=np.float64)

    heights = np.clip(raw_values, min_bar_height, max_bar_height) ** BAR_EASING_EXPONENT
    heights = np.clip(heights, min_bar_height, max_bar_height)

    two_pi = 2.0 * math.pi
    return tuple(
        BarDatum(
            index=i,
            angle=i / num_bars * two_pi,
            height=float(heights[i]),
            frequency=frequency_for_index(i * step + step / 2, fft_size, sample_rate),
            raw_value=float(raw_values[i]),
        )
        for i in range(num_bars)
    )


# ---------- Misc helpers ----------

def detect_beat(current: ByteFrame, previous: Optional[ByteFrame], threshold: float = 1.3) -> BeatInfo:
    """Flag a beat when average energy jumps by more than ``threshold``x."""
    if previous is None:
        return BeatInfo(is_beat=False, intensity=0.0)
    cur = _as_bytes(current)
    prev = _as_bytes(previous)
    if prev.shape != cur.shape:
        raise BufferLengthMismatch(cur.size, prev.size)
    if cur.size == 0:
        return BeatInfo(is_beat=False, intensity=0.0)
    energy = float(cur.mean())
    previous_energy = float(prev.mean())
    intensity = energy / (previous_energy or 1.0)
    return BeatInfo(
        is_beat=intensity > threshold,
        intensity=intensity,
        energy=energy,
        previous_energy=previous_energy,
    )


def format_frequency(frequency: float) -> str:
    if frequency >= 1000:
        return f"{frequency / 1000:.1f} kHz"
    return f"{int(math.floor(frequency + 0.5))} Hz"


def format_decibels(db: float) -> str:
    return f"{db:.1f} dB"
