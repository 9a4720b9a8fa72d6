"""Synthetic frequency frames for running the visualizer without a microphone."""
from typing import Optional

import numpy as np

PATTERN_KINDS = ("sine", "pulse", "random")
PULSES_PER_FRAME = 4


def generate_test_data(length: int = 256, kind: str = "sine", frequency: float = 440.0,
                       rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Build a uint8 frame of ``length`` samples.

    'sine' is a sine across the frame whose cycle count scales with
    ``frequency``; 'pulse' is a slow sine with uniform noise on top; 'random'
    is uniform noise. Any other kind gives silence (all 128).
    """
    if length < 0:
        raise ValueError("length must be >= 0")
    pos = np.arange(length, dtype=np.float64) / max(length, 1)

    if kind == "sine":
        value = np.sin(pos * 2 * np.pi * frequency / 1000.0) * 0.5 + 0.5
        data = np.floor(value * 255)
    elif kind == "random":
        rng = rng or np.random.default_rng()
        data = np.floor(rng.random(length) * 255)
    elif kind == "pulse":
        rng = rng or np.random.default_rng()
        pulse = np.sin(pos * 2 * np.pi * PULSES_PER_FRAME) * 0.5 + 0.5
        noise = rng.random(length) * 0.3
        data = np.floor((pulse + noise) * 127.5)
    else:
        data = np.full(length, 128)
    return np.clip(data, 0, 255).astype(np.uint8)
