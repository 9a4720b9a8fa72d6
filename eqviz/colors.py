"""Frequency -> colour mapping for the equalizer bars.

Hue follows frequency linearly (0 Hz red, 20 kHz back to red); saturation
and lightness follow the bar intensity.
"""
import math
from typing import List, Tuple

HUE_SPAN_HZ = 20000.0

HSL = Tuple[float, float, float]
RGB = Tuple[int, int, int]
RGBA = Tuple[int, int, int, int]


def _round(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def frequency_hue(frequency: float) -> float:
    return (frequency / HUE_SPAN_HZ) * 360.0 % 360.0


def frequency_hsl(frequency: float, intensity: float = 0.5) -> HSL:
    intensity = _clamp01(intensity)
    return frequency_hue(frequency), 70.0 + 30.0 * intensity, 40.0 + 40.0 * intensity


def hsl_to_rgb(hue: float, saturation: float, lightness: float) -> RGB:
    """Standard HSL -> RGB. ``hue`` in degrees, the other two in percent."""
    h = (hue % 360.0) / 360.0
    s = saturation / 100.0
    l = lightness / 100.0

    chroma = (1 - abs(2 * l - 1)) * s
    x = chroma * (1 - abs((h * 6) % 2 - 1))
    m = l - chroma / 2

    if h < 1 / 6:
        r, g, b = chroma, x, 0.0
    elif h < 2 / 6:
        r, g, b = x, chroma, 0.0
    elif h < 3 / 6:
        r, g, b = 0.0, chroma, x
    elif h < 4 / 6:
        r, g, b = 0.0, x, chroma
    elif h < 5 / 6:
        r, g, b = x, 0.0, chroma
    else:
        r, g, b = chroma, 0.0, x
    return _round((r + m) * 255), _round((g + m) * 255), _round((b + m) * 255)


def frequency_color(frequency: float, intensity: float = 0.5, mode: str = "hsl"):
    """Colour for a frequency.

    mode 'hsl' -> (h, s, l); 'rgb' -> (r, g, b); 'gradient' -> dict with
    'start' and 'end' HSL tuples, the end shifted 60 degrees and 20% lighter.
    """
    hue, sat, light = frequency_hsl(frequency, intensity)
    if mode == "hsl":
        return hue, sat, light
    if mode == "rgb":
        return hsl_to_rgb(hue, sat, light)
    if mode == "gradient":
        return {
            "start": (hue, sat, light),
            "end": ((hue + 60.0) % 360.0, sat, light + 20.0),
        }
    raise ValueError(f"unknown colour mode: {mode!r}")


def frequency_gradient_stops(frequency: float, intensity: float) -> List[Tuple[float, RGBA]]:
    """Three (offset, rgba) stops along a bar, from its root to its tip."""
    intensity = _clamp01(intensity)
    hue = frequency_hue(frequency)
    sat = 70.0 + 30.0 * intensity
    stops = []
    for offset, shift, light, alpha in (
        (0.0, 0.0, 50.0, 0.5 + intensity * 0.5),
        (0.5, 30.0, 60.0, 0.4 + intensity * 0.4),
        (1.0, 60.0, 70.0, 0.3 + intensity * 0.3),
    ):
        r, g, b = hsl_to_rgb(hue + shift, sat, light)
        stops.append((offset, (r, g, b, _round(alpha * 255))))
    return stops


def hsl_string(color: HSL) -> str:
    h, s, l = color
    return f"hsl({h:g}, {s:g}%, {l:g}%)"
