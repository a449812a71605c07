"""CSS-style color filters for photo layers.

A filter is an ordered chain of ``grayscale``, ``sepia``, ``saturate``,
``hue-rotate``, ``brightness`` and ``contrast`` steps using the W3C Filter
Effects matrices, so a preset renders the same as it previews in a browser.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np

PRESETS = {
    "none": "none",
    "grayscale": "grayscale(100%)",
    "sepia": "sepia(80%)",
    "warm": "saturate(1.3) hue-rotate(-10deg)",
    "cool": "saturate(1.1) hue-rotate(10deg)",
    "vintage": "contrast(1.1) brightness(0.9) sepia(30%)",
}

_FUNCTIONS = {"grayscale", "sepia", "saturate", "hue-rotate", "brightness", "contrast"}
_STEP_RE = re.compile(r"([a-z-]+)\(\s*([-+]?[0-9]*\.?[0-9]+)\s*(%|deg|rad|turn)?\s*\)")


@dataclass(frozen=True)
class ColorFilter:
    steps: Tuple[Tuple[str, float], ...] = ()

    @property
    def is_identity(self) -> bool:
        return not self.steps

    def css(self) -> str:
        if not self.steps:
            return "none"
        parts = []
        for name, amount in self.steps:
            if name == "hue-rotate":
                parts.append(f"{name}({amount:g}deg)")
            else:
                parts.append(f"{name}({amount:g})")
        return " ".join(parts)


def _parse_amount(name: str, number: str, unit: Optional[str]) -> float:
    value = float(number)
    if name == "hue-rotate":
        if unit == "rad":
            return math.degrees(value)
        if unit == "turn":
            return value * 360.0
        if unit not in (None, "deg"):
            raise ValueError(f"hue-rotate takes an angle, got '{number}{unit}'")
        return value
    if unit == "%":
        return value / 100.0
    if unit is not None:
        raise ValueError(f"{name} takes a number or percentage, got '{number}{unit}'")
    return value


def parse_color_filter(raw: Optional[str], presets: Optional[Mapping[str, str]] = None) -> ColorFilter:
    """Parse a preset name or a CSS filter string into a :class:`ColorFilter`."""

    if raw is None:
        return ColorFilter()
    table = {**PRESETS, **(presets or {})}
    text = table.get(raw.strip(), raw).strip()
    if not text or text == "none":
        return ColorFilter()

    steps = []
    pos = 0
    for match in _STEP_RE.finditer(text):
        if text[pos : match.start()].strip():
            break
        name, number, unit = match.groups()
        if name not in _FUNCTIONS:
            raise ValueError(f"Unknown color filter function '{name}'")
        steps.append((name, _parse_amount(name, number, unit)))
        pos = match.end()
    if not steps or text[pos:].strip():
        raise ValueError(f"Unknown color filter '{raw}'")
    return ColorFilter(steps=tuple(steps))


def _grayscale(amount: float) -> np.ndarray:
    a = 1.0 - min(max(amount, 0.0), 1.0)
    return np.array(
        [
            [0.2126 + 0.7874 * a, 0.7152 - 0.7152 * a, 0.0722 - 0.0722 * a],
            [0.2126 - 0.2126 * a, 0.7152 + 0.2848 * a, 0.0722 - 0.0722 * a],
            [0.2126 - 0.2126 * a, 0.7152 - 0.7152 * a, 0.0722 + 0.9278 * a],
        ],
        dtype=np.float32,
    )


def _sepia(amount: float) -> np.ndarray:
    a = 1.0 - min(max(amount, 0.0), 1.0)
    return np.array(
        [
            [0.393 + 0.607 * a, 0.769 - 0.769 * a, 0.189 - 0.189 * a],
            [0.349 - 0.349 * a, 0.686 + 0.314 * a, 0.168 - 0.168 * a],
            [0.272 - 0.272 * a, 0.534 - 0.534 * a, 0.131 + 0.869 * a],
        ],
        dtype=np.float32,
    )


def _saturate(s: float) -> np.ndarray:
    s = max(s, 0.0)
    return np.array(
        [
            [0.213 + 0.787 * s, 0.715 - 0.715 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 + 0.285 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 - 0.715 * s, 0.072 + 0.928 * s],
        ],
        dtype=np.float32,
    )


def _hue_rotate(degrees: float) -> np.ndarray:
    rad = math.radians(degrees)
    c, s = math.cos(rad), math.sin(rad)
    return np.array(
        [
            [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
            [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
            [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
        ],
        dtype=np.float32,
    )


_MATRICES = {
    "grayscale": _grayscale,
    "sepia": _sepia,
    "saturate": _saturate,
    "hue-rotate": _hue_rotate,
}


def apply_color_filter(pixels: np.ndarray, color_filter: Optional[ColorFilter]) -> np.ndarray:
    """Apply ``color_filter`` to BGR or BGRA ``uint8`` pixels; alpha is kept."""

    if color_filter is None or color_filter.is_identity:
        return pixels
    rgb = pixels[..., 2::-1].astype(np.float32)
    for name, amount in color_filter.steps:
        if name in _MATRICES:
            rgb = rgb @ _MATRICES[name](amount).T
        elif name == "brightness":
            rgb = rgb * max(amount, 0.0)
        elif name == "contrast":
            amount = max(amount, 0.0)
            rgb = rgb * amount + 255.0 * (0.5 - 0.5 * amount)
        np.clip(rgb, 0.0, 255.0, out=rgb)
    out = pixels.copy()
    out[..., :3] = np.rint(rgb[..., ::-1]).astype(np.uint8)
    return out
