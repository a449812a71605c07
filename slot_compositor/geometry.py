"""Cover-fit, rotated bounding box and placement math.

Everything here is a pure function of its arguments. Both the raster
compositor and the filter-graph builder go through these helpers so the two
render paths agree on every slot, including the equal-aspect boundary.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import InvalidGeometry
from .models import Slot


@dataclass(frozen=True)
class CoverDimensions:
    draw_width: float
    draw_height: float


@dataclass(frozen=True)
class BoundingBox:
    bounding_width: float
    bounding_height: float


@dataclass(frozen=True)
class Placement:
    placement_x: float
    placement_y: float


@dataclass(frozen=True)
class Transform:
    cover_width: float
    cover_height: float
    bounding_width: float
    bounding_height: float
    placement_x: float
    placement_y: float


def _require_positive(**dims: float) -> None:
    for name, value in dims.items():
        if not value > 0:
            raise InvalidGeometry(f"{name} must be positive, got {value}")


def _require_non_negative(**dims: float) -> None:
    for name, value in dims.items():
        if value < 0:
            raise InvalidGeometry(f"{name} must not be negative, got {value}")


def compute_cover_dimensions(source_w: float, source_h: float, target_w: float, target_h: float) -> CoverDimensions:
    """Scale a source so it covers ``target_w`` x ``target_h`` with minimum excess.

    A relatively wider source matches the target height and overflows in
    width; otherwise (equal aspect included) it matches the width. The
    aspect comparison is done by cross-multiplication so integer sizes
    compare exactly.
    """

    _require_positive(source_w=source_w, source_h=source_h, target_w=target_w, target_h=target_h)
    source_aspect = source_w / source_h
    if source_w * target_h > target_w * source_h:
        draw_height = float(target_h)
        draw_width = max(float(target_w), target_h * source_aspect)
    else:
        draw_width = float(target_w)
        draw_height = max(float(target_h), target_w / source_aspect)
    return CoverDimensions(draw_width=draw_width, draw_height=draw_height)


def _quarter_turns(angle_degrees: float) -> Optional[int]:
    turns = angle_degrees / 90.0
    if turns == int(turns):
        return int(turns) % 4
    return None


def compute_rotated_bounding_box(width: float, height: float, angle_degrees: float) -> BoundingBox:
    """Axis-aligned box of a ``width`` x ``height`` rectangle rotated about its center.

    Uses ``w*|cos| + h*|sin|`` for the width and ``w*|sin| + h*|cos|`` for
    the height. Quarter turns are resolved exactly.
    """

    _require_non_negative(width=width, height=height)
    turns = _quarter_turns(angle_degrees)
    if turns is not None:
        if turns % 2:
            return BoundingBox(bounding_width=float(height), bounding_height=float(width))
        return BoundingBox(bounding_width=float(width), bounding_height=float(height))
    rad = angle_degrees * math.pi / 180.0
    cos_a = abs(math.cos(rad))
    sin_a = abs(math.sin(rad))
    return BoundingBox(
        bounding_width=width * cos_a + height * sin_a,
        bounding_height=width * sin_a + height * cos_a,
    )


def compute_placement_offset(slot: Slot, bounding_width: float, bounding_height: float) -> Placement:
    """Top-left corner for a rotated box so the slot's center stays put."""

    offset_x = (bounding_width - slot.width) / 2.0
    offset_y = (bounding_height - slot.height) / 2.0
    return Placement(placement_x=slot.x - offset_x, placement_y=slot.y - offset_y)


def compute_transform(slot: Slot, source_w: float, source_h: float) -> Transform:
    slot.validate()
    cover = compute_cover_dimensions(source_w, source_h, slot.width, slot.height)
    box = compute_rotated_bounding_box(slot.width, slot.height, slot.rotation)
    placement = compute_placement_offset(slot, box.bounding_width, box.bounding_height)
    return Transform(
        cover_width=cover.draw_width,
        cover_height=cover.draw_height,
        bounding_width=box.bounding_width,
        bounding_height=box.bounding_height,
        placement_x=placement.placement_x,
        placement_y=placement.placement_y,
    )


def contain_fit(
    source_w: float,
    source_h: float,
    canvas_w: float,
    canvas_h: float,
    tolerance: float = 0.01,
) -> Tuple[float, float, float, float]:
    """Place a frame overlay on the canvas as ``(x, y, w, h)``.

    Near-matching aspects (within ``tolerance``) stretch to the full canvas;
    otherwise the overlay is scaled to fit inside and centered.
    """

    _require_positive(source_w=source_w, source_h=source_h, canvas_w=canvas_w, canvas_h=canvas_h)
    source_aspect = source_w / source_h
    canvas_aspect = canvas_w / canvas_h
    if abs(source_aspect - canvas_aspect) <= tolerance:
        return (0.0, 0.0, float(canvas_w), float(canvas_h))
    if source_aspect > canvas_aspect:
        fit_h = canvas_w / source_aspect
        return (0.0, (canvas_h - fit_h) / 2.0, float(canvas_w), fit_h)
    fit_w = canvas_h * source_aspect
    return ((canvas_w - fit_w) / 2.0, 0.0, fit_w, float(canvas_h))


def ceil_px(value: float, eps: float = 1e-6) -> int:
    """Round up to whole pixels, ignoring float noise just above an integer."""

    return int(math.ceil(value - eps))
