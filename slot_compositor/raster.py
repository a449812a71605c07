"""Still-image compositor working directly on pixel buffers."""
from __future__ import annotations

import math
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from loguru import logger

from .config import AppConfig, RasterConfig
from .errors import InvalidGeometry, NoContent
from .filters import ColorFilter, apply_color_filter, parse_color_filter
from .geometry import ceil_px, compute_cover_dimensions, compute_placement_offset, compute_rotated_bounding_box, contain_fit
from .io import ensure_dir
from .layout import resolve_layers
from .models import Canvas, MediaAsset, Slot

FilterLike = Union[ColorFilter, str, None]


def load_image(path: Path) -> Optional[np.ndarray]:
    """Decode ``path`` to BGRA ``uint8``; ``None`` when it cannot be read.

    Sources without alpha are decoded upright according to their EXIF
    orientation, the way camera JPEGs are meant to be displayed.
    """

    pixels = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if pixels is None:
        return None
    if pixels.ndim == 2 or pixels.shape[2] == 3:
        # IMREAD_UNCHANGED skips the EXIF rotation; IMREAD_COLOR applies it
        upright = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if upright is not None:
            return cv2.cvtColor(upright, cv2.COLOR_BGR2BGRA)
    if pixels.dtype != np.uint8:
        pixels = cv2.convertScaleAbs(pixels, alpha=255.0 / float(np.iinfo(pixels.dtype).max))
    if pixels.ndim == 2:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGRA)
    if pixels.shape[2] == 3:
        return cv2.cvtColor(pixels, cv2.COLOR_BGR2BGRA)
    return pixels


def cover_crop(source: np.ndarray, width: int, height: int) -> np.ndarray:
    """Scale ``source`` to cover ``width`` x ``height`` and center-crop to it."""

    src_h, src_w = source.shape[:2]
    cover = compute_cover_dimensions(src_w, src_h, width, height)
    draw_w = ceil_px(cover.draw_width)
    draw_h = ceil_px(cover.draw_height)
    shrinking = draw_w < src_w or draw_h < src_h
    scaled = cv2.resize(source, (draw_w, draw_h), interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR)
    left = (draw_w - width) // 2
    top = (draw_h - height) // 2
    return scaled[top : top + height, left : left + width]


def _rotation_matrix(angle_degrees: float, src_center: Tuple[float, float], dst_center: Tuple[float, float]) -> np.ndarray:
    # clockwise on screen (y axis points down)
    rad = math.radians(angle_degrees)
    c, s = math.cos(rad), math.sin(rad)
    sx, sy = src_center
    dx, dy = dst_center
    return np.array(
        [
            [c, -s, dx - (c * sx - s * sy)],
            [s, c, dy - (s * sx + c * sy)],
        ],
        dtype=np.float64,
    )


def blend_rgba(dest: np.ndarray, layer: np.ndarray, x: int, y: int) -> None:
    """Alpha-blend BGRA ``layer`` onto BGR ``dest`` in place at ``(x, y)``, clipped to ``dest``."""

    dest_h, dest_w = dest.shape[:2]
    layer_h, layer_w = layer.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + layer_w, dest_w), min(y + layer_h, dest_h)
    if x1 <= x0 or y1 <= y0:
        return
    patch = layer[y0 - y : y1 - y, x0 - x : x1 - x].astype(np.float32)
    alpha = patch[..., 3:4] / 255.0
    region = dest[y0:y1, x0:x1].astype(np.float32)
    blended = patch[..., :3] * alpha + region * (1.0 - alpha)
    dest[y0:y1, x0:x1] = np.rint(blended).astype(np.uint8)


def render_slot(dest: np.ndarray, source: np.ndarray, slot: Slot, color_filter: Optional[ColorFilter] = None) -> None:
    """Draw ``source`` cover-fitted into ``slot``, rotated about the slot center."""

    width = max(1, int(round(slot.width)))
    height = max(1, int(round(slot.height)))
    crop = apply_color_filter(cover_crop(source, width, height), color_filter)

    box = compute_rotated_bounding_box(slot.width, slot.height, slot.rotation)
    placement = compute_placement_offset(slot, box.bounding_width, box.bounding_height)
    x0 = math.floor(placement.placement_x)
    y0 = math.floor(placement.placement_y)
    roi_w = max(1, ceil_px(placement.placement_x + box.bounding_width) - x0)
    roi_h = max(1, ceil_px(placement.placement_y + box.bounding_height) - y0)

    center_x, center_y = slot.center
    # pixel centers sit at integer coordinates in OpenCV's convention
    matrix = _rotation_matrix(
        slot.rotation,
        ((width - 1) / 2.0, (height - 1) / 2.0),
        (center_x - 0.5 - x0, center_y - 0.5 - y0),
    )
    layer = cv2.warpAffine(
        crop,
        matrix,
        (roi_w, roi_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 0),
    )
    blend_rgba(dest, layer, x0, y0)


def draw_frame_overlay(dest: np.ndarray, overlay: np.ndarray, tolerance: float = 0.01) -> None:
    canvas_h, canvas_w = dest.shape[:2]
    over_h, over_w = overlay.shape[:2]
    fx, fy, fw, fh = contain_fit(over_w, over_h, canvas_w, canvas_h, tolerance)
    size = (max(1, int(round(fw))), max(1, int(round(fh))))
    if size != (over_w, over_h):
        overlay = cv2.resize(overlay, size, interpolation=cv2.INTER_AREA)
    blend_rgba(dest, overlay, int(round(fx)), int(round(fy)))


def _coerce_filter(color_filter: FilterLike, config: AppConfig) -> Optional[ColorFilter]:
    if isinstance(color_filter, ColorFilter):
        return color_filter
    return parse_color_filter(config.resolve_filter(color_filter), config.filters)


def compose_canvas(
    canvas: Canvas,
    slots: Sequence[Slot],
    assets: Sequence[MediaAsset],
    frame_overlay_path: Optional[Path] = None,
    color_filter: FilterLike = None,
    config: Optional[AppConfig] = None,
) -> np.ndarray:
    """Render the composite as a BGR ``uint8`` array of the canvas size.

    Layers are drawn bottom to top in slot order; the color filter touches
    photo layers only, never the frame overlay.
    """

    config = config or AppConfig()
    raster: RasterConfig = config.raster
    canvas.validate()
    layers = resolve_layers(slots, assets)
    active_filter = _coerce_filter(color_filter, config)

    pixels = np.empty((canvas.height, canvas.width, 3), dtype=np.uint8)
    pixels[:] = raster.background_bgr()

    drawn = 0
    for layer in layers:
        source = load_image(layer.asset.image_path)
        if source is None:
            logger.warning("Skipping slot {}: cannot read {}", layer.slot.id, layer.asset.image_path)
            continue
        render_slot(pixels, source, layer.slot, active_filter)
        drawn += 1
    if layers and not drawn:
        raise NoContent("No slot media could be decoded")

    if frame_overlay_path is not None:
        overlay = load_image(Path(frame_overlay_path))
        if overlay is None:
            logger.warning("Frame overlay {} could not be read; composite has no frame", frame_overlay_path)
        else:
            draw_frame_overlay(pixels, overlay, raster.overlay_tolerance)
    return pixels


def encode_image(pixels: np.ndarray, raster: RasterConfig) -> bytes:
    if raster.format == "png":
        ok, buffer = cv2.imencode(".png", pixels)
    else:
        ok, buffer = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), raster.jpeg_quality])
    if not ok:
        raise ValueError(f"Failed to encode composite as {raster.format}")
    return buffer.tobytes()


def build_image_composite(
    canvas: Canvas,
    slots: Sequence[Slot],
    assets: Sequence[MediaAsset],
    frame_overlay_path: Optional[Path] = None,
    color_filter: FilterLike = None,
    config: Optional[AppConfig] = None,
) -> bytes:
    """Composite stills into one encoded image (JPEG unless configured as PNG)."""

    config = config or AppConfig()
    pixels = compose_canvas(canvas, slots, assets, frame_overlay_path, color_filter, config)
    return encode_image(pixels, config.raster)


THUMBNAIL_FITS = ("cover", "contain", "fill")


def make_thumbnail(
    source_path: Path,
    output_path: Path,
    width: int,
    height: int,
    fit: str = "cover",
    config: Optional[AppConfig] = None,
) -> Path:
    """Resize one image to ``width`` x ``height`` and write it to ``output_path``.

    ``cover`` center-crops, ``contain`` letterboxes on the raster background
    and ``fill`` stretches. PNG output follows the ``.png`` suffix; anything
    else is written as JPEG.
    """

    if fit not in THUMBNAIL_FITS:
        raise ValueError(f"fit must be one of {', '.join(THUMBNAIL_FITS)}, got '{fit}'")
    if width <= 0 or height <= 0:
        raise InvalidGeometry(f"Thumbnail must have positive size, got {width}x{height}")
    config = config or AppConfig()
    source = load_image(Path(source_path))
    if source is None:
        raise NoContent(f"Cannot read {source_path}")

    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:] = config.raster.background_bgr()
    if fit == "cover":
        blend_rgba(pixels, cover_crop(source, width, height), 0, 0)
    elif fit == "fill":
        blend_rgba(pixels, cv2.resize(source, (width, height), interpolation=cv2.INTER_AREA), 0, 0)
    else:
        src_h, src_w = source.shape[:2]
        fx, fy, fw, fh = contain_fit(src_w, src_h, width, height, tolerance=0.0)
        size = (max(1, int(round(fw))), max(1, int(round(fh))))
        blend_rgba(pixels, cv2.resize(source, size, interpolation=cv2.INTER_AREA), int(round(fx)), int(round(fy)))

    output_path = Path(output_path)
    fmt = "png" if output_path.suffix.lower() == ".png" else "jpeg"
    data = encode_image(pixels, config.raster.model_copy(update={"format": fmt}))
    ensure_dir(output_path.parent)
    output_path.write_bytes(data)
    logger.debug("Thumbnail {} -> {} ({}x{}, {})", source_path, output_path, width, height, fit)
    return output_path
