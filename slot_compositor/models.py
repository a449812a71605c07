"""Slots, canvases and captured media records."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .errors import InvalidGeometry

# camelCase keys written by the booth editor
_ALIASES = {
    "duplicateOfSlotId": "duplicate_of",
    "duplicate_of_slot_id": "duplicate_of",
    "slotId": "slot_id",
    "imagePath": "image_path",
    "videoPath": "video_path",
    "overlayPath": "overlay_path",
    "canvasWidth": "canvas_width",
    "canvasHeight": "canvas_height",
}


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_ALIASES.get(key, key): value for key, value in data.items()}


@dataclass(frozen=True)
class Canvas:
    width: int
    height: int

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InvalidGeometry(f"Canvas must have positive size, got {self.width}x{self.height}")

    @property
    def aspect(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class Slot:
    """Unrotated rectangle in canvas pixels; ``x``/``y`` is the top-left corner.

    ``rotation`` is in degrees, clockwise positive, about the rectangle's
    center. A slot with ``duplicate_of`` set shows the media captured for the
    referenced slot with its own geometry.
    """

    id: str
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0
    duplicate_of: Optional[str] = None

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def source_id(self) -> str:
        return self.duplicate_of or self.id

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InvalidGeometry(
                f"Slot '{self.id}' must have positive size, got {self.width}x{self.height}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Slot":
        values = _normalize_keys(data)
        duplicate_of = values.get("duplicate_of")
        return cls(
            id=str(values["id"]),
            x=float(values.get("x", 0.0)),
            y=float(values.get("y", 0.0)),
            width=float(values["width"]),
            height=float(values["height"]),
            rotation=float(values.get("rotation") or 0.0),
            duplicate_of=str(duplicate_of) if duplicate_of not in (None, "") else None,
        )


@dataclass(frozen=True)
class MediaAsset:
    slot_id: str
    image_path: Path
    video_path: Optional[Path] = None
    timestamp: Optional[float] = None  # capture time, epoch seconds

    @property
    def has_video(self) -> bool:
        return self.video_path is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MediaAsset":
        values = _normalize_keys(data)
        video = values.get("video_path")
        stamp = values.get("timestamp")
        return cls(
            slot_id=str(values["slot_id"]),
            image_path=Path(values["image_path"]),
            video_path=Path(video) if video else None,
            timestamp=float(stamp) if stamp is not None else None,
        )


@dataclass
class FrameTemplate:
    id: str
    name: str
    canvas: Canvas
    slots: List[Slot] = field(default_factory=list)
    overlay_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_dir: Optional[Path] = None) -> "FrameTemplate":
        values = _normalize_keys(data)
        overlay = values.get("overlay_path")
        overlay_path: Optional[Path] = None
        if overlay:
            overlay_path = Path(overlay)
            if base_dir is not None and not overlay_path.is_absolute():
                overlay_path = base_dir / overlay_path
        return cls(
            id=str(values.get("id", "frame")),
            name=str(values.get("name", values.get("id", "frame"))),
            canvas=Canvas(int(values["canvas_width"]), int(values["canvas_height"])),
            slots=[Slot.from_dict(item) for item in values.get("slots") or []],
            overlay_path=overlay_path,
        )


def load_template(path: Path | str) -> FrameTemplate:
    """Load a frame template from YAML or JSON.

    Relative overlay paths resolve against the template's directory.
    """

    tpl_path = Path(path)
    data = yaml.safe_load(tpl_path.read_text()) or {}
    if not isinstance(data, dict):
        raise InvalidGeometry(f"Frame template {tpl_path} is not a mapping")
    try:
        return FrameTemplate.from_dict(data, base_dir=tpl_path.parent)
    except KeyError as exc:
        raise InvalidGeometry(f"Frame template {tpl_path} is missing {exc}") from exc


def load_assets(items: List[Mapping[str, Any]]) -> List[MediaAsset]:
    return [MediaAsset.from_dict(item) for item in items]
