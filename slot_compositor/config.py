"""Configuration models and loader for the slot compositor."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class PathsConfig(BaseModel):
    output_dir: Path = Field(Path("out"), description="Base directory for composites and reports.")
    scratch_dir: Optional[Path] = Field(None, description="Parent of per-job scratch directories; system temp when unset.")
    frames_dir: Path = Field(Path("frames"), description="Directory holding frame templates and overlays.")


class RenderConfig(BaseModel):
    ffmpeg: str = Field("ffmpeg", description="ffmpeg executable.")
    ffprobe: str = Field("ffprobe", description="ffprobe executable.")
    video_codec: str = Field("libx264")
    preset: str = Field("veryfast")
    crf: int = Field(23, ge=0, le=51)
    pix_fmt: str = Field("yuv420p")
    fps: float = Field(30.0, gt=0.0)
    max_duration: float = Field(5.0, gt=0.0, description="Output duration ceiling in seconds.")
    background: str = Field("black@0.0", description="lavfi color of the base canvas.")


class RasterConfig(BaseModel):
    background: str = Field("#ffffff", description="Canvas fill under the photo layers.")
    format: str = Field("jpeg", description="Encoded output: 'jpeg' or 'png'.")
    jpeg_quality: int = Field(95, ge=1, le=100)
    overlay_tolerance: float = Field(0.01, ge=0.0, description="Aspect mismatch below which the overlay is stretched.")

    @field_validator("format")
    @classmethod
    def validate_format(cls, value: str) -> str:
        value = value.lower()
        if value == "jpg":
            value = "jpeg"
        if value not in {"jpeg", "png"}:
            raise ValueError("format must be 'jpeg' or 'png'")
        return value

    @field_validator("background")
    @classmethod
    def validate_background(cls, value: str) -> str:
        hex_part = value.lstrip("#")
        if len(hex_part) != 6 or any(c not in "0123456789abcdefABCDEF" for c in hex_part):
            raise ValueError("background must be a #rrggbb color")
        return f"#{hex_part.lower()}"

    def background_bgr(self) -> tuple[int, int, int]:
        hex_part = self.background.lstrip("#")
        r, g, b = (int(hex_part[i : i + 2], 16) for i in (0, 2, 4))
        return (b, g, r)


class GifConfig(BaseModel):
    delay_ms: int = Field(500, ge=10, description="Delay between frames.")
    width: Optional[int] = Field(800, ge=16, description="Output width; height keeps the aspect. None keeps the source size.")
    bayer_scale: int = Field(5, ge=0, le=5)


class JobsConfig(BaseModel):
    workers: int = Field(2, ge=1, description="Parallel workers for batch composites.")
    max_concurrent: int = Field(1, ge=1, description="Video pipelines allowed in flight at once.")


class PrintConfig(BaseModel):
    command: list[str] = Field(
        default_factory=lambda: ["lp", "{path}"],
        description="Print command; '{path}' is replaced by the file to print.",
    )
    printer: Optional[str] = Field(None, description="Named printer; the system default when unset.")
    printer_args: list[str] = Field(
        default_factory=lambda: ["-d", "{printer}"],
        description="Arguments inserted after the executable when a printer is named.",
    )
    copies: int = Field(1, ge=1, le=50)


class StorageConfig(BaseModel):
    primary_bucket: str = Field("exports", min_length=1, description="Bucket for composites and live videos.")
    fallback_bucket: str = Field("exports", min_length=1, description="Bucket for raw stills.")


class AppConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    raster: RasterConfig = Field(default_factory=RasterConfig)
    gif: GifConfig = Field(default_factory=GifConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    printer: PrintConfig = Field(default_factory=PrintConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    filters: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra named color filters as CSS filter strings; merged over the built-in presets.",
    )

    def resolve_filter(self, name: Optional[str]) -> Optional[str]:
        """Map a filter name to its CSS string, passing unknown names through."""

        if not name:
            return None
        return self.filters.get(name, name)

    @property
    def output_dir(self) -> Path:
        return self.paths.output_dir


def load_config(path: Path | str) -> AppConfig:
    """Load configuration from YAML, falling back to defaults when missing."""

    cfg_path = Path(path)
    if not cfg_path.exists():
        return AppConfig()
    data = yaml.safe_load(cfg_path.read_text()) or {}
    return AppConfig.model_validate(data)
