"""Shared fixtures for the slot compositor test suite."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Tuple

import cv2
import numpy as np
import pytest

from slot_compositor.config import AppConfig
from slot_compositor.models import Canvas, MediaAsset, Slot


@pytest.fixture
def default_config() -> AppConfig:
    """Return a default AppConfig with no file."""
    return AppConfig()


@pytest.fixture
def tmp_config(tmp_path: Path) -> AppConfig:
    """AppConfig writing everything under tmp_path."""
    config = AppConfig()
    config.paths.output_dir = tmp_path / "out"
    config.paths.scratch_dir = tmp_path / "scratch"
    return config


@pytest.fixture
def write_image(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a solid-color image (BGR or BGRA) and returning its path."""

    def _write(name: str, size: Tuple[int, int], color: Tuple[int, ...]) -> Path:
        width, height = size
        pixels = np.zeros((height, width, len(color)), dtype=np.uint8)
        pixels[:] = color
        path = tmp_path / name
        assert cv2.imwrite(str(path), pixels)
        return path

    return _write


@pytest.fixture
def scenario_slot() -> Slot:
    return Slot(id="a", x=200, y=200, width=400, height=300)


@pytest.fixture
def portrait_canvas() -> Canvas:
    return Canvas(800, 1200)


@pytest.fixture
def sample_template(tmp_path: Path, write_image: Callable[..., Path]) -> Path:
    """Write a two-slot template (one duplicate) with a transparent-window overlay."""
    overlay = np.zeros((400, 300, 4), dtype=np.uint8)
    overlay[:20, :, :] = (0, 0, 255, 255)
    cv2.imwrite(str(tmp_path / "frame.png"), overlay)
    tpl = tmp_path / "strip.yaml"
    tpl.write_text(
        "id: strip\n"
        "name: Photo Strip\n"
        "canvasWidth: 300\n"
        "canvasHeight: 400\n"
        "overlayPath: frame.png\n"
        "slots:\n"
        "  - {id: top, x: 20, y: 30, width: 260, height: 160}\n"
        "  - {id: bottom, x: 20, y: 210, width: 260, height: 160, rotation: 5, duplicateOfSlotId: top}\n"
    )
    return tpl


@pytest.fixture
def sample_asset(write_image: Callable[..., Path]) -> MediaAsset:
    return MediaAsset(slot_id="top", image_path=write_image("top.png", (640, 480), (0, 200, 0)))
