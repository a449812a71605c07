"""Capture, storage and print providers usable without booth hardware."""
from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from loguru import logger

from .config import PrintConfig
from .io import PipelineExecutionError, ensure_dir, run_command
from .models import MediaAsset
from .session import CameraUnavailable, PrintError, PrintOptions, UploadError


class MockCamera:
    """Copies a sample image per capture, or draws a placeholder when none is set."""

    def __init__(
        self,
        sample_image: Optional[Path] = None,
        sample_video: Optional[Path] = None,
        size: Tuple[int, int] = (1200, 800),
        connected: bool = True,
    ) -> None:
        self.sample_image = Path(sample_image) if sample_image else None
        self.sample_video = Path(sample_video) if sample_video else None
        self.size = size
        self.connected = connected
        self.capture_count = 0

    def _placeholder(self, slot_id: str) -> np.ndarray:
        width, height = self.size
        ramp = np.linspace(40, 215, width, dtype=np.uint8)
        pixels = np.zeros((height, width, 3), dtype=np.uint8)
        pixels[..., 0] = ramp
        pixels[..., 1] = (self.capture_count * 47) % 256
        pixels[..., 2] = ramp[::-1]
        cv2.putText(pixels, slot_id, (width // 10, height // 2), cv2.FONT_HERSHEY_SIMPLEX, 3.0, (255, 255, 255), 6)
        return pixels

    def capture(self, slot_id: str, output_path: Path) -> MediaAsset:
        if not self.connected:
            raise CameraUnavailable("Camera not connected")
        output_path = Path(output_path)
        ensure_dir(output_path.parent)
        if self.sample_image is not None and self.sample_image.exists():
            shutil.copyfile(self.sample_image, output_path)
        elif not cv2.imwrite(str(output_path), self._placeholder(slot_id)):
            raise CameraUnavailable(f"Could not write capture to {output_path}")

        video_path = None
        if self.sample_video is not None and self.sample_video.exists():
            video_path = output_path.with_suffix(self.sample_video.suffix)
            shutil.copyfile(self.sample_video, video_path)
        self.capture_count += 1
        logger.debug("Mock capture {} for slot {}", self.capture_count, slot_id)
        return MediaAsset(slot_id=slot_id, image_path=output_path, video_path=video_path, timestamp=time.time())


class DirectoryStorage:
    """Stores uploads under ``root/<bucket>`` and hands back ``file://`` URLs."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def upload(self, bucket: str, name: str, data: bytes) -> str:
        target = self.root / bucket / name
        try:
            ensure_dir(target.parent)
            target.write_bytes(data)
        except OSError as exc:
            raise UploadError(f"Could not store {bucket}/{name}: {exc}") from exc
        return target.resolve().as_uri()


class CommandPrinter:
    """Runs a print command once per copy, ``lp``-style by default."""

    def __init__(self, command: Sequence[str], printer_args: Sequence[str] = ("-d", "{printer}")) -> None:
        if not command:
            raise ValueError("print command must not be empty")
        self.command = list(command)
        self.printer_args = list(printer_args)

    @classmethod
    def from_config(cls, config: PrintConfig) -> "CommandPrinter":
        return cls(config.command, config.printer_args)

    def build_command(self, path: Path, options: Optional[PrintOptions] = None) -> list[str]:
        cmd = [part.replace("{path}", str(path)) for part in self.command]
        if not any("{path}" in part for part in self.command):
            cmd.append(str(path))
        if options is not None and options.printer:
            cmd[1:1] = [part.replace("{printer}", options.printer) for part in self.printer_args]
        return cmd

    def print_file(self, path: Path, options: Optional[PrintOptions] = None) -> None:
        options = options or PrintOptions()
        cmd = self.build_command(path, options)
        for copy in range(1, options.copies + 1):
            try:
                run_command(cmd)
            except PipelineExecutionError as exc:
                raise PrintError(f"Printing {path} (copy {copy}/{options.copies}) failed: {exc}") from exc
        logger.info("Sent {} x{} to printer {}", path, options.copies, options.printer or "(default)")
