"""Capture-to-upload orchestration for one booth session.

The session runs as an ordered list of fallible steps. Each step returns a
:class:`StepResult`; later steps check earlier results and take explicit
fallback branches instead of letting exceptions unwind the whole run:

* still composite fails -> the raw stills are still uploaded
* live video fails -> the session continues stills-only
* primary upload fails -> the raw stills are still tried as fallback uploads

The capture, storage and printer providers are plain attributes and may be
swapped between sessions; the compositing core never sees them.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, TypeVar

import cv2
from loguru import logger

from .config import AppConfig
from .errors import CompositorError
from .executor import composite_video
from .filters import ColorFilter
from .io import ensure_dir
from .models import FrameTemplate, MediaAsset
from .raster import build_image_composite

T = TypeVar("T")


class CameraUnavailable(CompositorError):
    pass


class UploadError(CompositorError):
    pass


class PrintError(CompositorError):
    pass


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    SAVING = "saving"
    UPLOADING_PRIMARY = "uploading_primary"
    UPLOADING_FALLBACK = "uploading_fallback"
    DONE = "done"
    FAILED = "failed"


@dataclass
class StepResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: T) -> "StepResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "StepResult[T]":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class PrintOptions:
    printer: Optional[str] = None
    copies: int = 1


class CaptureProvider(Protocol):
    def capture(self, slot_id: str, output_path: Path) -> MediaAsset:
        """Capture one still; the returned asset carries its capture ``timestamp``."""
        ...


class StorageProvider(Protocol):
    def upload(self, bucket: str, name: str, data: bytes) -> str:
        ...


class PrintProvider(Protocol):
    def print_file(self, path: Path, options: PrintOptions) -> None:
        ...


@dataclass
class SessionOutcome:
    session_id: str
    state: SessionState
    assets: List[MediaAsset] = field(default_factory=list)
    composite_path: Optional[Path] = None
    video_path: Optional[Path] = None
    printed: bool = False
    urls: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)


class SessionPipeline:
    def __init__(
        self,
        template: FrameTemplate,
        capture: CaptureProvider,
        storage: StorageProvider,
        printer: Optional[PrintProvider] = None,
        config: Optional[AppConfig] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.template = template
        self.capture = capture
        self.storage = storage
        self.printer = printer
        self.config = config or AppConfig()
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.history: List[SessionState] = [SessionState.IDLE]

    @property
    def state(self) -> SessionState:
        return self.history[-1]

    @property
    def work_dir(self) -> Path:
        return self.config.output_dir / "sessions" / self.session_id

    def _enter(self, state: SessionState) -> None:
        logger.debug("Session {}: {} -> {}", self.session_id, self.state.value, state.value)
        self.history.append(state)

    def _step(self, name: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> StepResult[T]:
        try:
            return StepResult.success(func(*args, **kwargs))
        except (CompositorError, OSError, ValueError, cv2.error) as exc:
            logger.warning("Session {}: {} failed: {}", self.session_id, name, exc)
            return StepResult.failure(exc)

    def capture_all(self) -> StepResult[List[MediaAsset]]:
        """Capture one still per slot; duplicate slots reuse their source's capture."""

        self._enter(SessionState.CAPTURING)
        prepared = self._step("prepare", ensure_dir, self.work_dir / "captures")
        if not prepared.ok:
            return StepResult.failure(prepared.error)
        assets: List[MediaAsset] = []
        for slot in self.template.slots:
            if slot.is_duplicate:
                continue
            target = self.work_dir / "captures" / f"{slot.id}.jpg"
            result = self._step(f"capture {slot.id}", self.capture.capture, slot.id, target)
            if not result.ok:
                return StepResult.failure(result.error)
            assets.append(result.value)
        logger.info("Session {}: captured {} still(s)", self.session_id, len(assets))
        return StepResult.success(assets)

    def _save_composite(self, assets: List[MediaAsset], color_filter: Optional[ColorFilter | str]) -> Path:
        data = build_image_composite(
            self.template.canvas,
            self.template.slots,
            assets,
            self.template.overlay_path,
            color_filter,
            self.config,
        )
        suffix = ".png" if self.config.raster.format == "png" else ".jpg"
        path = self.work_dir / f"composite{suffix}"
        ensure_dir(path.parent)
        path.write_bytes(data)
        return path

    def _save_video(self, assets: List[MediaAsset]) -> Path:
        return composite_video(
            self.template.canvas,
            self.template.slots,
            assets,
            self.template.overlay_path,
            self.work_dir / "live.mp4",
            self.config,
        )

    def _upload(self, bucket: str, name: str, path: Path) -> StepResult[str]:
        def _send() -> str:
            return self.storage.upload(bucket, name, path.read_bytes())

        return self._step(f"upload {bucket}/{name}", _send)

    @property
    def print_options(self) -> PrintOptions:
        return PrintOptions(printer=self.config.printer.printer, copies=self.config.printer.copies)

    def run(
        self,
        assets: Optional[List[MediaAsset]] = None,
        *,
        color_filter: Optional[ColorFilter | str] = None,
        live: bool = False,
        print_copy: bool = False,
    ) -> SessionOutcome:
        """Composite, optionally print and render video, then upload.

        ``assets`` skips the capture step when the stills already exist.
        """

        outcome = SessionOutcome(session_id=self.session_id, state=self.state)
        if assets is None:
            captured = self.capture_all()
            if not captured.ok:
                outcome.errors.append(f"capture: {captured.error}")
                self._enter(SessionState.FAILED)
                outcome.state = self.state
                return outcome
            assets = captured.value or []
        outcome.assets = list(assets)

        self._enter(SessionState.SAVING)
        still = self._step("composite", self._save_composite, outcome.assets, color_filter)
        if still.ok:
            outcome.composite_path = still.value
        else:
            outcome.errors.append(f"composite: {still.error}")
            logger.warning("Session {}: falling back to raw stills", self.session_id)

        if print_copy and outcome.composite_path is not None and self.printer is not None:
            printed = self._step("print", self.printer.print_file, outcome.composite_path, self.print_options)
            outcome.printed = printed.ok
            if not printed.ok:
                outcome.errors.append(f"print: {printed.error}")

        if live and any(asset.has_video for asset in outcome.assets):
            video = self._step("live video", self._save_video, outcome.assets)
            if video.ok:
                outcome.video_path = video.value
            else:
                outcome.errors.append(f"video: {video.error}")
                logger.warning("Session {}: continuing stills-only", self.session_id)

        self._enter(SessionState.UPLOADING_PRIMARY)
        primary_ok = False
        for key, path in (("composite", outcome.composite_path), ("video", outcome.video_path)):
            if path is None:
                continue
            sent = self._upload(self.config.storage.primary_bucket, f"{key}_{self.session_id}{path.suffix}", path)
            if sent.ok:
                outcome.urls[key] = sent.value
                primary_ok = True
            else:
                outcome.errors.append(f"upload {key}: {sent.error}")

        self._enter(SessionState.UPLOADING_FALLBACK)
        fallback_ok = False
        for asset in outcome.assets:
            name = f"photo_{self.session_id}_{asset.slot_id}{asset.image_path.suffix}"
            sent = self._upload(self.config.storage.fallback_bucket, name, asset.image_path)
            if sent.ok:
                outcome.urls[f"photo:{asset.slot_id}"] = sent.value
                fallback_ok = True
            else:
                outcome.errors.append(f"upload photo {asset.slot_id}: {sent.error}")

        self._enter(SessionState.DONE if primary_ok or fallback_ok else SessionState.FAILED)
        outcome.state = self.state
        logger.info(
            "Session {} finished {} with {} upload(s), {} error(s)",
            self.session_id,
            outcome.state.value,
            len(outcome.urls),
            len(outcome.errors),
        )
        return outcome
