"""Tests for slot_compositor.session."""
from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import patch

import cv2
import pytest

from slot_compositor.io import PipelineExecutionError
from slot_compositor.models import load_template
from slot_compositor.providers import DirectoryStorage, MockCamera
from slot_compositor.session import (
    PrintOptions,
    SessionPipeline,
    SessionState,
    StepResult,
    UploadError,
)

S = SessionState


class RecordingPrinter:
    def __init__(self) -> None:
        self.printed: List[Path] = []
        self.options: List[PrintOptions] = []

    def print_file(self, path: Path, options: PrintOptions) -> None:
        self.printed.append(path)
        self.options.append(options)


class FailingStorage:
    def upload(self, bucket: str, name: str, data: bytes) -> str:
        raise UploadError(f"offline: {name}")


class PickyStorage(DirectoryStorage):
    """Rejects composites but accepts raw photos."""

    def upload(self, bucket: str, name: str, data: bytes) -> str:
        if name.startswith("composite"):
            raise UploadError("composite rejected")
        return super().upload(bucket, name, data)


@pytest.fixture
def template(sample_template):
    return load_template(sample_template)


@pytest.fixture
def storage(tmp_path):
    return DirectoryStorage(tmp_path / "uploads")


def _pipeline(template, tmp_config, storage, camera=None, printer=None):
    return SessionPipeline(
        template,
        camera or MockCamera(size=(320, 240)),
        storage,
        printer=printer,
        config=tmp_config,
        session_id="s1",
    )


class TestStepResult:
    def test_success_and_failure(self):
        assert StepResult.success(3) == StepResult(ok=True, value=3)
        err = ValueError("x")
        result = StepResult.failure(err)
        assert not result.ok and result.error is err and result.value is None


class TestCaptureAll:
    def test_skips_duplicate_slots(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage)
        result = pipeline.capture_all()
        assert result.ok
        assert [asset.slot_id for asset in result.value] == ["top"]
        assert result.value[0].image_path.exists()
        assert pipeline.history == [S.IDLE, S.CAPTURING]

    def test_camera_unavailable(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage, camera=MockCamera(connected=False))
        result = pipeline.capture_all()
        assert not result.ok
        assert "not connected" in str(result.error)


class TestRun:
    def test_happy_path(self, template, tmp_config, storage):
        printer = RecordingPrinter()
        pipeline = _pipeline(template, tmp_config, storage, printer=printer)
        outcome = pipeline.run(print_copy=True, color_filter="vintage")
        assert outcome.state is S.DONE
        assert not outcome.degraded
        assert pipeline.history == [S.IDLE, S.CAPTURING, S.SAVING, S.UPLOADING_PRIMARY, S.UPLOADING_FALLBACK, S.DONE]
        assert outcome.composite_path.name == "composite.jpg"
        assert printer.printed == [outcome.composite_path]
        assert outcome.printed
        assert set(outcome.urls) == {"composite", "photo:top"}
        assert outcome.urls["composite"].startswith("file://")
        assert (storage.root / "exports" / "composite_s1.jpg").exists()
        assert (storage.root / "exports" / "photo_s1_top.jpg").exists()

    def test_configured_buckets_and_print_options(self, template, tmp_config, storage):
        tmp_config.storage.primary_bucket = "strips"
        tmp_config.storage.fallback_bucket = "raw"
        tmp_config.printer.printer = "booth"
        tmp_config.printer.copies = 2
        printer = RecordingPrinter()
        outcome = _pipeline(template, tmp_config, storage, printer=printer).run(print_copy=True)
        assert outcome.state is S.DONE
        assert printer.options == [PrintOptions(printer="booth", copies=2)]
        assert (storage.root / "strips" / "composite_s1.jpg").exists()
        assert (storage.root / "raw" / "photo_s1_top.jpg").exists()
        assert not (storage.root / "exports").exists()

    def test_captured_assets_carry_timestamps(self, template, tmp_config, storage):
        outcome = _pipeline(template, tmp_config, storage).run()
        assert all(asset.timestamp is not None for asset in outcome.assets)

    def test_opencv_error_in_composite_falls_back(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage)
        with patch("slot_compositor.session.build_image_composite", side_effect=cv2.error("bad warp")):
            outcome = pipeline.run()
        assert outcome.state is S.DONE
        assert outcome.composite_path is None
        assert set(outcome.urls) == {"photo:top"}
        assert outcome.errors[0].startswith("composite:")

    def test_capture_failure_fails_session(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage, camera=MockCamera(connected=False))
        outcome = pipeline.run()
        assert outcome.state is S.FAILED
        assert pipeline.history == [S.IDLE, S.CAPTURING, S.FAILED]
        assert outcome.urls == {}

    def test_composite_failure_still_uploads_photos(self, template, tmp_config, storage, tmp_path):
        junk = tmp_path / "junk.jpg"
        junk.write_text("not a jpeg")
        pipeline = _pipeline(template, tmp_config, storage, camera=MockCamera(sample_image=junk))
        outcome = pipeline.run(print_copy=True)
        assert outcome.state is S.DONE
        assert outcome.degraded
        assert outcome.composite_path is None
        assert not outcome.printed
        assert set(outcome.urls) == {"photo:top"}
        assert outcome.errors[0].startswith("composite:")

    def test_video_failure_falls_back_to_stills(self, template, tmp_config, storage, tmp_path):
        clip = tmp_path / "clip.webm"
        clip.write_bytes(b"webm")
        camera = MockCamera(sample_video=clip, size=(320, 240))
        pipeline = _pipeline(template, tmp_config, storage, camera=camera)
        error = PipelineExecutionError("Command failed with code 1", returncode=1)
        with patch("slot_compositor.session.composite_video", side_effect=error) as mock_video:
            outcome = pipeline.run(live=True)
        mock_video.assert_called_once()
        assert outcome.state is S.DONE
        assert outcome.video_path is None
        assert outcome.composite_path is not None
        assert any(e.startswith("video:") for e in outcome.errors)
        assert "video" not in outcome.urls

    def test_live_video_uploaded(self, template, tmp_config, storage, tmp_path):
        clip = tmp_path / "clip.webm"
        clip.write_bytes(b"webm")
        camera = MockCamera(sample_video=clip, size=(320, 240))
        pipeline = _pipeline(template, tmp_config, storage, camera=camera)

        def _render(canvas, slots, assets, overlay, output_path, config):
            output_path.write_bytes(b"mp4")
            return output_path

        with patch("slot_compositor.session.composite_video", side_effect=_render):
            outcome = pipeline.run(live=True)
        assert outcome.video_path == pipeline.work_dir / "live.mp4"
        assert "video" in outcome.urls
        assert (storage.root / "exports" / "video_s1.mp4").read_bytes() == b"mp4"

    def test_no_video_means_no_live_render(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage)
        with patch("slot_compositor.session.composite_video") as mock_video:
            outcome = pipeline.run(live=True)
        mock_video.assert_not_called()
        assert outcome.video_path is None

    def test_primary_upload_failure_uses_fallback(self, template, tmp_config, tmp_path):
        pipeline = _pipeline(template, tmp_config, PickyStorage(tmp_path / "uploads"))
        outcome = pipeline.run()
        assert outcome.state is S.DONE
        assert set(outcome.urls) == {"photo:top"}
        assert any(e.startswith("upload composite") for e in outcome.errors)

    def test_all_uploads_failing_is_failed(self, template, tmp_config):
        pipeline = _pipeline(template, tmp_config, FailingStorage())
        outcome = pipeline.run()
        assert outcome.state is S.FAILED
        assert pipeline.history[-3:] == [S.UPLOADING_PRIMARY, S.UPLOADING_FALLBACK, S.FAILED]

    def test_existing_assets_skip_capture(self, template, tmp_config, storage, sample_asset):
        pipeline = _pipeline(template, tmp_config, storage, camera=MockCamera(connected=False))
        outcome = pipeline.run([sample_asset])
        assert outcome.state is S.DONE
        assert S.CAPTURING not in pipeline.history

    def test_camera_can_be_rebound(self, template, tmp_config, storage):
        pipeline = _pipeline(template, tmp_config, storage, camera=MockCamera(connected=False))
        pipeline.capture = MockCamera(size=(320, 240))
        assert pipeline.run().state is S.DONE
