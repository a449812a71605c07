"""Tests for slot_compositor.providers."""
from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import cv2
import pytest

from slot_compositor.config import PrintConfig
from slot_compositor.io import PipelineExecutionError
from slot_compositor.providers import CommandPrinter, DirectoryStorage, MockCamera
from slot_compositor.session import CameraUnavailable, PrintError, PrintOptions, UploadError


class TestMockCamera:
    def test_placeholder_is_readable(self, tmp_path):
        camera = MockCamera(size=(160, 120))
        asset = camera.capture("left", tmp_path / "cap" / "left.jpg")
        assert asset.slot_id == "left"
        assert asset.video_path is None
        assert cv2.imread(str(asset.image_path)).shape == (120, 160, 3)
        assert camera.capture_count == 1

    def test_capture_is_timestamped(self, tmp_path):
        before = time.time()
        asset = MockCamera(size=(32, 24)).capture("a", tmp_path / "a.jpg")
        assert before <= asset.timestamp <= time.time()

    def test_copies_samples(self, tmp_path, write_image):
        sample = write_image("sample.png", (10, 10), (1, 2, 3))
        clip = tmp_path / "clip.webm"
        clip.write_bytes(b"clip")
        asset = MockCamera(sample_image=sample, sample_video=clip).capture("a", tmp_path / "a.png")
        assert asset.image_path.read_bytes() == sample.read_bytes()
        assert asset.video_path == tmp_path / "a.webm"
        assert asset.video_path.read_bytes() == b"clip"

    def test_disconnected(self, tmp_path):
        with pytest.raises(CameraUnavailable):
            MockCamera(connected=False).capture("a", tmp_path / "a.jpg")


class TestDirectoryStorage:
    def test_writes_into_bucket_and_returns_uri(self, tmp_path):
        storage = DirectoryStorage(tmp_path / "store")
        url = storage.upload("exports", "nested/x.bin", b"123")
        target = tmp_path / "store" / "exports" / "nested" / "x.bin"
        assert target.read_bytes() == b"123"
        assert url == target.resolve().as_uri()

    def test_buckets_are_separate(self, tmp_path):
        storage = DirectoryStorage(tmp_path)
        storage.upload("a", "x.bin", b"1")
        storage.upload("b", "x.bin", b"2")
        assert (tmp_path / "a" / "x.bin").read_bytes() == b"1"
        assert (tmp_path / "b" / "x.bin").read_bytes() == b"2"

    def test_unwritable_root(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(UploadError):
            DirectoryStorage(blocker).upload("exports", "x.bin", b"1")


class TestCommandPrinter:
    def test_substitutes_path(self):
        printer = CommandPrinter(["lp", "-o", "fit-to-page", "{path}"])
        assert printer.build_command(Path("/tmp/a.jpg")) == ["lp", "-o", "fit-to-page", "/tmp/a.jpg"]

    def test_appends_path_without_placeholder(self):
        assert CommandPrinter(["lpr"]).build_command(Path("a.jpg")) == ["lpr", "a.jpg"]

    def test_named_printer(self):
        printer = CommandPrinter(["lp", "{path}"])
        cmd = printer.build_command(Path("a.jpg"), PrintOptions(printer="booth"))
        assert cmd == ["lp", "-d", "booth", "a.jpg"]

    def test_from_config(self):
        config = PrintConfig(command=["lpr", "{path}"], printer_args=["-P", "{printer}"])
        cmd = CommandPrinter.from_config(config).build_command(Path("a.jpg"), PrintOptions(printer="dnp"))
        assert cmd == ["lpr", "-P", "dnp", "a.jpg"]

    def test_empty_command(self):
        with pytest.raises(ValueError):
            CommandPrinter([])

    @patch("slot_compositor.providers.run_command")
    def test_runs_command(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0)
        CommandPrinter(["lp", "{path}"]).print_file(Path("a.jpg"))
        mock_run.assert_called_once_with(["lp", "a.jpg"])

    @patch("slot_compositor.providers.run_command")
    def test_one_run_per_copy(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0)
        CommandPrinter(["lp", "{path}"]).print_file(Path("a.jpg"), PrintOptions(printer="booth", copies=3))
        assert mock_run.call_args_list == [call(["lp", "-d", "booth", "a.jpg"])] * 3

    @patch("slot_compositor.providers.run_command", side_effect=PipelineExecutionError("Executable not found: lp"))
    def test_failure_is_print_error(self, mock_run):
        with pytest.raises(PrintError):
            CommandPrinter(["lp", "{path}"]).print_file(Path("a.jpg"), PrintOptions(copies=2))
        mock_run.assert_called_once()
