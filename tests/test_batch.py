"""Tests for slot_compositor.batch."""
from __future__ import annotations

from pathlib import Path

import cv2

from slot_compositor.batch import CompositeJob, load_manifest, render_batch
from slot_compositor.models import MediaAsset


class TestLoadManifest:
    def test_resolves_relative_paths(self, tmp_path):
        manifest = tmp_path / "jobs.yaml"
        manifest.write_text(
            "jobs:\n"
            "  - name: first\n"
            "    template: strip.yaml\n"
            "    filter: warm\n"
            "    assets:\n"
            "      - {slotId: top, imagePath: shots/top.jpg, videoPath: shots/top.webm}\n"
            "  - template: /abs/strip.yaml\n"
            "    output: renders/two.png\n"
        )
        first, second = load_manifest(manifest)
        assert first.name == "first"
        assert first.template == tmp_path / "strip.yaml"
        assert first.color_filter == "warm"
        assert first.assets == [MediaAsset("top", tmp_path / "shots/top.jpg", tmp_path / "shots/top.webm")]
        assert second.name == "job_0002"
        assert second.template == Path("/abs/strip.yaml")
        assert second.output == tmp_path / "renders/two.png"
        assert second.assets == []

    def test_empty_manifest(self, tmp_path):
        manifest = tmp_path / "jobs.yaml"
        manifest.write_text("")
        assert load_manifest(manifest) == []


class TestRenderBatch:
    def test_renders_and_survives_failures(self, tmp_config, tmp_path, sample_template, sample_asset):
        jobs = [
            CompositeJob(name="good", template=sample_template, assets=[sample_asset]),
            CompositeJob(name="bad", template=tmp_path / "missing.yaml", assets=[sample_asset]),
            CompositeJob(name="gray", template=sample_template, assets=[sample_asset], color_filter="grayscale"),
        ]
        out_dir = tmp_path / "renders"
        written = render_batch(tmp_config, jobs, out_dir)
        assert written == [out_dir / "good.jpg", out_dir / "gray.jpg"]
        assert cv2.imread(str(out_dir / "gray.jpg")).shape == (400, 300, 3)

    def test_png_extension(self, tmp_config, tmp_path, sample_template, sample_asset):
        tmp_config.raster.format = "png"
        written = render_batch(tmp_config, [CompositeJob("one", sample_template, [sample_asset])], tmp_path)
        assert written == [tmp_path / "one.png"]

    def test_no_jobs(self, tmp_config, tmp_path):
        assert render_batch(tmp_config, [], tmp_path) == []
