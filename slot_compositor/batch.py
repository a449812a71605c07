"""Render many still composites in parallel from a YAML manifest."""
from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import yaml
from loguru import logger
from tqdm import tqdm

from .config import AppConfig
from .io import ensure_dir
from .models import MediaAsset, load_template
from .raster import build_image_composite


@dataclass
class CompositeJob:
    name: str
    template: Path
    assets: List[MediaAsset] = field(default_factory=list)
    color_filter: Optional[str] = None
    output: Optional[Path] = None


def _resolve(base: Path, value: Path) -> Path:
    return value if value.is_absolute() else base / value


def load_manifest(path: Path | str) -> List[CompositeJob]:
    """Read batch jobs; relative paths resolve against the manifest's directory.

    The manifest is a mapping with a ``jobs`` list, each job naming a
    ``template``, its ``assets`` and optionally a ``filter`` and ``output``.
    """

    manifest_path = Path(path)
    base = manifest_path.parent
    data = yaml.safe_load(manifest_path.read_text()) or {}
    jobs: List[CompositeJob] = []
    for idx, item in enumerate(data.get("jobs") or [], start=1):
        assets = []
        for raw in item.get("assets") or []:
            asset = MediaAsset.from_dict(raw)
            assets.append(
                MediaAsset(
                    slot_id=asset.slot_id,
                    image_path=_resolve(base, asset.image_path),
                    video_path=_resolve(base, asset.video_path) if asset.video_path else None,
                )
            )
        output = item.get("output")
        jobs.append(
            CompositeJob(
                name=str(item.get("name") or f"job_{idx:04d}"),
                template=_resolve(base, Path(item["template"])),
                assets=assets,
                color_filter=item.get("filter"),
                output=_resolve(base, Path(output)) if output else None,
            )
        )
    return jobs


def _render_one(job: CompositeJob, out_path: Path, config: AppConfig) -> Path:
    template = load_template(job.template)
    data = build_image_composite(
        template.canvas,
        template.slots,
        job.assets,
        template.overlay_path,
        job.color_filter,
        config,
    )
    ensure_dir(out_path.parent)
    out_path.write_bytes(data)
    return out_path


def render_batch(config: AppConfig, jobs: Sequence[CompositeJob], out_dir: Path) -> List[Path]:
    if not jobs:
        logger.warning("No composite jobs to render")
        return []
    ext = "png" if config.raster.format == "png" else "jpg"
    ensure_dir(out_dir)
    tasks = [(job, job.output or out_dir / f"{job.name}.{ext}") for job in jobs]

    written: List[Path] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=config.jobs.workers) as executor:
        future_map = {executor.submit(_render_one, job, out_path, config): job for job, out_path in tasks}
        for future in tqdm(concurrent.futures.as_completed(future_map), total=len(future_map), desc="composites", unit="job", leave=False):
            job = future_map[future]
            try:
                out_path = future.result()
            except Exception as exc:
                logger.error("Composite {} failed: {}", job.name, exc)
            else:
                written.append(out_path)
    return sorted(written)
