"""Runs filter graphs through ffmpeg.

Each job renders inside its own scratch directory and moves the result into
place on success. Concurrency is capped by a non-blocking :class:`JobLimiter`;
a job that finds it full fails with :class:`ResourceExhaustion` instead of
queueing. Nothing here retries: failures surface as
:class:`PipelineExecutionError` and the caller picks a fallback.
"""
from __future__ import annotations

import errno
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import cv2
from loguru import logger

from .config import AppConfig, RenderConfig
from .errors import NoContent, ResourceExhaustion
from .graph import Filter, FilterGraph, Stage, build_video_graph
from .io import FFmpegError, ensure_dir, run_command, stream_info
from .models import Canvas, MediaAsset, Slot
from .raster import cover_crop, load_image


class JobLimiter:
    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)

    @contextmanager
    def acquire(self) -> Iterator[None]:
        if not self._semaphore.acquire(blocking=False):
            raise ResourceExhaustion(f"{self.limit} pipeline job(s) already running")
        try:
            yield
        finally:
            self._semaphore.release()


_limiters: Dict[int, JobLimiter] = {}
_limiters_lock = threading.Lock()


def limiter_for(config: AppConfig) -> JobLimiter:
    """Process-wide limiter shared by every job with the same concurrency cap."""

    limit = config.jobs.max_concurrent
    with _limiters_lock:
        if limit not in _limiters:
            _limiters[limit] = JobLimiter(limit)
        return _limiters[limit]


def _is_disk_full(exc: OSError) -> bool:
    return exc.errno in (errno.ENOSPC, errno.EDQUOT)


@contextmanager
def scratch_dir(config: AppConfig) -> Iterator[Path]:
    """Job-unique working directory, removed when the job ends."""

    parent = config.paths.scratch_dir
    try:
        if parent is not None:
            ensure_dir(parent)
        path = Path(tempfile.mkdtemp(prefix="slotcomp-", dir=parent))
    except OSError as exc:
        if _is_disk_full(exc):
            raise ResourceExhaustion(f"No space for scratch directory: {exc}") from exc
        raise
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def _publish(scratch_file: Path, output_path: Path) -> Path:
    try:
        ensure_dir(output_path.parent)
        shutil.move(str(scratch_file), str(output_path))
    except OSError as exc:
        if _is_disk_full(exc):
            raise ResourceExhaustion(f"No space to write {output_path}: {exc}") from exc
        raise
    return output_path


def _encode_args(render: RenderConfig, max_duration: float) -> List[str]:
    return [
        "-t",
        f"{max_duration:.3f}",
        "-r",
        f"{render.fps:g}",
        "-c:v",
        render.video_codec,
        "-preset",
        render.preset,
        "-crf",
        str(render.crf),
        "-pix_fmt",
        render.pix_fmt,
        "-movflags",
        "+faststart",
        "-an",
    ]


def build_ffmpeg_command(graph: FilterGraph, output_path: Path, max_duration: float, render: RenderConfig) -> List[str]:
    cmd: List[str] = [render.ffmpeg, "-hide_banner", "-y"]
    for item in graph.input_order:
        cmd += item.to_args()
    cmd += ["-filter_complex", graph.to_filter_complex(), "-map", f"[{graph.output_label}]"]
    cmd += _encode_args(render, max_duration)
    cmd.append(str(output_path))
    return cmd


def _check_duration(max_duration: float) -> float:
    if not max_duration > 0:
        raise ValueError(f"max_duration must be positive, got {max_duration}")
    return float(max_duration)


def run_video_composite(
    graph: FilterGraph,
    output_path: Path,
    max_duration: Optional[float] = None,
    config: Optional[AppConfig] = None,
    *,
    limiter: Optional[JobLimiter] = None,
) -> Path:
    """Render ``graph`` to ``output_path``, never longer than ``max_duration`` seconds."""

    config = config or AppConfig()
    duration = _check_duration(max_duration if max_duration is not None else config.render.max_duration)
    output_path = Path(output_path)
    with (limiter or limiter_for(config)).acquire(), scratch_dir(config) as work:
        target = work / f"composite{output_path.suffix or '.mp4'}"
        cmd = build_ffmpeg_command(graph, target, duration, config.render)
        run_command(cmd)
        _publish(target, output_path)
    logger.info("Rendered {} layer(s) to {}", graph.layer_count, output_path)
    return output_path


def transcode_single(
    source: Path,
    output_path: Path,
    max_duration: Optional[float] = None,
    config: Optional[AppConfig] = None,
    *,
    limiter: Optional[JobLimiter] = None,
) -> Path:
    """Degraded fallback: transcode one source unmodified instead of compositing."""

    config = config or AppConfig()
    duration = _check_duration(max_duration if max_duration is not None else config.render.max_duration)
    output_path = Path(output_path)
    with (limiter or limiter_for(config)).acquire(), scratch_dir(config) as work:
        target = work / f"single{output_path.suffix or '.mp4'}"
        cmd = [config.render.ffmpeg, "-hide_banner", "-y", "-i", str(source)]
        # yuv420p needs even dimensions
        cmd += ["-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2"]
        cmd += _encode_args(config.render, duration)
        cmd.append(str(target))
        run_command(cmd)
        _publish(target, output_path)
    logger.info("Transcoded {} to {}", source, output_path)
    return output_path


def gif_filter_complex(bayer_scale: int) -> str:
    palettegen = Filter("palettegen", (("stats_mode", "diff"),))
    paletteuse = Filter("paletteuse", (("dither", "bayer"), ("bayer_scale", str(bayer_scale))))
    stages = [
        "[0:v]split[v1][v2]",
        Stage("palette", ("v1",), (palettegen,), "pal").render(),
        Stage("paletteuse", ("v2", "pal"), (paletteuse,), "outv").render(),
    ]
    return ";".join(stages)


def render_gif(
    image_paths: Sequence[Path],
    output_path: Path,
    config: Optional[AppConfig] = None,
    *,
    limiter: Optional[JobLimiter] = None,
) -> Path:
    """Animated GIF of the stills using a generated palette.

    Frames are cover-fitted to the first readable image's aspect so the
    sequence has one size.
    """

    config = config or AppConfig()
    frames = []
    for path in image_paths:
        pixels = load_image(Path(path))
        if pixels is None:
            logger.warning("Skipping unreadable GIF frame {}", path)
            continue
        frames.append(pixels)
    if not frames:
        raise NoContent("No readable images for GIF")

    first_h, first_w = frames[0].shape[:2]
    width = config.gif.width or first_w
    height = max(1, int(round(width * first_h / first_w)))
    fps = 1000.0 / config.gif.delay_ms
    output_path = Path(output_path)

    with (limiter or limiter_for(config)).acquire(), scratch_dir(config) as work:
        for idx, pixels in enumerate(frames):
            cv2.imwrite(str(work / f"frame_{idx}.png"), cover_crop(pixels, width, height))
        target = work / "output.gif"
        cmd = [
            config.render.ffmpeg,
            "-hide_banner",
            "-y",
            "-framerate",
            f"{fps:g}",
            "-i",
            str(work / "frame_%d.png"),
            "-filter_complex",
            gif_filter_complex(config.gif.bayer_scale),
            "-map",
            "[outv]",
            "-loop",
            "0",
            str(target),
        ]
        run_command(cmd)
        _publish(target, output_path)
    logger.info("Wrote {}-frame GIF to {}", len(frames), output_path)
    return output_path


def _source_path(asset: MediaAsset, prefer_video: bool) -> Path:
    if prefer_video and asset.video_path is not None:
        return asset.video_path
    return asset.image_path


def probe_source_sizes(assets: Sequence[MediaAsset], config: Optional[AppConfig] = None, prefer_video: bool = True) -> Dict[Path, Tuple[int, int]]:
    """Native sizes of the sources a graph will read; unprobeable ones are left out."""

    config = config or AppConfig()
    sizes: Dict[Path, Tuple[int, int]] = {}
    for asset in assets:
        path = _source_path(asset, prefer_video)
        if path in sizes:
            continue
        try:
            info = stream_info(path, config.render.ffprobe)
        except FFmpegError as exc:
            logger.debug("Could not probe {}: {}", path, exc)
            continue
        sizes[path] = (info.width, info.height)
    return sizes


def composite_video(
    canvas: Canvas,
    slots: Sequence[Slot],
    assets: Sequence[MediaAsset],
    frame_overlay_path: Optional[Path],
    output_path: Path,
    config: Optional[AppConfig] = None,
    *,
    probe: bool = True,
    limiter: Optional[JobLimiter] = None,
) -> Path:
    """Build the graph for a live composite and run it."""

    config = config or AppConfig()
    sizes = probe_source_sizes(assets, config) if probe else None
    graph = build_video_graph(
        canvas,
        slots,
        assets,
        frame_overlay_path,
        background=config.render.background,
        fps=config.render.fps,
        pix_fmt=config.render.pix_fmt,
        source_sizes=sizes,
    )
    return run_video_composite(graph, output_path, config.render.max_duration, config, limiter=limiter)
