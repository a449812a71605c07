"""Console entry point for the slot compositor."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from .batch import load_manifest, render_batch
from .config import AppConfig, load_config
from .executor import composite_video, probe_source_sizes, render_gif, transcode_single
from .graph import build_video_graph
from .io import PipelineExecutionError
from .models import FrameTemplate, MediaAsset, load_template
from .raster import THUMBNAIL_FITS, build_image_composite, make_thumbnail
from .utils import load_report


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(sys.stderr, level=level)


def _load_config(path: Path) -> AppConfig:
    if not path.exists():
        logger.info("Using default configuration; no {} found", path)
    return load_config(path)


def _split_pairs(values: Optional[List[str]], flag: str) -> Dict[str, Path]:
    pairs: Dict[str, Path] = {}
    for value in values or []:
        slot_id, sep, path = value.partition("=")
        if not sep or not slot_id or not path:
            raise SystemExit(f"{flag} expects SLOT=PATH, got '{value}'")
        pairs[slot_id] = Path(path)
    return pairs


def _parse_assets(args: argparse.Namespace) -> List[MediaAsset]:
    images = _split_pairs(args.asset, "--asset")
    videos = _split_pairs(getattr(args, "video", None), "--video")
    for slot_id in set(videos) - set(images):
        # a video without a still uses the video as its own poster
        images[slot_id] = videos[slot_id]
    return [MediaAsset(slot_id=slot_id, image_path=path, video_path=videos.get(slot_id)) for slot_id, path in images.items()]


def _template(config: AppConfig, name: str) -> FrameTemplate:
    path = Path(name)
    if not path.exists() and not path.is_absolute():
        path = config.paths.frames_dir / name
    return load_template(path)


def cmd_composite(config: AppConfig, args: argparse.Namespace) -> None:
    if args.format:
        config.raster.format = "png" if args.format == "png" else "jpeg"
    template = _template(config, args.template)
    assets = _parse_assets(args)
    ext = "png" if config.raster.format == "png" else "jpg"
    out_path = Path(args.out or (config.output_dir / f"composite_{template.id}.{ext}"))
    data = build_image_composite(template.canvas, template.slots, assets, template.overlay_path, args.filter, config)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(data)
    logger.info("Wrote {} ({} bytes)", out_path, len(data))
    report = load_report(config.output_dir)
    report.update(
        "composite",
        {
            "template": template.id,
            "slots": len(template.slots),
            "assets": len(assets),
            "filter": args.filter or "none",
            "output": out_path.as_posix(),
        },
    )


def cmd_graph(config: AppConfig, args: argparse.Namespace) -> None:
    template = _template(config, args.template)
    assets = _parse_assets(args)
    sizes = probe_source_sizes(assets, config) if args.probe else None
    graph = build_video_graph(
        template.canvas,
        template.slots,
        assets,
        template.overlay_path,
        background=config.render.background,
        fps=config.render.fps,
        pix_fmt=config.render.pix_fmt,
        source_sizes=sizes,
    )
    if args.json:
        print(json.dumps(graph.describe(), indent=2))
        return
    for item in graph.input_order:
        print(f"{item.index}: {item.role:<8} {' '.join(item.to_args())}")
    print(graph.to_filter_complex())


def cmd_video(config: AppConfig, args: argparse.Namespace) -> None:
    if args.duration is not None:
        config.render.max_duration = args.duration
    template = _template(config, args.template)
    assets = _parse_assets(args)
    out_path = Path(args.out or (config.output_dir / f"live_{template.id}.mp4"))
    mode = "composite"
    try:
        composite_video(template.canvas, template.slots, assets, template.overlay_path, out_path, config)
    except PipelineExecutionError as exc:
        if not args.fallback or not assets:
            raise
        source = assets[0].video_path or assets[0].image_path
        logger.warning("Composite failed ({}); transcoding {} alone", exc.returncode, source)
        transcode_single(source, out_path, config.render.max_duration, config)
        mode = "single"
    report = load_report(config.output_dir)
    report.update(
        "video",
        {
            "template": template.id,
            "mode": mode,
            "max_duration": config.render.max_duration,
            "output": out_path.as_posix(),
        },
    )


def cmd_gif(config: AppConfig, args: argparse.Namespace) -> None:
    if args.delay is not None:
        config.gif.delay_ms = args.delay
    if args.width is not None:
        config.gif.width = args.width or None
    out_path = Path(args.out or (config.output_dir / "animation.gif"))
    render_gif([Path(p) for p in args.images], out_path, config)
    report = load_report(config.output_dir)
    report.update(
        "gif",
        {"frames": len(args.images), "delay_ms": config.gif.delay_ms, "output": out_path.as_posix()},
    )


def cmd_batch(config: AppConfig, args: argparse.Namespace) -> None:
    if args.workers is not None:
        config.jobs.workers = args.workers
    jobs = load_manifest(Path(args.manifest))
    out_dir = Path(args.outdir or (config.output_dir / "batch"))
    written = render_batch(config, jobs, out_dir)
    report = load_report(config.output_dir)
    report.update(
        "batch",
        {
            "jobs": len(jobs),
            "written": len(written),
            "failed": len(jobs) - len(written),
            "output_dir": out_dir.as_posix(),
        },
    )


def cmd_thumbnail(config: AppConfig, args: argparse.Namespace) -> None:
    source = Path(args.image)
    out_path = Path(args.out or (config.output_dir / f"thumb_{source.stem}.jpg"))
    make_thumbnail(source, out_path, args.width, args.height, args.fit, config)
    report = load_report(config.output_dir)
    report.update(
        "thumbnail",
        {"source": source.as_posix(), "size": [args.width, args.height], "fit": args.fit, "output": out_path.as_posix()},
    )


def _add_media_args(parser: argparse.ArgumentParser, videos: bool = True) -> None:
    parser.add_argument("--template", required=True, help="Frame template YAML/JSON (or a name under paths.frames_dir)")
    parser.add_argument("--asset", action="append", metavar="SLOT=PATH", help="Still captured for a slot")
    if videos:
        parser.add_argument("--video", action="append", metavar="SLOT=PATH", help="Companion video for a slot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slotcomp", description="Composite captured media into framed layouts")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML configuration file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    comp_p = sub.add_parser("composite", help="Render a still composite")
    _add_media_args(comp_p, videos=False)
    comp_p.add_argument("--filter", help="Color filter preset or CSS filter string")
    comp_p.add_argument("--format", choices=["jpeg", "jpg", "png"])
    comp_p.add_argument("--out")
    comp_p.set_defaults(func=cmd_composite)

    graph_p = sub.add_parser("graph", help="Print the video filter graph")
    _add_media_args(graph_p)
    graph_p.add_argument("--probe", action="store_true", help="Probe sources for exact cover sizes")
    graph_p.add_argument("--json", action="store_true")
    graph_p.set_defaults(func=cmd_graph)

    video_p = sub.add_parser("video", help="Render a live (video) composite")
    _add_media_args(video_p)
    video_p.add_argument("--out")
    video_p.add_argument("--duration", type=float)
    video_p.add_argument("--fallback", action="store_true", help="Transcode the first source alone if compositing fails")
    video_p.set_defaults(func=cmd_video)

    gif_p = sub.add_parser("gif", help="Build an animated GIF from stills")
    gif_p.add_argument("images", nargs="+")
    gif_p.add_argument("--out")
    gif_p.add_argument("--delay", type=int, help="Frame delay in milliseconds")
    gif_p.add_argument("--width", type=int, help="Output width; 0 keeps the source width")
    gif_p.set_defaults(func=cmd_gif)

    batch_p = sub.add_parser("batch", help="Render composites listed in a manifest")
    batch_p.add_argument("manifest")
    batch_p.add_argument("--outdir")
    batch_p.add_argument("--workers", type=int)
    batch_p.set_defaults(func=cmd_batch)

    thumb_p = sub.add_parser("thumbnail", help="Resize one image")
    thumb_p.add_argument("image")
    thumb_p.add_argument("--width", type=int, required=True)
    thumb_p.add_argument("--height", type=int, required=True)
    thumb_p.add_argument("--fit", choices=list(THUMBNAIL_FITS), default="cover")
    thumb_p.add_argument("--out")
    thumb_p.set_defaults(func=cmd_thumbnail)

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    config_path = Path(args.config)
    config = _load_config(config_path)
    config.paths.output_dir.mkdir(parents=True, exist_ok=True)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(config, args)


if __name__ == "__main__":
    main()
