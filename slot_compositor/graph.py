"""Filter-graph builder for live (video) composites.

The builder produces an engine-agnostic list of inputs and stages;
:meth:`FilterGraph.to_filter_complex` renders it in ffmpeg syntax. Input 0
is the base canvas, inputs 1..N are the slot layers in z-order and input
N+1 is the frame overlay.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .geometry import ceil_px, compute_cover_dimensions, compute_placement_offset, compute_rotated_bounding_box
from .layout import Layer, resolve_layers
from .models import Canvas, MediaAsset, Slot

BASE_INDEX = 0
OUTPUT_LABEL = "out"

SourceSizes = Mapping[Path, Tuple[int, int]]


@dataclass(frozen=True)
class GraphInput:
    index: int
    role: str  # "base", "layer" or "overlay"
    kind: str  # "lavfi", "still" or "video"
    source: str
    slot_id: Optional[str] = None

    @property
    def options(self) -> Tuple[str, ...]:
        if self.kind == "lavfi":
            return ("-f", "lavfi")
        if self.kind == "video":
            return ("-stream_loop", "-1")
        return ("-loop", "1")

    def to_args(self) -> List[str]:
        return [*self.options, "-i", self.source]


@dataclass(frozen=True)
class Filter:
    name: str
    args: Tuple[Tuple[str, str], ...] = ()

    def render(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}=" + ":".join(f"{key}={value}" for key, value in self.args)


@dataclass(frozen=True)
class Stage:
    kind: str  # "layer", "overlay", "frame" or "finalize"
    inputs: Tuple[str, ...]
    filters: Tuple[Filter, ...]
    output: str

    def render(self) -> str:
        pads = "".join(f"[{label}]" for label in self.inputs)
        chain = ",".join(f.render() for f in self.filters)
        return f"{pads}{chain}[{self.output}]"


@dataclass(frozen=True)
class FilterGraph:
    canvas: Canvas
    inputs: Tuple[GraphInput, ...]
    stages: Tuple[Stage, ...]
    output_label: str = OUTPUT_LABEL

    @property
    def input_order(self) -> List[GraphInput]:
        return sorted(self.inputs, key=lambda item: item.index)

    @property
    def layer_count(self) -> int:
        return sum(1 for item in self.inputs if item.role == "layer")

    def to_filter_complex(self) -> str:
        return ";".join(stage.render() for stage in self.stages)

    def describe(self) -> Dict[str, Any]:
        return {
            "canvas": [self.canvas.width, self.canvas.height],
            "inputs": [
                {"index": item.index, "role": item.role, "kind": item.kind, "source": item.source, "slot": item.slot_id}
                for item in self.input_order
            ],
            "stages": [stage.render() for stage in self.stages],
            "output": self.output_label,
        }


def _fmt(value: float) -> str:
    return f"{value:.9f}".rstrip("0").rstrip(".")


def _layer_source(asset: MediaAsset, prefer_video: bool) -> Tuple[str, Path]:
    if prefer_video and asset.video_path is not None:
        return "video", asset.video_path
    return "still", asset.image_path


def _layer_filters(slot: Slot, source_size: Optional[Tuple[int, int]]) -> Tuple[List[Filter], int, int]:
    """Filters turning one source into a transparent, rotated slot layer.

    Returns the filters and the integer size of the layer they produce.
    """

    width = max(1, int(round(slot.width)))
    height = max(1, int(round(slot.height)))
    filters = [Filter("format", (("pix_fmts", "rgba"),))]
    if source_size is not None:
        cover = compute_cover_dimensions(source_size[0], source_size[1], width, height)
        filters.append(Filter("scale", (("w", str(ceil_px(cover.draw_width))), ("h", str(ceil_px(cover.draw_height))))))
    else:
        filters.append(
            Filter("scale", (("w", str(width)), ("h", str(height)), ("force_original_aspect_ratio", "increase")))
        )
    filters.append(Filter("crop", (("w", str(width)), ("h", str(height)), ("x", "(iw-ow)/2"), ("y", "(ih-oh)/2"))))

    if slot.rotation % 360 == 0:
        return filters, width, height
    box = compute_rotated_bounding_box(width, height, slot.rotation)
    box_w = ceil_px(box.bounding_width)
    box_h = ceil_px(box.bounding_height)
    radians = slot.rotation * math.pi / 180.0
    filters.append(
        Filter("rotate", (("a", _fmt(radians)), ("ow", str(box_w)), ("oh", str(box_h)), ("c", "none")))
    )
    return filters, box_w, box_h


def _overlay(base: str, layer: str, x: float, y: float, out: str, first: bool) -> Stage:
    args: Tuple[Tuple[str, str], ...] = (("x", str(int(round(x)))), ("y", str(int(round(y)))))
    if first:
        # an endless base canvas must not outlive the real content
        args += (("shortest", "1"),)
    return Stage(kind="overlay", inputs=(base, layer), filters=(Filter("overlay", args),), output=out)


def build_video_graph(
    canvas: Canvas,
    slots: Sequence[Slot],
    assets: Sequence[MediaAsset],
    frame_overlay_path: Optional[Path] = None,
    *,
    background: str = "black@0.0",
    fps: float = 30.0,
    pix_fmt: str = "yuv420p",
    source_sizes: Optional[SourceSizes] = None,
    prefer_video: bool = True,
) -> FilterGraph:
    """Build the composite graph for ``slots`` filled from ``assets``.

    Slots without media are skipped; duplicate slots reuse the referenced
    slot's media as an independent input. ``source_sizes`` maps a source
    path to its native ``(width, height)`` so exact cover sizes are emitted;
    unknown sources fall back to the engine's own cover scaling.
    """

    canvas.validate()
    layers: List[Layer] = resolve_layers(slots, assets)
    sizes = source_sizes or {}

    inputs: List[GraphInput] = [
        GraphInput(
            index=BASE_INDEX,
            role="base",
            kind="lavfi",
            source=f"color=c={background}:s={canvas.width}x{canvas.height}:r={_fmt(fps)}",
        )
    ]
    stages: List[Stage] = []
    placed: List[Tuple[str, float, float]] = []

    for layer in layers:
        index = len(inputs)
        kind, path = _layer_source(layer.asset, prefer_video)
        inputs.append(GraphInput(index=index, role="layer", kind=kind, source=str(path), slot_id=layer.slot.id))
        filters, layer_w, layer_h = _layer_filters(layer.slot, sizes.get(path))
        label = f"L{index}"
        stages.append(Stage(kind="layer", inputs=(f"{index}:v",), filters=tuple(filters), output=label))
        placement = compute_placement_offset(layer.slot, layer_w, layer_h)
        placed.append((label, placement.placement_x, placement.placement_y))

    current = f"{BASE_INDEX}:v"
    for step, (label, x, y) in enumerate(placed, start=1):
        out = f"C{step}"
        stages.append(_overlay(current, label, x, y, out, first=step == 1))
        current = out

    if frame_overlay_path is not None:
        index = len(inputs)
        inputs.append(GraphInput(index=index, role="overlay", kind="still", source=str(frame_overlay_path)))
        stages.append(
            Stage(
                kind="frame",
                inputs=(f"{index}:v",),
                filters=(
                    Filter("format", (("pix_fmts", "rgba"),)),
                    Filter("scale", (("w", str(canvas.width)), ("h", str(canvas.height)))),
                ),
                output="F",
            )
        )
        stages.append(_overlay(current, "F", 0, 0, "CF", first=not placed))
        current = "CF"

    finalize = [Filter("format", (("pix_fmts", pix_fmt),))]
    even_w = canvas.width + canvas.width % 2
    even_h = canvas.height + canvas.height % 2
    if (even_w, even_h) != (canvas.width, canvas.height):
        # 4:2:0 output needs even dimensions; pad right/bottom by one pixel
        finalize.insert(0, Filter("pad", (("w", str(even_w)), ("h", str(even_h)), ("x", "0"), ("y", "0"))))
    stages.append(
        Stage(
            kind="finalize",
            inputs=(current,),
            filters=tuple(finalize),
            output=OUTPUT_LABEL,
        )
    )
    return FilterGraph(canvas=canvas, inputs=tuple(inputs), stages=tuple(stages))
