"""Slot compositor: framed still and live composites from captured media."""


from typing import TYPE_CHECKING, Any

__all__ = ["AppConfig", "load_config", "build_image_composite", "build_video_graph"]

if TYPE_CHECKING:  # pragma: no cover - for static type checkers only
    from .config import AppConfig, load_config
    from .graph import build_video_graph
    from .raster import build_image_composite

_LAZY = {
    "AppConfig": "config",
    "load_config": "config",
    "build_image_composite": "raster",
    "build_video_graph": "graph",
}


def __getattr__(name: str) -> Any:
    if name in _LAZY:
        from importlib import import_module

        value = getattr(import_module(f".{_LAZY[name]}", __name__), name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
