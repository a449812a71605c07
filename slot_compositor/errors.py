"""Exception taxonomy shared by the compositing core."""
from __future__ import annotations

from typing import Optional


class CompositorError(RuntimeError):
    pass


class InvalidGeometry(CompositorError, ValueError):
    """A slot, canvas or duplicate reference is malformed."""


class MissingAsset(CompositorError):
    """No media resolves for a slot. Callers recover by skipping the layer."""

    def __init__(self, slot_id: str, message: Optional[str] = None) -> None:
        self.slot_id = slot_id
        super().__init__(message or f"No media resolves for slot '{slot_id}'")


class NoContent(CompositorError):
    """Every slot of a composite was missing its media."""


class ResourceExhaustion(CompositorError):
    """Too many pipelines in flight, or the scratch disk is full."""
