"""Slot validation and duplicate-slot media resolution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from .errors import InvalidGeometry, MissingAsset, NoContent
from .models import MediaAsset, Slot


@dataclass(frozen=True)
class Layer:
    """A slot paired with the media it displays, in bottom-to-top order."""

    slot: Slot
    asset: MediaAsset
    z: int


def validate_slots(slots: Sequence[Slot]) -> None:
    """Fail fast on bad sizes, repeated ids and malformed duplicate references."""

    by_id: Dict[str, Slot] = {}
    for slot in slots:
        slot.validate()
        if slot.id in by_id:
            raise InvalidGeometry(f"Slot id '{slot.id}' is used more than once")
        by_id[slot.id] = slot
    for slot in slots:
        if slot.duplicate_of is None:
            continue
        if slot.duplicate_of == slot.id:
            raise InvalidGeometry(f"Slot '{slot.id}' duplicates itself")
        target = by_id.get(slot.duplicate_of)
        if target is None:
            raise InvalidGeometry(f"Slot '{slot.id}' duplicates unknown slot '{slot.duplicate_of}'")
        if target.is_duplicate:
            raise InvalidGeometry(
                f"Slot '{slot.id}' duplicates '{target.id}', which is itself a duplicate"
            )


def index_assets(assets: Iterable[MediaAsset]) -> Dict[str, MediaAsset]:
    # later captures for the same slot replace earlier ones (retakes)
    return {asset.slot_id: asset for asset in assets}


def require_asset(slot: Slot, assets_by_slot: Mapping[str, MediaAsset]) -> MediaAsset:
    asset = assets_by_slot.get(slot.source_id)
    if asset is None:
        raise MissingAsset(slot.id)
    return asset


def resolve_asset(slot: Slot, assets: Iterable[MediaAsset]) -> Optional[MediaAsset]:
    """Media shown in ``slot``: its own capture, or the duplicated slot's."""

    return index_assets(assets).get(slot.source_id)


def resolve_layers(slots: Sequence[Slot], assets: Iterable[MediaAsset]) -> List[Layer]:
    """Pair every slot with its media, skipping slots that have none.

    Raises :class:`NoContent` when slots exist but none of them resolves.
    """

    validate_slots(slots)
    assets_by_slot = index_assets(assets)
    duplicate_ids = {slot.id for slot in slots if slot.is_duplicate}
    for slot_id in duplicate_ids & set(assets_by_slot):
        logger.warning("Ignoring media captured directly for duplicate slot {}", slot_id)

    layers: List[Layer] = []
    for slot in slots:
        try:
            asset = require_asset(slot, assets_by_slot)
        except MissingAsset as exc:
            logger.warning("Skipping slot {}: {}", exc.slot_id, exc)
            continue
        layers.append(Layer(slot=slot, asset=asset, z=len(layers)))
    if slots and not layers:
        raise NoContent(f"None of the {len(slots)} slots has media to composite")
    return layers
