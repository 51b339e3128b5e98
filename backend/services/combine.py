"""
Combine / split engine.

combine() merges two shipment groups into one combined group and records
an undo entry (snapshots of every origin group) keyed by the new id, so
split() is a lookup-and-restore. When no undo entry exists (the groups were
reloaded in a later session, or came through a stateless API call), split()
re-partitions lines by the provenance tag stamped on each line at combine
time. It never uses the line's current collection for this.

Both operations are idempotent: replaying a combine that already happened
returns the existing combined group, replaying a split returns nothing, and
splitting a plain group is a no-op.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from backend.services.errors import CombineConflict
from backend.services.shipment_model import (
    DEFAULT_GROUP_NAME,
    CartLine,
    DraftId,
    ShipmentGroup,
    ShipmentId,
    shipment_key,
)
from backend.services.ship_window import windows_overlap

logger = logging.getLogger(__name__)


@dataclass
class UndoEntry:
    origins: list[ShipmentGroup]
    start: date | None
    end: date | None
    fingerprint: Counter


def _fingerprint(lines: Iterable[CartLine]) -> Counter:
    return Counter((ln.origin_key, ln.sku, ln.quantity) for ln in lines)


def _later(a: date | None, b: date | None) -> date | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


def _earlier(a: date | None, b: date | None) -> date | None:
    if a is None or b is None:
        return a or b
    return min(a, b)


def _origins_of(group: ShipmentGroup) -> list[ShipmentId]:
    return list(group.origin_shipment_ids) if group.is_combined else [group.id]


def _origin_windows_of(group: ShipmentGroup) -> dict:
    if group.is_combined:
        return dict(group.origin_windows)
    return {group.id: group.own_window()}


def _tagged_lines(group: ShipmentGroup) -> list[CartLine]:
    return [dataclasses.replace(ln, origin_key=ln.origin_key or group.key) for ln in group.lines]


def origin_key_for(group: ShipmentGroup, collection_id: int | None) -> str:
    """Origin a line of this collection belongs to (first match, else the first origin)."""
    for origin_id in group.origin_shipment_ids:
        w = group.origin_windows.get(origin_id)
        if (w.collection_id if w else None) == collection_id:
            return shipment_key(origin_id)
    return shipment_key(group.origin_shipment_ids[0])


def clamp_to_own_window(group: ShipmentGroup, start: date | None, end: date | None) -> None:
    if start is not None:
        group.planned_ship_start = _later(start, group.min_allowed_start)
    if end is not None:
        group.planned_ship_end = _later(end, group.min_allowed_end)


class CombineEngine:
    def __init__(self):
        self._undo: dict[ShipmentId, UndoEntry] = {}
        self._combined: dict[ShipmentId, ShipmentGroup] = {}
        self._member_of: dict[ShipmentId, ShipmentId] = {}
        self._split_ids: set[ShipmentId] = set()

    # ---------- bookkeeping ----------
    def owner_of(self, shipment_id: ShipmentId) -> ShipmentId | None:
        return self._member_of.get(shipment_id)

    def has_undo(self, combined_id: ShipmentId) -> bool:
        return combined_id in self._undo

    def adopt(self, group: ShipmentGroup) -> None:
        """Register a combined group that was built elsewhere (reload, draft restore)."""
        if not group.is_combined:
            return
        self._combined[group.id] = group
        for origin_id in group.origin_shipment_ids:
            self._member_of[origin_id] = group.id

    def discard(self, group: ShipmentGroup) -> UndoEntry | None:
        self._combined.pop(group.id, None)
        for origin_id in group.origin_shipment_ids:
            if self._member_of.get(origin_id) == group.id:
                del self._member_of[origin_id]
        return self._undo.pop(group.id, None)

    # ---------- combine ----------
    def combine(self, a: ShipmentGroup, b: ShipmentGroup) -> ShipmentGroup:
        if a.id == b.id:
            raise CombineConflict(f"Cannot combine shipment {a.key} with itself")

        owner_a, owner_b = self.owner_of(a.id), self.owner_of(b.id)
        if owner_a is not None and owner_a == owner_b and owner_a in self._combined:
            logger.debug("combine %s + %s already applied as %s", a.key, b.key, owner_a)
            return self._combined[owner_a]
        for g, owner in ((a, owner_a), (b, owner_b)):
            if owner is not None:
                raise CombineConflict(
                    f"Shipment {g.key} is already combined into {shipment_key(owner)}"
                )

        origin_ids: list[ShipmentId] = []
        for origin_id in _origins_of(a) + _origins_of(b):
            if origin_id not in origin_ids:
                origin_ids.append(origin_id)

        origin_windows = _origin_windows_of(a)
        origin_windows.update(_origin_windows_of(b))

        snaps_a, snaps_b = self._origin_snapshots(a), self._origin_snapshots(b)
        snapshots = snaps_a + snaps_b if snaps_a is not None and snaps_b is not None else None
        lines = _tagged_lines(a) + _tagged_lines(b)

        combined = ShipmentGroup(
            id=DraftId("combined-" + "+".join(shipment_key(o) for o in origin_ids)),
            collection_id=None,
            collection_name=" + ".join(n for n in (a.collection_name, b.collection_name) if n),
            planned_ship_start=_later(a.planned_ship_start, b.planned_ship_start),
            planned_ship_end=_earlier(a.planned_ship_end, b.planned_ship_end),
            lines=lines,
            is_combined=True,
            origin_shipment_ids=origin_ids,
            origin_windows=origin_windows,
        )

        for g in (a, b):
            if g.is_combined:
                self.discard(g)
        if snapshots is not None and len(snapshots) == len(origin_ids):
            self._undo[combined.id] = UndoEntry(
                origins=snapshots,
                start=combined.planned_ship_start,
                end=combined.planned_ship_end,
                fingerprint=_fingerprint(lines),
            )
        self.adopt(combined)

        logger.info("combined %s into %s", [shipment_key(o) for o in origin_ids], combined.key)
        return combined

    def _origin_snapshots(self, group: ShipmentGroup) -> list[ShipmentGroup] | None:
        if not group.is_combined:
            return [group.snapshot()]
        entry = self._undo.get(group.id)
        if entry is None:
            return None
        return [s.snapshot() for s in entry.origins]

    # ---------- split ----------
    def split(self, group: ShipmentGroup) -> list[ShipmentGroup]:
        if not group.is_combined:
            return [group]
        if group.id in self._split_ids and group.id not in self._combined:
            logger.debug("split of %s already applied", group.key)
            return []

        entry = self.discard(group)
        self._split_ids.add(group.id)
        if entry is not None and entry.fingerprint == _fingerprint(group.lines):
            restored = [s.snapshot() for s in entry.origins]
            edited = (group.planned_ship_start, group.planned_ship_end) != (entry.start, entry.end)
        else:
            restored = self._rebuild_from_provenance(group)
            edited = True

        if edited:
            for g in restored:
                clamp_to_own_window(g, group.planned_ship_start, group.planned_ship_end)

        logger.info("split %s into %s", group.key, [g.key for g in restored])
        return restored

    def _rebuild_from_provenance(self, group: ShipmentGroup) -> list[ShipmentGroup]:
        by_origin: dict[str, list[CartLine]] = {shipment_key(o): [] for o in group.origin_shipment_ids}
        for ln in group.lines:
            key = ln.origin_key if ln.origin_key in by_origin else origin_key_for(group, ln.collection_id)
            by_origin[key].append(dataclasses.replace(ln, origin_key=None))

        restored = []
        for origin_id in group.origin_shipment_ids:
            lines = by_origin[shipment_key(origin_id)]
            if not lines:
                continue
            w = group.origin_windows.get(origin_id)
            restored.append(
                ShipmentGroup(
                    id=origin_id,
                    collection_id=w.collection_id if w else None,
                    collection_name=w.name if w else DEFAULT_GROUP_NAME,
                    planned_ship_start=group.planned_ship_start,
                    planned_ship_end=group.planned_ship_end,
                    min_allowed_start=w.ship_window_start if w else None,
                    min_allowed_end=w.ship_window_end if w else None,
                    lines=lines,
                )
            )
        return restored


def can_combine_with(group: ShipmentGroup, others: Iterable[ShipmentGroup]) -> list[ShipmentId]:
    """Other plain shipments whose complete windows overlap this one."""
    if group.is_combined:
        return []
    own = group.own_window()
    if own is None or not own.is_complete:
        return []

    out = []
    for other in others:
        if other.id == group.id or other.is_combined:
            continue
        theirs = other.own_window()
        if theirs is not None and windows_overlap(own, theirs):
            out.append(other.id)
    return out
