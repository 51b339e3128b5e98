"""
Planning session.

Owns the shipment groups of one cart (or one reopened order) for the length
of an editing session. Every command maps onto one validator or engine
operation and touches nothing outside the session. The draft-recovery
store only ever sees `to_draft()` output.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import date
from typing import Iterable

from backend.services.combine import CombineEngine, can_combine_with, origin_key_for
from backend.services.errors import CombineConflict, ValidationError
from backend.services.shipment_model import (
    ShipmentGroup,
    ShipmentId,
    group_from_dict,
    group_to_dict,
    shipment_key,
)
from backend.services.ship_window import (
    CollectionWindowProvider,
    ValidationResult,
    ensure_submittable,
    validate_group,
    validate_ship_dates,
)

logger = logging.getLogger(__name__)

DRAFT_VERSION = 1


class PlanningSession:
    def __init__(
        self,
        groups: Iterable[ShipmentGroup],
        provider: CollectionWindowProvider,
        *,
        order_id: int | None = None,
        engine: CombineEngine | None = None,
    ):
        self.groups: list[ShipmentGroup] = list(groups)
        self.provider = provider
        self.order_id = order_id
        self.engine = engine or CombineEngine()
        self._errors: dict[ShipmentId, ValidationResult] = {}

        for g in self.groups:
            self.engine.adopt(g)
            self._errors[g.id] = validate_group(g)

    # ---------- lookups ----------
    @property
    def will_split_order(self) -> bool:
        return len(self.groups) > 1

    def find(self, shipment_id: ShipmentId) -> ShipmentGroup | None:
        for g in self.groups:
            if g.id == shipment_id:
                return g
        return None

    def get(self, shipment_id: ShipmentId) -> ShipmentGroup:
        g = self.find(shipment_id)
        if g is None:
            raise KeyError(shipment_key(shipment_id))
        return g

    def _replace(self, old: list[ShipmentGroup], new: list[ShipmentGroup]) -> None:
        # new groups take the slot of the first group they replace
        old_ids = {g.id for g in old}
        slot = min(i for i, g in enumerate(self.groups) if g.id in old_ids)
        kept = [g for g in self.groups if g.id not in old_ids]
        slot = min(slot, len(kept))
        self.groups = kept[:slot] + new + kept[slot:]
        for g in old:
            self._errors.pop(g.id, None)
        for g in new:
            self._errors[g.id] = validate_group(g)

    # ---------- commands ----------
    def on_dates_change(self, shipment_id: ShipmentId, start: date | None, end: date | None) -> ValidationResult:
        """Apply the dates (never blocked) and return the advisory result."""
        g = self.get(shipment_id)
        g.planned_ship_start = start
        g.planned_ship_end = end
        result = validate_group(g)
        self._errors[g.id] = result
        logger.debug("dates %s..%s on %s valid=%s", start, end, g.key, result.valid)
        return result

    def on_combine(self, shipment_id: ShipmentId, target_id: ShipmentId) -> ShipmentGroup:
        owner_a, owner_b = self.engine.owner_of(shipment_id), self.engine.owner_of(target_id)
        if owner_a is not None and owner_a == owner_b and self.find(owner_a) is not None:
            return self.get(owner_a)

        a, b = self.find(shipment_id), self.find(target_id)
        if a is None or b is None:
            missing = shipment_id if a is None else target_id
            owner = self.engine.owner_of(missing)
            if owner is not None:
                logger.warning("combine rejected: %s already in %s", shipment_key(missing), shipment_key(owner))
                raise CombineConflict(
                    f"Shipment {shipment_key(missing)} is already combined into {shipment_key(owner)}"
                )
            raise KeyError(shipment_key(missing))

        try:
            combined = self.engine.combine(a, b)
        except CombineConflict:
            logger.warning("combine rejected: %s + %s", a.key, b.key)
            raise
        self._replace([a, b], [combined])
        return combined

    def on_split(self, shipment_id: ShipmentId) -> list[ShipmentGroup]:
        g = self.find(shipment_id)
        if g is None:
            # already split: replay is a no-op
            logger.debug("split of %s ignored, shipment no longer present", shipment_key(shipment_id))
            return []
        if not g.is_combined:
            return [g]
        restored = self.engine.split(g)
        self._replace([g], restored)
        return restored

    def on_move_item(
        self,
        sku: str,
        from_id: ShipmentId,
        to_id: ShipmentId,
        *,
        allow_override: bool = False,
    ) -> ShipmentGroup:
        """
        Move one line between shipments.
        A target whose dates break the line's collection window needs an override.
        """
        source, target = self.get(from_id), self.get(to_id)
        line = next((ln for ln in source.lines if ln.sku == sku), None)
        if line is None:
            raise KeyError(sku)

        if line.collection_id is not None:
            window = self.provider.get_window(line.collection_id)
            if window is not None and not window.is_open:
                result = validate_ship_dates(target.planned_ship_start, target.planned_ship_end, [window])
                if not result.valid and not allow_override:
                    raise ValidationError({target.key: result.errors}, "Target shipment dates violate collection window")
                if not result.valid:
                    logger.warning("item %s moved to %s with window override", sku, target.key)

        source.lines.remove(line)
        moved = dataclasses.replace(line, origin_key=None)
        if target.is_combined:
            moved.origin_key = origin_key_for(target, moved.collection_id)
        target.lines.append(moved)

        if not source.lines:
            self.groups.remove(source)
            self._errors.pop(source.id, None)
            self.engine.discard(source)
        else:
            self._errors[source.id] = validate_group(source)
        self._errors[target.id] = validate_group(target)
        return target

    # ---------- queries ----------
    def combine_candidates(self, shipment_id: ShipmentId) -> list[ShipmentId]:
        return can_combine_with(self.get(shipment_id), self.groups)

    def validation_errors(self) -> dict[str, dict[str, str]]:
        """Inline errors per shipment key, one message per field."""
        return {
            shipment_key(sid): result.by_field()
            for sid, result in self._errors.items()
            if not result.valid
        }

    def ensure_submittable(self) -> None:
        ensure_submittable(self.groups)

    # ---------- draft sync boundary ----------
    def to_draft(self) -> dict:
        return {
            "version": DRAFT_VERSION,
            "order_id": self.order_id,
            "groups": [group_to_dict(g) for g in self.groups],
        }

    @classmethod
    def from_draft(cls, data: dict, provider: CollectionWindowProvider) -> "PlanningSession":
        if data.get("version") != DRAFT_VERSION:
            raise ValueError(f"Unsupported draft version {data.get('version')!r}")
        return cls(
            [group_from_dict(g) for g in data.get("groups", [])],
            provider,
            order_id=data.get("order_id"),
        )
