"""
Ship window constraints and date validation.

Core rule: ship dates can never be earlier than a collection's approved
window. Later dates are always allowed.

Combined shipments are checked against every origin collection separately,
so an error always names the collection whose promise is at risk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Protocol

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Collection
from backend.services.errors import ValidationError
from backend.services.shipment_model import CollectionWindow, ShipmentGroup

logger = logging.getLogger(__name__)

ORDERING_MESSAGE = "End date must be after start date"


# ---------- COLLECTION METADATA ----------
class CollectionWindowProvider(Protocol):
    def get_window(self, collection_id: int) -> CollectionWindow | None: ...


class StaticCollectionProvider:
    """Windows known up front (ephemeral carts, tests)."""

    def __init__(self, windows: Iterable[CollectionWindow] = ()):
        self._windows = {w.collection_id: w for w in windows}

    def get_window(self, collection_id: int) -> CollectionWindow | None:
        return self._windows.get(collection_id)


class SqlCollectionProvider:
    """Reads the current window from the collections table on every call."""

    def __init__(self, db: Session):
        self.db = db

    def get_window(self, collection_id: int) -> CollectionWindow | None:
        c = self.db.get(Collection, collection_id)
        if not c:
            return None
        return CollectionWindow(
            collection_id=int(c.id),
            name=c.name,
            ship_window_start=c.ship_window_start,
            ship_window_end=c.ship_window_end,
        )


# ---------- RESULTS ----------
@dataclass(frozen=True)
class FieldError:
    field: str  # "start" | "end"
    message: str
    collection_name: str = ""
    min_allowed_date: date | None = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list[FieldError] = field(default_factory=list)

    def by_field(self) -> dict[str, str]:
        """
        One message per field for inline display.
        The start > end ordering error wins over window errors on `end`.
        """
        out: dict[str, str] = {}
        for err in self.errors:
            if err.message == ORDERING_MESSAGE or err.field not in out:
                out[err.field] = err.message
        return out


# ---------- CONSTRAINT RESOLVER ----------
def resolve_constraints(group: ShipmentGroup) -> list[CollectionWindow]:
    if not group.is_combined:
        own = group.own_window()
        if own is None or own.is_open:
            return []
        return [own]

    constraints = []
    for origin_id in group.origin_shipment_ids:
        w = group.origin_windows.get(origin_id)
        if w is not None and not w.is_open:
            constraints.append(w)
    return constraints


def minimum_allowed_dates(windows: Iterable[CollectionWindow]) -> tuple[date | None, date | None]:
    """Latest start and latest end across windows. Display hint only."""
    windows = list(windows)
    starts = [w.ship_window_start for w in windows if w.ship_window_start]
    ends = [w.ship_window_end for w in windows if w.ship_window_end]
    return (max(starts) if starts else None, max(ends) if ends else None)


def windows_overlap(a: CollectionWindow, b: CollectionWindow) -> bool:
    if not (a.is_complete and b.is_complete):
        return False
    return a.ship_window_start <= b.ship_window_end and a.ship_window_end >= b.ship_window_start


def overlap_window(a: CollectionWindow, b: CollectionWindow) -> tuple[date, date] | None:
    if not windows_overlap(a, b):
        return None
    return (
        max(a.ship_window_start, b.ship_window_start),
        min(a.ship_window_end, b.ship_window_end),
    )


def multi_collection_overlap(windows: Iterable[CollectionWindow]) -> tuple[date, date] | None:
    windows = list(windows)
    if not windows or not all(w.is_complete for w in windows):
        return None
    start = max(w.ship_window_start for w in windows)
    end = min(w.ship_window_end for w in windows)
    if start > end:
        return None
    return start, end


# ---------- VALIDATOR ----------
def format_short_date(d: date) -> str:
    return f"{d:%b} {d.day}"


def _prior_message(d: date, label: str, named: bool) -> str:
    msg = f"Cannot be prior to {format_short_date(d)}"
    if named:
        msg += f" ({label})"
    return msg


def validate_ship_dates(
    start: date | None,
    end: date | None,
    constraints: Iterable[CollectionWindow],
) -> ValidationResult:
    constraints = list(constraints)
    named = len(constraints) > 1
    errors: list[FieldError] = []

    for c in constraints:
        if start is not None and c.ship_window_start and start < c.ship_window_start:
            errors.append(
                FieldError("start", _prior_message(c.ship_window_start, c.label, named), c.label, c.ship_window_start)
            )
        if end is not None and c.ship_window_end and end < c.ship_window_end:
            errors.append(
                FieldError("end", _prior_message(c.ship_window_end, c.label, named), c.label, c.ship_window_end)
            )

    if start is not None and end is not None and start > end:
        errors.append(FieldError("end", ORDERING_MESSAGE, "", start))

    return ValidationResult(valid=not errors, errors=errors)


def validate_group(group: ShipmentGroup) -> ValidationResult:
    return validate_ship_dates(group.planned_ship_start, group.planned_ship_end, resolve_constraints(group))


def ensure_submittable(groups: Iterable[ShipmentGroup]) -> None:
    """Raise ValidationError unless every shipment has valid, complete dates."""
    failures: dict[str, list[FieldError]] = {}
    for g in groups:
        errs: list[FieldError] = []
        if g.planned_ship_start is None:
            errs.append(FieldError("start", "Start date is required"))
        if g.planned_ship_end is None:
            errs.append(FieldError("end", "End date is required"))
        errs.extend(validate_group(g).errors)
        if errs:
            failures[g.key] = errs

    if failures:
        logger.debug("submission blocked for shipments %s", sorted(failures))
        raise ValidationError(failures)


def refresh_constraints(group: ShipmentGroup, provider: CollectionWindowProvider) -> ShipmentGroup:
    """Re-read the group's windows from the provider instead of trusting round-tripped values."""
    if group.is_combined:
        for origin_id, w in list(group.origin_windows.items()):
            if w is not None:
                group.origin_windows[origin_id] = provider.get_window(w.collection_id) or w
    elif group.collection_id is not None:
        w = provider.get_window(group.collection_id)
        if w is not None:
            group.min_allowed_start = w.ship_window_start
            group.min_allowed_end = w.ship_window_end
    return group
