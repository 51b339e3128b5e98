"""
In-memory shipment model.

A ShipmentGroup is one partition of the cart lines that shares a single
ship-date commitment. Groups are created by the cart aggregator (draft ids)
or rebuilt from planned_shipments rows when an order is reopened (persisted ids).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Union

DEFAULT_GROUP_KEY = "default"
DEFAULT_GROUP_NAME = "Available to Ship"
PERSISTED_KEY_PREFIX = "planned-"


# ---------- IDS ----------
@dataclass(frozen=True)
class DraftId:
    local_id: str

    def __str__(self) -> str:
        return self.local_id


@dataclass(frozen=True)
class PersistedId:
    id: int

    def __str__(self) -> str:
        return f"{PERSISTED_KEY_PREFIX}{self.id}"


ShipmentId = Union[DraftId, PersistedId]


def shipment_key(shipment_id: ShipmentId) -> str:
    return str(shipment_id)


def parse_shipment_key(key: str) -> ShipmentId:
    if key.startswith(PERSISTED_KEY_PREFIX):
        suffix = key[len(PERSISTED_KEY_PREFIX):]
        if suffix.isdigit():
            return PersistedId(int(suffix))
    return DraftId(key)


def collection_group_key(collection_id: int | None) -> str:
    if collection_id is None:
        return DEFAULT_GROUP_KEY
    return f"collection-{collection_id}"


# ---------- VALUE TYPES ----------
@dataclass
class CartLine:
    sku: str
    description: str
    quantity: int
    unit_price: Decimal
    collection_id: int | None = None
    # persisted order item id (edit mode only)
    item_id: int | None = None
    # shipment this line came from, stamped when it is combined
    origin_key: str | None = None

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_price)


@dataclass(frozen=True)
class CollectionWindow:
    collection_id: int
    name: str
    ship_window_start: date | None = None
    ship_window_end: date | None = None

    @property
    def label(self) -> str:
        return self.name

    @property
    def is_open(self) -> bool:
        return self.ship_window_start is None and self.ship_window_end is None

    @property
    def is_complete(self) -> bool:
        return self.ship_window_start is not None and self.ship_window_end is not None


@dataclass
class ShipmentGroup:
    id: ShipmentId
    collection_id: int | None
    collection_name: str
    planned_ship_start: date | None
    planned_ship_end: date | None
    min_allowed_start: date | None = None
    min_allowed_end: date | None = None
    lines: list[CartLine] = field(default_factory=list)
    is_combined: bool = False
    origin_shipment_ids: list[ShipmentId] = field(default_factory=list)
    # origin id -> that origin's window (None when the origin was unconstrained)
    origin_windows: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.collection_id is None:
            # unconstrained (or combined) groups never carry a single merged bound
            self.min_allowed_start = None
            self.min_allowed_end = None

    @property
    def key(self) -> str:
        return shipment_key(self.id)

    @property
    def subtotal(self) -> Decimal:
        return sum((ln.line_total for ln in self.lines), Decimal("0"))

    @property
    def item_count(self) -> int:
        return len(self.lines)

    def own_window(self) -> CollectionWindow | None:
        if self.collection_id is None or self.is_combined:
            return None
        return CollectionWindow(
            collection_id=self.collection_id,
            name=self.collection_name,
            ship_window_start=self.min_allowed_start,
            ship_window_end=self.min_allowed_end,
        )

    def snapshot(self) -> "ShipmentGroup":
        return copy.deepcopy(self)


# ---------- DRAFT SERIALIZATION ----------
def _iso(d: date | None) -> str | None:
    return d.isoformat() if d else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def window_to_dict(w: CollectionWindow | None) -> dict | None:
    if w is None:
        return None
    return {
        "collection_id": w.collection_id,
        "name": w.name,
        "ship_window_start": _iso(w.ship_window_start),
        "ship_window_end": _iso(w.ship_window_end),
    }


def window_from_dict(data: dict | None) -> CollectionWindow | None:
    if data is None:
        return None
    return CollectionWindow(
        collection_id=int(data["collection_id"]),
        name=data["name"],
        ship_window_start=_parse_date(data.get("ship_window_start")),
        ship_window_end=_parse_date(data.get("ship_window_end")),
    )


def line_to_dict(ln: CartLine) -> dict:
    return {
        "sku": ln.sku,
        "description": ln.description,
        "quantity": ln.quantity,
        "unit_price": str(ln.unit_price),
        "collection_id": ln.collection_id,
        "item_id": ln.item_id,
        "origin_key": ln.origin_key,
    }


def line_from_dict(data: dict) -> CartLine:
    return CartLine(
        sku=data["sku"],
        description=data.get("description", ""),
        quantity=int(data["quantity"]),
        unit_price=Decimal(str(data["unit_price"])),
        collection_id=data.get("collection_id"),
        item_id=data.get("item_id"),
        origin_key=data.get("origin_key"),
    )


def group_to_dict(g: ShipmentGroup) -> dict:
    return {
        "id": g.key,
        "collection_id": g.collection_id,
        "collection_name": g.collection_name,
        "planned_ship_start": _iso(g.planned_ship_start),
        "planned_ship_end": _iso(g.planned_ship_end),
        "min_allowed_start": _iso(g.min_allowed_start),
        "min_allowed_end": _iso(g.min_allowed_end),
        "lines": [line_to_dict(ln) for ln in g.lines],
        "is_combined": g.is_combined,
        "origin_shipment_ids": [shipment_key(o) for o in g.origin_shipment_ids],
        "origin_windows": {shipment_key(k): window_to_dict(v) for k, v in g.origin_windows.items()},
    }


def group_from_dict(data: dict) -> ShipmentGroup:
    return ShipmentGroup(
        id=parse_shipment_key(data["id"]),
        collection_id=data.get("collection_id"),
        collection_name=data.get("collection_name") or "",
        planned_ship_start=_parse_date(data.get("planned_ship_start")),
        planned_ship_end=_parse_date(data.get("planned_ship_end")),
        min_allowed_start=_parse_date(data.get("min_allowed_start")),
        min_allowed_end=_parse_date(data.get("min_allowed_end")),
        lines=[line_from_dict(ln) for ln in data.get("lines", [])],
        is_combined=bool(data.get("is_combined", False)),
        origin_shipment_ids=[parse_shipment_key(k) for k in data.get("origin_shipment_ids", [])],
        origin_windows={
            parse_shipment_key(k): window_from_dict(v)
            for k, v in (data.get("origin_windows") or {}).items()
        },
    )
