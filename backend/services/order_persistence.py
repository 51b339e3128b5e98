"""
Order persistence adapter.

Commits finalized shipment groups as planned_shipments rows and tags every
order item with its planned shipment (plus its provenance key inside
combined shipments), so the grouping can be rebuilt later without
re-deriving it from collection metadata, whose windows may have moved
since the order was placed.

Rules:
- a commit is all or nothing: any SQL failure rolls back and raises
  PersistenceFailure
- every reconstruction re-reads the order and re-checks that it is still
  editable (StaleEditState otherwise); nothing is cached
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import AuditLog, CustomerOrder, OrderItem, PlannedShipment
from backend.app.db.models.core_types import EDITABLE_ORDER_STATUSES, OrderStatus, PlannedShipmentStatus
from backend.services.cart import aggregate_cart
from backend.services.errors import PersistenceFailure, StaleEditState
from backend.services.shipment_model import (
    DEFAULT_GROUP_NAME,
    CartLine,
    CollectionWindow,
    PersistedId,
    ShipmentGroup,
    parse_shipment_key,
    shipment_key,
)
from backend.services.ship_window import (
    ORDERING_MESSAGE,
    CollectionWindowProvider,
    SqlCollectionProvider,
    ensure_submittable,
    validate_ship_dates,
)

logger = logging.getLogger(__name__)

# Items added while editing, not yet attached to a planned shipment
NEW_GROUP_PREFIX = "new-"


@dataclass
class CommitResult:
    order_id: int
    order_number: str
    # draft (or persisted) shipment key -> planned_shipments.id
    shipment_ids: dict[str, int] = field(default_factory=dict)


@dataclass
class PlannedShipmentRecord:
    id: int
    collection_id: int | None
    collection_name: str | None
    ship_start: date
    ship_end: date
    item_ids: list[int]
    is_combined: bool = False
    origins: list[dict] = field(default_factory=list)


@dataclass
class OrderItemRecord:
    id: int
    sku: str
    description: str
    quantity: int
    price: Decimal
    collection_id: int | None
    collection_name: str | None
    planned_shipment_id: int | None
    origin_shipment_key: str | None


@dataclass
class AffectedShipment:
    order_id: int
    order_number: str
    store_name: str | None
    shipment_id: int
    current_start: date
    current_end: date
    suggested_start: date
    suggested_end: date
    is_start_invalid: bool
    is_end_invalid: bool
    # items of the changed collection only
    item_count: int
    subtotal: Decimal

    @property
    def is_invalid(self) -> bool:
        return self.is_start_invalid or self.is_end_invalid


@dataclass
class AffectedOrdersResult:
    affected: list[AffectedShipment] = field(default_factory=list)
    total_orders: int = 0
    total_shipments: int = 0
    invalid_count: int = 0
    # transferred orders are frozen and never listed
    transferred_excluded_count: int = 0


class OrderPersistenceAdapter:
    def __init__(self, db: Session, provider: CollectionWindowProvider | None = None):
        self.db = db
        self.provider = provider or SqlCollectionProvider(db)

    # ---------- commit ----------
    def commit_order(
        self,
        groups: Iterable[ShipmentGroup],
        *,
        order_number: str,
        store_name: str | None = None,
    ) -> CommitResult:
        groups = list(groups)
        ensure_submittable(groups)

        try:
            order = CustomerOrder(
                order_number=order_number,
                store_name=store_name,
                status=OrderStatus.pending,
                is_transferred=False,
            )
            self.db.add(order)
            self.db.flush()  # get order.id

            result = CommitResult(order_id=int(order.id), order_number=order_number)
            for g in groups:
                ps = self._add_shipment(order, g)
                result.shipment_ids[g.key] = int(ps.id)
                for ln in g.lines:
                    self._add_item(order, ps, g, ln)

            self._recalculate_header_dates(order, groups)
            self._audit("ORDER_SUBMITTED", order.id, {"shipments": result.shipment_ids})
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("commit of order %s failed", order_number, exc_info=True)
            raise PersistenceFailure(f"Could not save order {order_number}") from exc

        logger.info("order %s committed with %d planned shipment(s)", order_number, len(groups))
        return result

    def commit_edits(self, order_id: int, groups: Iterable[ShipmentGroup]) -> CommitResult:
        """Replace the planned shipments of an editable order with `groups`."""
        groups = list(groups)
        order = self._load_editable(order_id, for_update=True)
        ensure_submittable(groups)

        try:
            existing_ships = {int(ps.id): ps for ps in order.planned_shipments}
            existing_items = {int(it.id): it for it in order.items}
            kept_ships: set[int] = set()
            kept_items: set[int] = set()
            result = CommitResult(order_id=int(order.id), order_number=order.order_number)

            for g in groups:
                ps = None
                if isinstance(g.id, PersistedId):
                    ps = existing_ships.get(g.id.id)
                if ps is not None:
                    self._apply_group(ps, g)
                else:
                    ps = self._add_shipment(order, g)
                kept_ships.add(int(ps.id))
                result.shipment_ids[g.key] = int(ps.id)

                for ln in g.lines:
                    item = existing_items.get(ln.item_id) if ln.item_id is not None else None
                    if item is None:
                        item = self._add_item(order, ps, g, ln)
                    else:
                        item.quantity = ln.quantity
                        item.unit_price = ln.unit_price
                        item.planned_shipment = ps
                        item.origin_shipment_key = ln.origin_key
                    kept_items.add(int(item.id))

            for item_id, item in existing_items.items():
                if item_id not in kept_items:
                    self.db.delete(item)
            # moved items must point at their new shipment before old ones go
            self.db.flush()
            for ps_id, ps in existing_ships.items():
                if ps_id not in kept_ships:
                    self.db.delete(ps)

            self._recalculate_header_dates(order, groups)
            self._audit("SHIPMENTS_EDITED", order.id, {"shipments": result.shipment_ids})
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("commit of edits to order %s failed", order_id, exc_info=True)
            raise PersistenceFailure(f"Could not save changes to order {order_id}") from exc

        logger.info("order %s shipments updated (%d planned)", order_id, len(groups))
        return result

    def _add_shipment(self, order: CustomerOrder, g: ShipmentGroup) -> PlannedShipment:
        ps = PlannedShipment(order=order, status=PlannedShipmentStatus.planned)
        self._apply_group(ps, g)
        self.db.add(ps)
        self.db.flush()  # get ps.id
        return ps

    @staticmethod
    def _apply_group(ps: PlannedShipment, g: ShipmentGroup) -> None:
        ps.collection_id = None if g.is_combined else g.collection_id
        ps.collection_name = g.collection_name
        ps.planned_ship_start = g.planned_ship_start
        ps.planned_ship_end = g.planned_ship_end
        ps.is_combined = g.is_combined
        ps.origins = None
        if g.is_combined:
            ps.origins = []
            for origin_id in g.origin_shipment_ids:
                w = g.origin_windows.get(origin_id)
                ps.origins.append(
                    {
                        "key": shipment_key(origin_id),
                        "collection_id": w.collection_id if w else None,
                        "collection_name": w.name if w else DEFAULT_GROUP_NAME,
                    }
                )

    def _add_item(self, order: CustomerOrder, ps: PlannedShipment, g: ShipmentGroup, ln: CartLine) -> OrderItem:
        item = OrderItem(
            order=order,
            planned_shipment=ps,
            sku=ln.sku,
            description=ln.description,
            quantity=ln.quantity,
            unit_price=ln.unit_price,
            collection_id=ln.collection_id,
            collection_name=_line_collection_name(g, ln),
            origin_shipment_key=ln.origin_key,
        )
        self.db.add(item)
        self.db.flush()  # get item.id
        return item

    @staticmethod
    def _recalculate_header_dates(order: CustomerOrder, groups: list[ShipmentGroup]) -> None:
        if not groups:
            return
        order.ship_start_date = min(g.planned_ship_start for g in groups)
        order.ship_end_date = max(g.planned_ship_end for g in groups)

    def _audit(self, action: str, order_id: int, meta: dict) -> None:
        self.db.add(
            AuditLog(
                action=action,
                entity_type="customer_order",
                entity_id=str(order_id),
                meta=json.dumps(meta, sort_keys=True),
            )
        )

    # ---------- load ----------
    def _load_editable(self, order_id: int, *, for_update: bool = False) -> CustomerOrder:
        try:
            order = self.db.get(
                CustomerOrder,
                order_id,
                populate_existing=True,
                with_for_update=for_update or None,
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(f"Could not load order {order_id}") from exc

        if order is None:
            logger.warning("order %s vanished during edit", order_id)
            raise StaleEditState(order_id, "no longer exists")
        if not order.is_editable:
            logger.warning("order %s is no longer editable (status=%s)", order_id, order.status)
            raise StaleEditState(order_id, "can no longer be edited")
        return order

    def load_planned_shipments(self, order_id: int) -> list[PlannedShipmentRecord]:
        rows = (
            self.db.execute(
                select(PlannedShipment)
                .where(PlannedShipment.order_id == order_id)
                .order_by(PlannedShipment.id.asc())
            )
            .scalars()
            .all()
        )
        return [
            PlannedShipmentRecord(
                id=int(ps.id),
                collection_id=ps.collection_id,
                collection_name=ps.collection_name,
                ship_start=ps.planned_ship_start,
                ship_end=ps.planned_ship_end,
                item_ids=[int(it.id) for it in ps.items],
                is_combined=ps.is_combined,
                origins=list(ps.origins or []),
            )
            for ps in rows
        ]

    def load_order_items(self, order_id: int) -> list[OrderItemRecord]:
        rows = (
            self.db.execute(
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.id.asc())
            )
            .scalars()
            .all()
        )
        return [
            OrderItemRecord(
                id=int(it.id),
                sku=it.sku,
                description=it.description,
                quantity=it.quantity,
                price=Decimal(it.unit_price),
                collection_id=it.collection_id,
                collection_name=it.collection_name,
                planned_shipment_id=it.planned_shipment_id,
                origin_shipment_key=it.origin_shipment_key,
            )
            for it in rows
        ]

    # ---------- reconstruct ----------
    def reconstruct(self, order_id: int) -> list[ShipmentGroup]:
        """Rebuild the shipment groups of an order reopened for editing."""
        self._load_editable(order_id)
        try:
            records = self.load_planned_shipments(order_id)
            items = {rec.id: rec for rec in self.load_order_items(order_id)}
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceFailure(f"Could not load shipments of order {order_id}") from exc

        groups: list[ShipmentGroup] = []
        assigned: set[int] = set()
        for rec in records:
            lines = [_line_from_item(items[i]) for i in rec.item_ids if i in items]
            if not lines:
                # empty shipments are dropped on the next save
                continue
            assigned.update(rec.item_ids)
            groups.append(self._group_from_record(rec, lines))

        loose = [_line_from_item(it) for it in items.values() if it.id not in assigned]
        if loose:
            groups.extend(aggregate_cart(loose, self.provider, key_prefix=NEW_GROUP_PREFIX).groups)

        logger.info("order %s reconstructed into %d shipment(s)", order_id, len(groups))
        return groups

    def _window_for(self, collection_id: int | None, name: str | None) -> CollectionWindow | None:
        if collection_id is None:
            return None
        w = self.provider.get_window(collection_id)
        if w is None:
            w = CollectionWindow(collection_id=collection_id, name=name or f"Collection {collection_id}")
        return w

    def _group_from_record(self, rec: PlannedShipmentRecord, lines: list[CartLine]) -> ShipmentGroup:
        if rec.is_combined:
            origin_ids = [parse_shipment_key(o["key"]) for o in rec.origins]
            return ShipmentGroup(
                id=PersistedId(rec.id),
                collection_id=None,
                collection_name=rec.collection_name or "",
                planned_ship_start=rec.ship_start,
                planned_ship_end=rec.ship_end,
                lines=lines,
                is_combined=True,
                origin_shipment_ids=origin_ids,
                origin_windows={
                    oid: self._window_for(o.get("collection_id"), o.get("collection_name"))
                    for oid, o in zip(origin_ids, rec.origins)
                },
            )

        # minimums follow the current window; grouping and dates do not
        w = self._window_for(rec.collection_id, rec.collection_name)
        return ShipmentGroup(
            id=PersistedId(rec.id),
            collection_id=rec.collection_id,
            collection_name=rec.collection_name or (w.name if w else DEFAULT_GROUP_NAME),
            planned_ship_start=rec.ship_start,
            planned_ship_end=rec.ship_end,
            min_allowed_start=w.ship_window_start if w else None,
            min_allowed_end=w.ship_window_end if w else None,
            lines=lines,
        )

    # ---------- window changes ----------
    def affected_by_window_change(
        self,
        collection_id: int,
        new_start: date | None,
        new_end: date | None,
    ) -> AffectedOrdersResult:
        """
        Planned shipments of editable orders that carry this collection, checked
        against a proposed window. Nothing is written; dates are only suggested.
        """
        c = self.provider.get_window(collection_id)
        window = CollectionWindow(
            collection_id=collection_id,
            name=c.name if c else f"Collection {collection_id}",
            ship_window_start=new_start,
            ship_window_end=new_end,
        )

        rows = (
            self.db.execute(
                select(PlannedShipment)
                .join(CustomerOrder, PlannedShipment.order_id == CustomerOrder.id)
                .where(CustomerOrder.status.in_(list(EDITABLE_ORDER_STATUSES)))
                .where((PlannedShipment.collection_id == collection_id) | PlannedShipment.is_combined.is_(True))
                .order_by(PlannedShipment.order_id.asc(), PlannedShipment.id.asc())
            )
            .scalars()
            .all()
        )

        result = AffectedOrdersResult()
        listed_orders: set[int] = set()
        excluded_orders: set[int] = set()
        for ps in rows:
            if ps.is_combined and not any(o.get("collection_id") == collection_id for o in ps.origins or []):
                continue
            if ps.order.is_transferred:
                excluded_orders.add(int(ps.order_id))
                continue

            items = [it for it in ps.items if it.collection_id == collection_id]
            check = validate_ship_dates(ps.planned_ship_start, ps.planned_ship_end, [window])
            fields = {e.field for e in check.errors if e.message != ORDERING_MESSAGE}
            shipment = AffectedShipment(
                order_id=int(ps.order_id),
                order_number=ps.order.order_number,
                store_name=ps.order.store_name,
                shipment_id=int(ps.id),
                current_start=ps.planned_ship_start,
                current_end=ps.planned_ship_end,
                suggested_start=max(ps.planned_ship_start, new_start) if new_start else ps.planned_ship_start,
                suggested_end=max(ps.planned_ship_end, new_end) if new_end else ps.planned_ship_end,
                is_start_invalid="start" in fields,
                is_end_invalid="end" in fields,
                item_count=len(items),
                subtotal=sum((Decimal(it.quantity) * Decimal(it.unit_price) for it in items), Decimal("0")),
            )
            result.affected.append(shipment)
            listed_orders.add(shipment.order_id)
            if shipment.is_invalid:
                result.invalid_count += 1

        result.total_orders = len(listed_orders)
        result.total_shipments = len(result.affected)
        result.transferred_excluded_count = len(excluded_orders)
        logger.info(
            "window change on collection %s affects %d shipment(s), %d invalid",
            collection_id,
            result.total_shipments,
            result.invalid_count,
        )
        return result


def _line_from_item(it: OrderItemRecord) -> CartLine:
    return CartLine(
        sku=it.sku,
        description=it.description,
        quantity=it.quantity,
        unit_price=it.price,
        collection_id=it.collection_id,
        item_id=it.id,
        origin_key=it.origin_shipment_key,
    )


def _line_collection_name(g: ShipmentGroup, ln: CartLine) -> str | None:
    if ln.collection_id is None:
        return None
    if not g.is_combined:
        return g.collection_name
    for w in g.origin_windows.values():
        if w is not None and w.collection_id == ln.collection_id:
            return w.name
    return None
