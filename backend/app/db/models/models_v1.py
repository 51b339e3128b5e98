from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    JSON,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    OrderStatus,
    PlannedShipmentStatus,
    EDITABLE_ORDER_STATUSES,
)

# ---------- MASTER DATA ----------
class Collection(Base):
    __tablename__ = "collections"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    ship_window_start: Mapped[date | None] = mapped_column(Date)
    ship_window_end: Mapped[date | None] = mapped_column(Date)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ---------- ORDERS ----------
class CustomerOrder(Base):
    __tablename__ = "customer_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    store_name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )
    # Once handed to the storefront the order is frozen
    is_transferred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Header dates, derived from the planned shipments (min start / max end)
    ship_start_date: Mapped[date | None] = mapped_column(Date)
    ship_end_date: Mapped[date | None] = mapped_column(Date)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=datetime.utcnow)

    planned_shipments: Mapped[list["PlannedShipment"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PlannedShipment.id",
    )
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_ORDER_STATUSES and not self.is_transferred


class PlannedShipment(Base):
    __tablename__ = "planned_shipments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("customer_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    collection_id: Mapped[int | None] = mapped_column(ForeignKey("collections.id", ondelete="SET NULL"))
    collection_name: Mapped[str | None] = mapped_column(String(255))
    planned_ship_start: Mapped[date] = mapped_column(Date, nullable=False)
    planned_ship_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PlannedShipmentStatus] = mapped_column(
        Enum(PlannedShipmentStatus, name="planned_shipment_status"),
        default=PlannedShipmentStatus.planned,
        nullable=False,
    )

    # Combined shipments keep one entry per origin: {"key", "collection_id", "collection_name"}
    is_combined: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    origins: Mapped[list | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=datetime.utcnow)

    order: Mapped[CustomerOrder] = relationship(back_populates="planned_shipments")
    items: Mapped[list["OrderItem"]] = relationship(back_populates="planned_shipment", order_by="OrderItem.id")

    __table_args__ = (
        CheckConstraint("planned_ship_start <= planned_ship_end", name="ck_planned_shipment_dates_ordered"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("customer_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    planned_shipment_id: Mapped[int | None] = mapped_column(
        ForeignKey("planned_shipments.id", ondelete="SET NULL"),
        index=True,
    )
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Snapshot of the collection at order time
    collection_id: Mapped[int | None] = mapped_column(BigInteger)
    collection_name: Mapped[str | None] = mapped_column(String(255))

    # Provenance tag: the shipment this line belonged to before it was combined
    origin_shipment_key: Mapped[str | None] = mapped_column(String(255))

    order: Mapped[CustomerOrder] = relationship(back_populates="items")
    planned_shipment: Mapped[PlannedShipment | None] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_order_item_unit_price_nonneg"),
    )


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    meta: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
