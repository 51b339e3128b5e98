"""create order and planned shipment tables

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ORDER_STATUS = sa.Enum("PENDING", "SHIPPED", "INVOICED", "CANCELLED", name="order_status")
PLANNED_SHIPMENT_STATUS = sa.Enum(
    "PLANNED", "PARTIALLY_FULFILLED", "FULFILLED", "CANCELLED", name="planned_shipment_status"
)


def upgrade() -> None:
    op.create_table(
        "collections",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("ship_window_start", sa.Date()),
        sa.Column("ship_window_end", sa.Date()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "customer_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("store_name", sa.String(255)),
        sa.Column("status", ORDER_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("is_transferred", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ship_start_date", sa.Date()),
        sa.Column("ship_end_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "planned_shipments",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("customer_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("collection_id", sa.BigInteger(), sa.ForeignKey("collections.id", ondelete="SET NULL")),
        sa.Column("collection_name", sa.String(255)),
        sa.Column("planned_ship_start", sa.Date(), nullable=False),
        sa.Column("planned_ship_end", sa.Date(), nullable=False),
        sa.Column("status", PLANNED_SHIPMENT_STATUS, nullable=False, server_default="PLANNED"),
        sa.Column("is_combined", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("origins", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("planned_ship_start <= planned_ship_end", name="ck_planned_shipment_dates_ordered"),
    )
    op.create_index("ix_planned_shipments_order_id", "planned_shipments", ["order_id"])

    op.create_table(
        "order_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("customer_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "planned_shipment_id",
            sa.BigInteger(),
            sa.ForeignKey("planned_shipments.id", ondelete="SET NULL"),
        ),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("collection_id", sa.BigInteger()),
        sa.Column("collection_name", sa.String(255)),
        sa.Column("origin_shipment_key", sa.String(255)),
        sa.CheckConstraint("quantity > 0", name="ck_order_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_order_item_unit_price_nonneg"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_planned_shipment_id", "order_items", ["planned_shipment_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", PK, primary_key=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_order_items_planned_shipment_id", table_name="order_items")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_planned_shipments_order_id", table_name="planned_shipments")
    op.drop_table("planned_shipments")
    op.drop_table("customer_orders")
    op.drop_table("collections")
    # Postgres keeps named enum types around after the tables go
    PLANNED_SHIPMENT_STATUS.drop(op.get_bind(), checkfirst=True)
    ORDER_STATUS.drop(op.get_bind(), checkfirst=True)
