from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import persistence_failed, stale_edit, validation_failed
from backend.app.api.v1.endpoints.planning import session_view
from backend.app.db.models.models_v1 import CustomerOrder
from backend.app.schemas.planning import ShipmentGroupIO
from backend.services.errors import PersistenceFailure, StaleEditState, ValidationError
from backend.services.order_persistence import OrderPersistenceAdapter
from backend.services.planning_session import PlanningSession
from backend.services.shipment_report import build_shipment_summary, format_ship_window, render_summary_pdf
from backend.services.ship_window import SqlCollectionProvider, refresh_constraints

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders")


class OrderSubmit(BaseModel):
    order_number: str = Field(min_length=1, max_length=64)
    store_name: str | None = Field(default=None, max_length=255)
    groups: list[ShipmentGroupIO] = Field(default_factory=list)


class ShipmentsUpdate(BaseModel):
    groups: list[ShipmentGroupIO] = Field(default_factory=list)


def _groups(payload, db: Session):
    provider = SqlCollectionProvider(db)
    return [refresh_constraints(g.to_domain(), provider) for g in payload.groups]


def _commit_response(result) -> dict:
    return {
        "id": result.order_id,
        "order_number": result.order_number,
        "shipment_ids": result.shipment_ids,
    }


@router.post("")
def submit_order(payload: OrderSubmit, db: Session = Depends(get_db)):
    exists = db.execute(
        select(CustomerOrder).where(CustomerOrder.order_number == payload.order_number)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Order number already exists")
    if not payload.groups:
        raise HTTPException(status_code=400, detail="Order has no shipments")

    try:
        result = OrderPersistenceAdapter(db).commit_order(
            _groups(payload, db),
            order_number=payload.order_number,
            store_name=payload.store_name,
        )
    except ValidationError as exc:
        raise validation_failed(exc)
    except PersistenceFailure as exc:
        raise persistence_failed(exc)
    return _commit_response(result)


@router.get("/{order_id}/shipments")
def edit_shipments(order_id: int, db: Session = Depends(get_db)):
    """Reopen an order: its planned shipments as an editing session view."""
    adapter = OrderPersistenceAdapter(db)
    try:
        groups = adapter.reconstruct(order_id)
    except StaleEditState as exc:
        raise stale_edit(exc)
    except PersistenceFailure as exc:
        raise persistence_failed(exc)
    return session_view(PlanningSession(groups, adapter.provider, order_id=order_id))


@router.put("/{order_id}/shipments")
def save_shipments(order_id: int, payload: ShipmentsUpdate, db: Session = Depends(get_db)):
    try:
        result = OrderPersistenceAdapter(db).commit_edits(order_id, _groups(payload, db))
    except StaleEditState as exc:
        raise stale_edit(exc)
    except ValidationError as exc:
        raise validation_failed(exc)
    except PersistenceFailure as exc:
        raise persistence_failed(exc)
    return _commit_response(result)


@router.get("/{order_id}/summary")
def order_summary(order_id: int, db: Session = Depends(get_db)):
    try:
        summaries = build_shipment_summary(db, order_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Order not found")
    return {
        "order_id": order_id,
        "shipments": [
            {
                "shipment_label": s.shipment_label,
                "ship_window": format_ship_window(s.ship_window),
                "subtotal": str(s.subtotal),
                "items": [
                    {
                        "sku": it.sku,
                        "description": it.description,
                        "quantity": it.quantity,
                        "unit_price": str(it.unit_price),
                        "line_total": str(it.line_total),
                    }
                    for it in s.items
                ],
            }
            for s in summaries
        ],
    }


@router.get("/{order_id}/summary.pdf")
def order_summary_pdf(order_id: int, db: Session = Depends(get_db)):
    order = db.get(CustomerOrder, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    pdf = render_summary_pdf(order, build_shipment_summary(db, order_id))
    logger.info("summary pdf rendered for order %s (%d bytes)", order.order_number, len(pdf))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="order-{order.order_number}.pdf"'},
    )
