from __future__ import annotations

from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Collection
from backend.services.order_persistence import OrderPersistenceAdapter

router = APIRouter(prefix="/collections")


class CollectionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    ship_window_start: date | None = None
    ship_window_end: date | None = None
    active: bool = True


class ShipWindowUpdate(BaseModel):
    ship_window_start: date | None = None
    ship_window_end: date | None = None


def _as_dict(c: Collection) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "ship_window_start": c.ship_window_start,
        "ship_window_end": c.ship_window_end,
        "active": c.active,
    }


def _check_window(start: date | None, end: date | None) -> None:
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="ship_window_start must be on or before ship_window_end")


@router.get("")
def list_collections(db: Session = Depends(get_db)):
    rows = db.execute(select(Collection).order_by(Collection.name)).scalars().all()
    return [_as_dict(c) for c in rows]


@router.post("")
def create_collection(payload: CollectionCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Collection).where(Collection.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Collection name already exists")
    _check_window(payload.ship_window_start, payload.ship_window_end)

    c = Collection(
        name=payload.name,
        ship_window_start=payload.ship_window_start,
        ship_window_end=payload.ship_window_end,
        active=payload.active,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return _as_dict(c)


@router.patch("/{collection_id}")
def update_ship_window(collection_id: int, payload: ShipWindowUpdate, db: Session = Depends(get_db)):
    """
    Move a collection's ship window.
    Orders already placed keep their planned shipments; only new validation sees the new window.
    """
    c = db.get(Collection, collection_id)
    if not c:
        raise HTTPException(status_code=404, detail="Collection not found")
    _check_window(payload.ship_window_start, payload.ship_window_end)

    c.ship_window_start = payload.ship_window_start
    c.ship_window_end = payload.ship_window_end
    db.commit()
    db.refresh(c)
    return _as_dict(c)


@router.get("/{collection_id}/affected-orders")
def affected_orders(
    collection_id: int,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db),
):
    """
    Preview of a ship window change: open orders whose planned shipments
    would fall before the proposed window. Defaults to the current window.
    """
    c = db.get(Collection, collection_id)
    if not c:
        raise HTTPException(status_code=404, detail="Collection not found")
    if start is None and end is None:
        start, end = c.ship_window_start, c.ship_window_end
    _check_window(start, end)

    result = OrderPersistenceAdapter(db).affected_by_window_change(collection_id, start, end)
    return {
        "collection_id": collection_id,
        "window": {"start": start, "end": end},
        "total_orders": result.total_orders,
        "total_shipments": result.total_shipments,
        "invalid_count": result.invalid_count,
        "transferred_excluded_count": result.transferred_excluded_count,
        "affected": [
            {
                "order_id": a.order_id,
                "order_number": a.order_number,
                "store_name": a.store_name,
                "shipment_id": a.shipment_id,
                "current_start": a.current_start,
                "current_end": a.current_end,
                "suggested_start": a.suggested_start,
                "suggested_end": a.suggested_end,
                "is_start_invalid": a.is_start_invalid,
                "is_end_invalid": a.is_end_invalid,
                "is_invalid": a.is_invalid,
                "item_count": a.item_count,
                "subtotal": str(a.subtotal),
            }
            for a in result.affected
        ],
    }
