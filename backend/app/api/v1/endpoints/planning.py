from __future__ import annotations

from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.errors import combine_conflict, validation_failed
from backend.app.schemas.planning import CartLineIO, ShipmentGroupIO, field_errors
from backend.services.cart import aggregate_cart
from backend.services.errors import CombineConflict, ValidationError
from backend.services.planning_session import PlanningSession
from backend.services.shipment_model import CartLine, parse_shipment_key, shipment_key
from backend.services.ship_window import (
    SqlCollectionProvider,
    refresh_constraints,
    resolve_constraints,
    validate_ship_dates,
)

router = APIRouter(prefix="/planning")


# ---------- Schemas ----------
class CartIn(BaseModel):
    lines: list[CartLineIO] = Field(default_factory=list)


class PlanIn(BaseModel):
    groups: list[ShipmentGroupIO] = Field(default_factory=list)


class ValidateIn(BaseModel):
    shipment: ShipmentGroupIO
    start: date | None = None
    end: date | None = None


class DatesIn(PlanIn):
    shipment_id: str
    start: date | None = None
    end: date | None = None


class CombineIn(PlanIn):
    shipment_id: str
    target_id: str


class SplitIn(PlanIn):
    shipment_id: str


class MoveItemIn(PlanIn):
    sku: str
    from_id: str
    to_id: str
    allow_override: bool = False


# ---------- Helpers ----------
def _session(payload: PlanIn, db: Session) -> PlanningSession:
    provider = SqlCollectionProvider(db)
    return PlanningSession([refresh_constraints(g.to_domain(), provider) for g in payload.groups], provider)


def session_view(session: PlanningSession) -> dict:
    return {
        "groups": [ShipmentGroupIO.from_domain(g).model_dump(mode="json") for g in session.groups],
        "will_split_order": session.will_split_order,
        "combine_candidates": {
            g.key: [shipment_key(sid) for sid in session.combine_candidates(g.id)]
            for g in session.groups
        },
        "errors": session.validation_errors(),
    }


def _not_found(exc: KeyError) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Unknown shipment or item {exc.args[0]}")


# ---------- Endpoints ----------
@router.post("/groups")
def build_groups(payload: CartIn, db: Session = Depends(get_db)):
    lines = [CartLine(**ln.model_dump()) for ln in payload.lines]
    provider = SqlCollectionProvider(db)
    grouping = aggregate_cart(lines, provider)
    return session_view(PlanningSession(grouping.groups, provider))


@router.post("/validate")
def validate_dates(payload: ValidateIn, db: Session = Depends(get_db)):
    group = refresh_constraints(payload.shipment.to_domain(), SqlCollectionProvider(db))
    result = validate_ship_dates(payload.start, payload.end, resolve_constraints(group))
    return {"valid": result.valid, "errors": field_errors(result.errors), "by_field": result.by_field()}


@router.post("/dates")
def change_dates(payload: DatesIn, db: Session = Depends(get_db)):
    session = _session(payload, db)
    try:
        result = session.on_dates_change(parse_shipment_key(payload.shipment_id), payload.start, payload.end)
    except KeyError as exc:
        raise _not_found(exc)
    return {**session_view(session), "valid": result.valid}


@router.post("/combine")
def combine(payload: CombineIn, db: Session = Depends(get_db)):
    session = _session(payload, db)
    try:
        session.on_combine(parse_shipment_key(payload.shipment_id), parse_shipment_key(payload.target_id))
    except CombineConflict as exc:
        raise combine_conflict(exc)
    except KeyError as exc:
        raise _not_found(exc)
    return session_view(session)


@router.post("/split")
def split(payload: SplitIn, db: Session = Depends(get_db)):
    session = _session(payload, db)
    session.on_split(parse_shipment_key(payload.shipment_id))
    return session_view(session)


@router.post("/move-item")
def move_item(payload: MoveItemIn, db: Session = Depends(get_db)):
    session = _session(payload, db)
    try:
        session.on_move_item(
            payload.sku,
            parse_shipment_key(payload.from_id),
            parse_shipment_key(payload.to_id),
            allow_override=payload.allow_override,
        )
    except ValidationError as exc:
        raise validation_failed(exc)
    except KeyError as exc:
        raise _not_found(exc)
    return session_view(session)

