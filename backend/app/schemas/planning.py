from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.services.shipment_model import ShipmentGroup, group_from_dict, group_to_dict
from backend.services.ship_window import FieldError


class CartLineIO(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    description: str = Field(default="", max_length=255)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    collection_id: int | None = None
    item_id: int | None = None
    origin_key: str | None = Field(default=None, max_length=255)


class CollectionWindowIO(BaseModel):
    collection_id: int
    name: str
    ship_window_start: date | None = None
    ship_window_end: date | None = None


class ShipmentGroupIO(BaseModel):
    id: str = Field(min_length=1, max_length=255)
    collection_id: int | None = None
    collection_name: str = ""
    planned_ship_start: date | None = None
    planned_ship_end: date | None = None
    min_allowed_start: date | None = None
    min_allowed_end: date | None = None
    lines: list[CartLineIO] = Field(default_factory=list)
    is_combined: bool = False
    origin_shipment_ids: list[str] = Field(default_factory=list)
    origin_windows: dict[str, CollectionWindowIO | None] = Field(default_factory=dict)

    def to_domain(self) -> ShipmentGroup:
        return group_from_dict(self.model_dump(mode="json"))

    @classmethod
    def from_domain(cls, group: ShipmentGroup) -> "ShipmentGroupIO":
        return cls.model_validate(group_to_dict(group))


class FieldErrorIO(BaseModel):
    field: str
    message: str
    collection_name: str = ""
    min_allowed_date: date | None = None

    class Config:
        from_attributes = True


def field_errors(errors: list[FieldError]) -> list[dict]:
    return [FieldErrorIO.model_validate(e).model_dump(mode="json") for e in errors]
