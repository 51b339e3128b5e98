"""
Read-only grouped view of an order's planned shipments, for documents and reports.

Reads the persisted grouping as-is; never regroups by collection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import CustomerOrder
from backend.services.order_persistence import OrderPersistenceAdapter
from backend.services.shipment_model import DEFAULT_GROUP_NAME
from backend.services.ship_window import format_short_date


@dataclass
class SummaryItem:
    sku: str
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass
class ShipmentSummary:
    shipment_label: str
    items: list[SummaryItem] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    ship_window: tuple[date, date] | None = None


def format_ship_window(window: tuple[date, date] | None) -> str:
    if window is None:
        return "Ships when available"
    start, end = window
    return f"{format_short_date(start)} - {format_short_date(end)}, {end.year}"


def build_shipment_summary(db: Session, order_id: int) -> list[ShipmentSummary]:
    if not db.get(CustomerOrder, order_id):
        raise ValueError(f"Order {order_id} not found")

    adapter = OrderPersistenceAdapter(db)
    items = {it.id: it for it in adapter.load_order_items(order_id)}

    summaries: list[ShipmentSummary] = []
    assigned: set[int] = set()
    for rec in adapter.load_planned_shipments(order_id):
        rows = [items[i] for i in rec.item_ids if i in items]
        if not rows:
            continue
        assigned.update(rec.item_ids)
        summaries.append(
            _summary(rec.collection_name or DEFAULT_GROUP_NAME, rows, (rec.ship_start, rec.ship_end))
        )

    loose = [it for it in items.values() if it.id not in assigned]
    if loose:
        summaries.append(_summary(DEFAULT_GROUP_NAME, loose, None))
    return summaries


def _summary(label: str, rows, window) -> ShipmentSummary:
    out = ShipmentSummary(shipment_label=label, ship_window=window)
    for it in rows:
        total = Decimal(it.quantity) * it.price
        out.items.append(SummaryItem(it.sku, it.description, it.quantity, it.price, total))
        out.subtotal += total
    return out


# ---------- PDF ----------
def _latin1(text: str) -> str:
    # core PDF fonts are latin-1 only
    return text.encode("latin-1", "replace").decode("latin-1")


def _money(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01')):,}"


def _item_rows(pdf: FPDF, items: list[SummaryItem]) -> None:
    pdf.set_font("Helvetica", "B", 9)
    for title, width in (("SKU", 40), ("Description", 80), ("Qty", 20), ("Price", 25), ("Total", 25)):
        pdf.cell(width, 7, title, border=1)
    pdf.ln()
    pdf.set_font("Helvetica", size=9)
    for it in items:
        pdf.cell(40, 6, _latin1(it.sku), border=1)
        pdf.cell(80, 6, _latin1(it.description[:48]), border=1)
        pdf.cell(20, 6, str(it.quantity), border=1, align="R")
        pdf.cell(25, 6, _money(it.unit_price), border=1, align="R")
        pdf.cell(25, 6, _money(it.line_total), border=1, align="R")
        pdf.ln()


def render_summary_pdf(order: CustomerOrder, summaries: list[ShipmentSummary]) -> bytes:
    """Order summary; grouped per shipment when there are two or more."""
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, _latin1(f"ORDER {order.order_number}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
    pdf.set_font("Helvetica", size=11)
    if order.store_name:
        pdf.cell(0, 8, _latin1(f"Store: {order.store_name}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    grouped = len(summaries) > 1
    if grouped:
        pdf.cell(0, 8, f"{len(summaries)} Planned Shipments", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    elif summaries:
        pdf.cell(0, 8, f"Ships: {format_ship_window(summaries[0].ship_window)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    total = Decimal("0")
    for index, s in enumerate(summaries, start=1):
        if grouped:
            pdf.set_font("Helvetica", "B", 12)
            pdf.cell(
                0, 8,
                _latin1(f"Shipment {index}: {s.shipment_label} ({format_ship_window(s.ship_window)})"),
                new_x=XPos.LMARGIN, new_y=YPos.NEXT,
            )
        _item_rows(pdf, s.items)
        if grouped:
            pdf.set_font("Helvetica", "I", 10)
            pdf.cell(0, 8, f"Shipment Subtotal: {_money(s.subtotal)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")
        pdf.ln(3)
        total += s.subtotal

    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(0, 10, f"Order Total: {_money(total)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")
    return bytes(pdf.output())
