from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.db.models.models_v1 import CustomerOrder, OrderItem
from backend.services.cart import aggregate_cart
from backend.services.order_persistence import OrderPersistenceAdapter
from backend.services.shipment_report import (
    build_shipment_summary,
    format_ship_window,
    render_summary_pdf,
)
from backend.tests.factories import TODAY, line


@pytest.fixture
def order_id(db_session, collections):
    groups = aggregate_cart(
        [line("A1", 1, quantity=3, price="12.50"), line("X1", price="4.00")], collections, today=TODAY
    ).groups
    return OrderPersistenceAdapter(db_session, collections).commit_order(groups, order_number="SO-7").order_id


def test_summary_follows_persisted_shipments(db_session, order_id):
    summaries = build_shipment_summary(db_session, order_id)

    assert [s.shipment_label for s in summaries] == ["Spring 2026", "Available to Ship"]
    assert summaries[0].subtotal == Decimal("37.50")
    assert summaries[0].ship_window == (date(2026, 3, 1), date(2026, 3, 15))
    assert [it.sku for it in summaries[1].items] == ["X1"]


def test_unassigned_items_are_listed_last(db_session, order_id):
    item = db_session.execute(select(OrderItem).where(OrderItem.sku == "A1")).scalar_one()
    item.planned_shipment_id = None
    db_session.commit()

    summaries = build_shipment_summary(db_session, order_id)

    assert [s.shipment_label for s in summaries] == ["Available to Ship", "Available to Ship"]
    assert summaries[-1].ship_window is None
    assert [it.sku for it in summaries[-1].items] == ["A1"]


def test_unknown_order_raises(db_session):
    with pytest.raises(ValueError):
        build_shipment_summary(db_session, 999)


def test_format_ship_window():
    assert format_ship_window((date(2026, 3, 1), date(2026, 3, 15))) == "Mar 1 - Mar 15, 2026"
    assert format_ship_window(None) == "Ships when available"


def test_pdf_is_rendered(db_session, order_id):
    order = db_session.get(CustomerOrder, order_id)
    pdf = render_summary_pdf(order, build_shipment_summary(db_session, order_id))

    assert isinstance(pdf, bytes)
    assert pdf.startswith(b"%PDF")
