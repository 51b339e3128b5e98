from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from backend.app.db.models.core_types import OrderStatus
from backend.app.db.models.models_v1 import AuditLog, Collection, CustomerOrder, OrderItem, PlannedShipment
from backend.services.cart import aggregate_cart
from backend.services.errors import PersistenceFailure, StaleEditState, ValidationError
from backend.services.order_persistence import OrderPersistenceAdapter
from backend.services.planning_session import PlanningSession
from backend.services.shipment_model import DraftId, PersistedId
from backend.tests.factories import TODAY, line


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


@pytest.fixture
def adapter(db_session, collections):
    return OrderPersistenceAdapter(db_session, collections)


@pytest.fixture
def placed(adapter, collections):
    groups = aggregate_cart(
        [line("A1", 1, quantity=2), line("A2", 1), line("X1", price="5.50")], collections, today=TODAY
    ).groups
    return adapter.commit_order(groups, order_number="SO-1001", store_name="Corner Shop")


def test_commit_writes_one_planned_shipment_per_group(db_session, adapter, placed):
    assert set(placed.shipment_ids) == {"collection-1", "default"}

    records = adapter.load_planned_shipments(placed.order_id)
    assert [r.collection_name for r in records] == ["Spring 2026", "Available to Ship"]
    assert [len(r.item_ids) for r in records] == [2, 1]
    assert records[0].id == placed.shipment_ids["collection-1"]

    order = db_session.get(CustomerOrder, placed.order_id)
    assert order.status == OrderStatus.pending
    # header spans every shipment
    assert order.ship_start_date == TODAY
    assert order.ship_end_date == date(2026, 3, 15)
    assert _count(db_session, AuditLog) == 1


def test_items_keep_collection_snapshot(adapter, placed):
    items = adapter.load_order_items(placed.order_id)
    assert [(it.sku, it.collection_name, it.price) for it in items] == [
        ("A1", "Spring 2026", Decimal("10.00")),
        ("A2", "Spring 2026", Decimal("10.00")),
        ("X1", None, Decimal("5.50")),
    ]
    assert all(it.planned_shipment_id is not None for it in items)


def test_invalid_dates_block_commit(db_session, adapter, collections):
    groups = aggregate_cart([line("A1", 1)], collections, today=TODAY).groups
    groups[0].planned_ship_start = date(2026, 2, 20)

    with pytest.raises(ValidationError):
        adapter.commit_order(groups, order_number="SO-2")
    assert _count(db_session, CustomerOrder) == 0


def test_store_failure_rolls_back_everything(db_session, adapter, collections, monkeypatch):
    groups = aggregate_cart([line("A1", 1), line("X1")], collections, today=TODAY).groups
    real_flush = db_session.flush
    calls = []

    def failing_flush(*args, **kwargs):
        calls.append(1)
        # order and first shipment are already flushed when the item write fails
        if len(calls) == 3:
            raise OperationalError("INSERT INTO order_items", {}, Exception("disk I/O error"))
        return real_flush(*args, **kwargs)

    monkeypatch.setattr(db_session, "flush", failing_flush)

    with pytest.raises(PersistenceFailure) as exc:
        adapter.commit_order(groups, order_number="SO-3")

    assert exc.value.retryable is True
    assert _count(db_session, CustomerOrder) == 0
    assert _count(db_session, PlannedShipment) == 0
    assert _count(db_session, OrderItem) == 0


def test_reopened_order_ignores_later_window_changes(db_session, adapter, placed):
    spring = db_session.get(Collection, 1)
    spring.ship_window_start = date(2026, 4, 1)
    spring.ship_window_end = date(2026, 4, 30)
    db_session.commit()

    groups = adapter.reconstruct(placed.order_id)
    records = adapter.load_planned_shipments(placed.order_id)

    assert len(groups) == 2
    assert [g.item_count for g in groups] == [len(r.item_ids) for r in records]
    assert [g.id for g in groups] == [PersistedId(r.id) for r in records]
    spring_group = groups[0]
    assert (spring_group.planned_ship_start, spring_group.planned_ship_end) == (date(2026, 3, 1), date(2026, 3, 15))
    # minimums follow the current window
    assert spring_group.min_allowed_start == date(2026, 4, 1)


def test_shipped_order_cannot_be_reopened(db_session, adapter, placed):
    order = db_session.get(CustomerOrder, placed.order_id)
    order.status = OrderStatus.shipped
    db_session.commit()

    with pytest.raises(StaleEditState) as exc:
        adapter.reconstruct(placed.order_id)
    assert "can no longer be edited" in str(exc.value)


def test_transferred_order_cannot_be_saved(db_session, adapter, placed):
    groups = adapter.reconstruct(placed.order_id)
    order = db_session.get(CustomerOrder, placed.order_id)
    order.is_transferred = True
    db_session.commit()

    with pytest.raises(StaleEditState):
        adapter.commit_edits(placed.order_id, groups)


def test_missing_order_is_stale(adapter):
    with pytest.raises(StaleEditState) as exc:
        adapter.reconstruct(4242)
    assert exc.value.order_id == 4242
    assert "no longer exists" in str(exc.value)


def test_edit_moves_item_and_drops_empty_shipment(db_session, adapter, collections, placed):
    session = PlanningSession(adapter.reconstruct(placed.order_id), collections, order_id=placed.order_id)
    spring_id = PersistedId(placed.shipment_ids["collection-1"])
    default_id = PersistedId(placed.shipment_ids["default"])

    session.on_move_item("X1", default_id, spring_id)
    result = adapter.commit_edits(placed.order_id, session.groups)

    assert result.shipment_ids == {f"planned-{spring_id.id}": spring_id.id}
    records = adapter.load_planned_shipments(placed.order_id)
    assert len(records) == 1
    assert len(records[0].item_ids) == 3
    assert _count(db_session, OrderItem) == 3


def test_combined_shipment_survives_reload(db_session, adapter, collections):
    groups = aggregate_cart([line("A1", 1), line("B1", 2)], collections, today=TODAY).groups
    session = PlanningSession(groups, collections)
    combined = session.on_combine(DraftId("collection-1"), DraftId("collection-2"))
    session.on_dates_change(combined.id, date(2026, 3, 10), date(2026, 4, 10))
    placed = adapter.commit_order(session.groups, order_number="SO-4")

    (reloaded,) = adapter.reconstruct(placed.order_id)
    assert reloaded.is_combined is True
    assert reloaded.origin_shipment_ids == [DraftId("collection-1"), DraftId("collection-2")]
    assert [ln.origin_key for ln in reloaded.lines] == ["collection-1", "collection-2"]

    split = PlanningSession([reloaded], collections, order_id=placed.order_id).on_split(reloaded.id)
    assert [(g.collection_id, [ln.sku for ln in g.lines]) for g in split] == [(1, ["A1"]), (2, ["B1"])]


def test_edit_adds_new_shipment_for_split(db_session, adapter, collections):
    groups = aggregate_cart([line("A1", 1), line("B1", 2)], collections, today=TODAY).groups
    session = PlanningSession(groups, collections)
    combined = session.on_combine(DraftId("collection-1"), DraftId("collection-2"))
    session.on_dates_change(combined.id, date(2026, 3, 10), date(2026, 4, 10))
    placed = adapter.commit_order(session.groups, order_number="SO-5")

    editing = PlanningSession(adapter.reconstruct(placed.order_id), collections, order_id=placed.order_id)
    editing.on_split(PersistedId(placed.shipment_ids[combined.key]))
    adapter.commit_edits(placed.order_id, editing.groups)

    records = adapter.load_planned_shipments(placed.order_id)
    assert [(r.collection_id, r.is_combined, len(r.item_ids)) for r in records] == [(1, False, 1), (2, False, 1)]
    order = db_session.get(CustomerOrder, placed.order_id)
    assert order.ship_end_date == date(2026, 4, 10)


def test_window_change_flags_shipments_before_new_window(adapter, placed):
    result = adapter.affected_by_window_change(1, date(2026, 3, 5), date(2026, 3, 20))

    assert (result.total_orders, result.total_shipments, result.invalid_count) == (1, 1, 1)
    (hit,) = result.affected
    assert hit.order_number == "SO-1001"
    assert hit.shipment_id == placed.shipment_ids["collection-1"]
    assert (hit.is_start_invalid, hit.is_end_invalid) == (True, True)
    assert (hit.suggested_start, hit.suggested_end) == (date(2026, 3, 5), date(2026, 3, 20))
    assert hit.item_count == 2
    assert hit.subtotal == Decimal("30.00")


def test_window_moved_earlier_leaves_shipments_valid(adapter, placed):
    result = adapter.affected_by_window_change(1, date(2026, 2, 15), date(2026, 3, 10))

    assert result.total_shipments == 1
    assert result.invalid_count == 0
    (hit,) = result.affected
    assert hit.is_invalid is False
    # later dates are kept as they are
    assert (hit.suggested_start, hit.suggested_end) == (date(2026, 3, 1), date(2026, 3, 15))


def test_window_change_skips_closed_and_transferred_orders(db_session, adapter, collections, placed):
    groups = aggregate_cart([line("A9", 1)], collections, today=TODAY).groups
    other = adapter.commit_order(groups, order_number="SO-1002")
    db_session.get(CustomerOrder, placed.order_id).is_transferred = True
    db_session.get(CustomerOrder, other.order_id).status = OrderStatus.shipped
    db_session.commit()

    result = adapter.affected_by_window_change(1, date(2026, 3, 5), date(2026, 3, 20))

    assert result.affected == []
    assert result.transferred_excluded_count == 1


def test_window_change_covers_combined_shipments(adapter, collections):
    groups = aggregate_cart([line("A1", 1), line("B1", 2, price="7.00")], collections, today=TODAY).groups
    session = PlanningSession(groups, collections)
    combined = session.on_combine(DraftId("collection-1"), DraftId("collection-2"))
    session.on_dates_change(combined.id, date(2026, 3, 10), date(2026, 4, 10))
    placed = adapter.commit_order(session.groups, order_number="SO-6")

    result = adapter.affected_by_window_change(2, date(2026, 3, 20), date(2026, 4, 10))

    (hit,) = result.affected
    assert hit.shipment_id == placed.shipment_ids[combined.key]
    assert (hit.is_start_invalid, hit.is_end_invalid) == (True, False)
    # only the summer line counts
    assert (hit.item_count, hit.subtotal) == (1, Decimal("7.00"))
    assert adapter.affected_by_window_change(3, date(2026, 6, 1), None).affected == []
