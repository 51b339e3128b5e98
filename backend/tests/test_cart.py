from datetime import date

import pytest

from backend.services.cart import aggregate_cart, ats_default_dates
from backend.services.shipment_model import DEFAULT_GROUP_NAME, DraftId, ShipmentGroup
from backend.services.ship_window import resolve_constraints
from backend.tests.factories import TODAY, line


def test_collection_lines_and_uncategorized_line_make_two_groups(provider):
    grouping = aggregate_cart([line("A1", 1), line("A2", 1), line("X1")], provider, today=TODAY)

    assert [g.key for g in grouping.groups] == ["collection-1", "default"]
    spring, default = grouping.groups
    assert [ln.sku for ln in spring.lines] == ["A1", "A2"]
    assert spring.min_allowed_start == date(2026, 3, 1)
    assert spring.min_allowed_end == date(2026, 3, 15)
    assert spring.collection_name == "Spring 2026"

    assert [ln.sku for ln in default.lines] == ["X1"]
    assert default.collection_id is None
    assert default.collection_name == DEFAULT_GROUP_NAME
    assert default.min_allowed_start is None
    assert default.min_allowed_end is None

    assert grouping.will_split_order is True


def test_groups_keep_cart_insertion_order(provider):
    lines = [line("X1"), line("B1", 2), line("A1", 1), line("B2", 2), line("X2")]
    grouping = aggregate_cart(lines, provider, today=TODAY)

    assert [g.key for g in grouping.groups] == ["default", "collection-2", "collection-1"]
    assert [ln.sku for ln in grouping.groups[1].lines] == ["B1", "B2"]


def test_every_line_lands_in_exactly_one_group(provider):
    lines = [line("A1", 1), line("B1", 2), line("X1"), line("A2", 1), line("H1", 3)]
    grouping = aggregate_cart(lines, provider, today=TODAY)

    skus = [ln.sku for g in grouping.groups for ln in g.lines]
    assert sorted(skus) == sorted(ln.sku for ln in lines)
    for g in grouping.groups:
        assert {ln.collection_id for ln in g.lines} == {g.collection_id}


def test_non_positive_quantity_is_rejected(provider):
    with pytest.raises(ValueError, match="A2"):
        aggregate_cart([line("A1", 1), line("A2", 1, quantity=0)], provider, today=TODAY)


def test_empty_cart_has_no_groups(provider):
    grouping = aggregate_cart([], provider, today=TODAY)
    assert grouping.groups == []
    assert grouping.will_split_order is False


def test_single_collection_does_not_split(provider):
    grouping = aggregate_cart([line("A1", 1), line("A2", 1)], provider, today=TODAY)
    assert len(grouping.groups) == 1
    assert grouping.will_split_order is False


def test_group_dates_default_to_window_or_ats(provider):
    grouping = aggregate_cart([line("A1", 1), line("X1")], provider, today=TODAY)
    spring, default = grouping.groups

    assert (spring.planned_ship_start, spring.planned_ship_end) == (date(2026, 3, 1), date(2026, 3, 15))
    assert (default.planned_ship_start, default.planned_ship_end) == ats_default_dates(TODAY)
    assert default.planned_ship_start == TODAY


def test_open_collection_has_no_constraints(provider):
    grouping = aggregate_cart([line("C1", 4)], provider, today=TODAY)
    (core,) = grouping.groups

    assert core.collection_name == "Core Basics"
    assert core.min_allowed_start is None and core.min_allowed_end is None
    assert resolve_constraints(core) == []


def test_unknown_collection_gets_placeholder_name(provider, caplog):
    grouping = aggregate_cart([line("Z1", 99)], provider, today=TODAY)
    (group,) = grouping.groups

    assert group.key == "collection-99"
    assert group.collection_name == "Collection 99"
    assert resolve_constraints(group) == []
    assert "collection 99" in caplog.text


def test_key_prefix_keeps_edit_groups_apart(provider):
    grouping = aggregate_cart([line("A1", 1), line("X1")], provider, today=TODAY, key_prefix="new-")
    assert [g.id for g in grouping.groups] == [DraftId("new-collection-1"), DraftId("new-default")]


def test_unconstrained_group_never_carries_minimums():
    g = ShipmentGroup(
        id=DraftId("default"),
        collection_id=None,
        collection_name=DEFAULT_GROUP_NAME,
        planned_ship_start=TODAY,
        planned_ship_end=TODAY,
        min_allowed_start=date(2026, 3, 1),
        min_allowed_end=date(2026, 3, 15),
    )
    assert g.min_allowed_start is None
    assert g.min_allowed_end is None
