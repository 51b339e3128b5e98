"""
Cart aggregator.

Groups flat cart lines by collection into initial shipment groups:
one group per `collection-{id}` plus a `default` group for lines without
a collection. Groups keep the order in which their first line appears in
the cart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from backend.app.core.config import ATS_DEFAULT_WINDOW_DAYS
from backend.services.shipment_model import (
    DEFAULT_GROUP_NAME,
    CartLine,
    DraftId,
    ShipmentGroup,
    collection_group_key,
)
from backend.services.ship_window import CollectionWindowProvider

logger = logging.getLogger(__name__)


@dataclass
class CartGrouping:
    groups: list[ShipmentGroup] = field(default_factory=list)

    @property
    def will_split_order(self) -> bool:
        # Observation only: the buyer is warned before submitting
        return len(self.groups) > 1


def ats_default_dates(today: date | None = None) -> tuple[date, date]:
    today = today or date.today()
    return today, today + timedelta(days=ATS_DEFAULT_WINDOW_DAYS)


def aggregate_cart(
    lines: Iterable[CartLine],
    provider: CollectionWindowProvider,
    *,
    today: date | None = None,
    key_prefix: str = "",
) -> CartGrouping:
    """
    Partition cart lines into shipment groups.

    Every line lands in exactly one group; a non-positive quantity is a ValueError.
    `key_prefix` lets edit mode keep new draft groups apart from persisted ones.
    """
    default_start, default_end = ats_default_dates(today)

    groups: dict[str, ShipmentGroup] = {}
    for ln in lines:
        if ln.quantity <= 0:
            raise ValueError(f"Cart line {ln.sku} has non-positive quantity {ln.quantity}")

        key = key_prefix + collection_group_key(ln.collection_id)
        group = groups.get(key)
        if group is None:
            group = _new_group(key, ln.collection_id, provider, default_start, default_end)
            groups[key] = group
        group.lines.append(ln)

    grouping = CartGrouping(groups=list(groups.values()))
    logger.debug(
        "aggregated cart into %d shipment(s): %s",
        len(grouping.groups),
        [g.key for g in grouping.groups],
    )
    return grouping


def _new_group(
    key: str,
    collection_id: int | None,
    provider: CollectionWindowProvider,
    default_start: date,
    default_end: date,
) -> ShipmentGroup:
    if collection_id is None:
        return ShipmentGroup(
            id=DraftId(key),
            collection_id=None,
            collection_name=DEFAULT_GROUP_NAME,
            planned_ship_start=default_start,
            planned_ship_end=default_end,
        )

    window = provider.get_window(collection_id)
    if window is None:
        logger.warning("no ship window metadata for collection %s", collection_id)
        return ShipmentGroup(
            id=DraftId(key),
            collection_id=collection_id,
            collection_name=f"Collection {collection_id}",
            planned_ship_start=default_start,
            planned_ship_end=default_end,
        )

    start = window.ship_window_start or default_start
    end = window.ship_window_end or max(default_end, start + timedelta(days=ATS_DEFAULT_WINDOW_DAYS))
    return ShipmentGroup(
        id=DraftId(key),
        collection_id=collection_id,
        collection_name=window.name,
        planned_ship_start=start,
        planned_ship_end=end,
        min_allowed_start=window.ship_window_start,
        min_allowed_end=window.ship_window_end,
    )
