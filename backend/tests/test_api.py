from backend.app.db.models.core_types import OrderStatus
from backend.app.db.models.models_v1 import CustomerOrder


def _cart(client):
    resp = client.post(
        "/v1/planning/groups",
        json={
            "lines": [
                {"sku": "A1", "quantity": 2, "unit_price": "10.00", "collection_id": 1},
                {"sku": "A2", "quantity": 1, "unit_price": "8.00", "collection_id": 1},
                {"sku": "X1", "quantity": 1, "unit_price": "5.00"},
            ]
        },
    )
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": "ok"}


def test_collections_reject_duplicate_name(client, collections):
    resp = client.post("/v1/collections", json={"name": "Spring 2026"})
    assert resp.status_code == 409

    resp = client.post(
        "/v1/collections",
        json={"name": "Fall 2026", "ship_window_start": "2026-09-15", "ship_window_end": "2026-09-01"},
    )
    assert resp.status_code == 400


def test_cart_is_grouped_by_collection(client, collections):
    view = _cart(client)

    assert [g["id"] for g in view["groups"]] == ["collection-1", "default"]
    assert view["will_split_order"] is True
    assert view["groups"][0]["min_allowed_start"] == "2026-03-01"
    assert view["errors"] == {}


def test_validate_reports_field_errors(client, collections):
    shipment = _cart(client)["groups"][0]
    resp = client.post(
        "/v1/planning/validate",
        json={"shipment": shipment, "start": "2026-02-20", "end": "2026-03-15"},
    )

    body = resp.json()
    assert body["valid"] is False
    assert body["by_field"] == {"start": "Cannot be prior to Mar 1"}
    assert body["errors"][0]["min_allowed_date"] == "2026-03-01"


def test_combine_then_split(client, collections):
    groups = _cart(client)["groups"]

    resp = client.post(
        "/v1/planning/combine",
        json={"groups": groups, "shipment_id": "collection-1", "target_id": "default"},
    )
    assert resp.status_code == 200
    combined = resp.json()["groups"]
    assert len(combined) == 1
    assert combined[0]["is_combined"] is True
    assert combined[0]["origin_shipment_ids"] == ["collection-1", "default"]

    resp = client.post("/v1/planning/split", json={"groups": combined, "shipment_id": combined[0]["id"]})
    assert [g["id"] for g in resp.json()["groups"]] == ["collection-1", "default"]
    assert [len(g["lines"]) for g in resp.json()["groups"]] == [2, 1]


def test_combine_unknown_shipment_is_404(client, collections):
    groups = _cart(client)["groups"]
    resp = client.post(
        "/v1/planning/combine",
        json={"groups": groups, "shipment_id": "collection-1", "target_id": "collection-9"},
    )
    assert resp.status_code == 404


def test_move_item_outside_window_is_422(client, collections):
    groups = _cart(client)["groups"]
    groups[1]["planned_ship_start"] = "2026-01-05"
    groups[1]["planned_ship_end"] = "2026-01-20"

    resp = client.post(
        "/v1/planning/move-item",
        json={"groups": groups, "sku": "A1", "from_id": "collection-1", "to_id": "default"},
    )
    assert resp.status_code == 422
    assert "default" in resp.json()["detail"]["errors"]


def test_order_lifecycle(client, db_session, collections):
    groups = _cart(client)["groups"]

    resp = client.post("/v1/orders", json={"order_number": "SO-100", "store_name": "Shop", "groups": groups})
    assert resp.status_code == 200
    placed = resp.json()
    assert set(placed["shipment_ids"]) == {"collection-1", "default"}

    resp = client.post("/v1/orders", json={"order_number": "SO-100", "groups": groups})
    assert resp.status_code == 409

    resp = client.get(f"/v1/orders/{placed['id']}/shipments")
    assert resp.status_code == 200
    reopened = resp.json()["groups"]
    assert [g["id"] for g in reopened] == [f"planned-{i}" for i in placed["shipment_ids"].values()]

    resp = client.put(f"/v1/orders/{placed['id']}/shipments", json={"groups": reopened})
    assert resp.status_code == 200

    resp = client.get(f"/v1/orders/{placed['id']}/summary")
    assert [s["shipment_label"] for s in resp.json()["shipments"]] == ["Spring 2026", "Available to Ship"]

    resp = client.get(f"/v1/orders/{placed['id']}/summary.pdf")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")


def test_invalid_order_dates_are_422(client, collections):
    groups = _cart(client)["groups"]
    groups[0]["planned_ship_start"] = "2026-02-20"

    resp = client.post("/v1/orders", json={"order_number": "SO-101", "groups": groups})

    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["errors"]["collection-1"][0]["message"] == "Cannot be prior to Mar 1"


def test_tampered_minimums_are_ignored(client, collections):
    groups = _cart(client)["groups"]
    groups[0]["min_allowed_start"] = None
    groups[0]["min_allowed_end"] = None
    groups[0]["planned_ship_start"] = "2026-02-20"

    resp = client.post("/v1/orders", json={"order_number": "SO-102", "groups": groups})
    assert resp.status_code == 422


def test_editing_a_shipped_order_is_409(client, db_session, collections):
    groups = _cart(client)["groups"]
    placed = client.post("/v1/orders", json={"order_number": "SO-103", "groups": groups}).json()

    order = db_session.get(CustomerOrder, placed["id"])
    order.status = OrderStatus.invoiced
    db_session.commit()

    resp = client.get(f"/v1/orders/{placed['id']}/shipments")
    assert resp.status_code == 409
    assert resp.json()["detail"]["recoverable"] is False


def test_summary_of_unknown_order_is_404(client):
    assert client.get("/v1/orders/555/summary").status_code == 404
    assert client.get("/v1/orders/555/summary.pdf").status_code == 404


def test_validate_ignores_client_minimums(client, collections):
    shipment = _cart(client)["groups"][0]
    shipment["min_allowed_start"] = None
    shipment["min_allowed_end"] = None

    resp = client.post(
        "/v1/planning/validate",
        json={"shipment": shipment, "start": "2026-02-20", "end": "2026-03-15"},
    )

    body = resp.json()
    assert body["valid"] is False
    assert body["by_field"] == {"start": "Cannot be prior to Mar 1"}


def test_zero_quantity_is_rejected_before_saving(client, collections):
    groups = _cart(client)["groups"]
    groups[0]["lines"][0]["quantity"] = 0

    resp = client.post("/v1/orders", json={"order_number": "SO-104", "groups": groups})
    assert resp.status_code == 422

    resp = client.post("/v1/planning/groups", json={"lines": [{"sku": "A1", "quantity": 0, "unit_price": "1.00"}]})
    assert resp.status_code == 422


def test_affected_orders_preview(client, collections):
    groups = _cart(client)["groups"]
    client.post("/v1/orders", json={"order_number": "SO-105", "groups": groups})

    resp = client.get("/v1/collections/1/affected-orders", params={"start": "2026-03-05", "end": "2026-03-20"})

    assert resp.status_code == 200
    body = resp.json()
    assert (body["total_orders"], body["invalid_count"]) == (1, 1)
    (hit,) = body["affected"]
    assert hit["order_number"] == "SO-105"
    assert hit["suggested_start"] == "2026-03-05"
    assert hit["subtotal"] == "28.00"

    # current window: nothing out of range
    assert client.get("/v1/collections/1/affected-orders").json()["invalid_count"] == 0
    assert client.get("/v1/collections/77/affected-orders").status_code == 404
