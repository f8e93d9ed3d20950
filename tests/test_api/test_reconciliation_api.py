"""End-to-end API tests: dispatch, reconcile, pay, and read the ledger back."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

DISPATCH_DATE = "2026-10-01"


@pytest.fixture
def carrier(make_carrier, make_zone):
    carrier = make_carrier()
    make_zone(carrier, "Asuncion", 25_000)
    return carrier


@pytest.fixture
def dispatched(client, carrier, make_orders):
    """Ten COD orders dispatched through the API."""
    orders = make_orders(10)
    created = client.post(
        "/api/v1/dispatch-sessions",
        json={
            "carrier_id": str(carrier.id),
            "dispatch_date": DISPATCH_DATE,
            "order_ids": [str(o.id) for o in orders],
        },
        headers={"X-User-Id": "dispatcher"},
    )
    assert created.status_code == 201, created.text
    session_id = created.json()["id"]

    response = client.post(f"/api/v1/dispatch-sessions/{session_id}/dispatch")
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "dispatched"
    return session_id, orders


def _reconcile_body(carrier, orders, failed=2, collected="750000"):
    cut = len(orders) - failed
    return {
        "carrier_id": str(carrier.id),
        "date": DISPATCH_DATE,
        "total_amount_collected": collected,
        "orders": [{"order_id": str(o.id), "delivered": True} for o in orders[:cut]]
        + [
            {"order_id": str(o.id), "delivered": False, "failure_reason": "Ausente"}
            for o in orders[cut:]
        ],
    }


def test_full_flow(client, carrier, dispatched):
    session_id, orders = dispatched

    pending = client.get("/api/v1/reconciliation/pending").json()
    assert len(pending) == 1
    assert pending[0]["session_ids"] == [session_id]
    assert Decimal(pending[0]["total_cod"]) == Decimal("1000000")

    rows = client.get(
        "/api/v1/reconciliation/orders",
        params={"date": DISPATCH_DATE, "carrier_id": str(carrier.id)},
    ).json()
    assert len(rows) == 10
    assert all(Decimal(r["shipping_cost"]) == Decimal("25000") for r in rows)

    response = client.post(
        "/api/v1/reconciliation",
        json=_reconcile_body(carrier, orders),
        headers={"X-User-Id": "ana"},
    )
    assert response.status_code == 201, response.text
    result = response.json()
    assert Decimal(result["net_receivable"]) == Decimal("525000")
    assert Decimal(result["discrepancy"]) == Decimal("-50000")
    assert result["has_discrepancy"] is True
    assert result["status"] == "pending_payment"
    settlement_id = result["settlement_id"]

    settlement = client.get(f"/api/v1/settlements/{settlement_id}").json()
    assert settlement["created_by"] == "ana"
    assert client.get("/api/v1/reconciliation/pending").json() == []

    paid = client.post(
        f"/api/v1/settlements/{settlement_id}/pay",
        json={"amount": "300000", "method": "cash"},
    )
    assert paid.status_code == 200, paid.text
    assert Decimal(paid.json()["balance_due"]) == Decimal("225000")
    assert paid.json()["status"] == "pending_payment"

    [balance] = client.get("/api/v1/ledger/balances").json()
    assert Decimal(balance["net_balance"]) == Decimal("225000")
    assert Decimal(balance["total_payments_received"]) == Decimal("300000")

    closed = client.post(f"/api/v1/settlements/{settlement_id}/pay", json={"method": "cash"})
    assert closed.json()["status"] == "paid"
    session = client.get(f"/api/v1/dispatch-sessions/{session_id}").json()
    assert session["status"] == "settled"

    again = client.post(f"/api/v1/settlements/{settlement_id}/pay", json={"method": "cash"})
    assert again.status_code == 409
    assert again.json()["error"] == "CONFLICT"

    summary = client.get("/api/v1/settlements/summary").json()
    assert summary["paid"] == 1
    assert summary["with_discrepancy"] == 1
    assert Decimal(summary["outstanding_from_carriers"]) == Decimal("0")


def test_second_reconcile_conflicts(client, carrier, dispatched):
    _, orders = dispatched
    body = _reconcile_body(carrier, orders)
    assert client.post("/api/v1/reconciliation", json=body).status_code == 201

    response = client.post("/api/v1/reconciliation", json=body)
    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"


def test_missing_failure_reason_is_422(client, carrier, dispatched):
    _, orders = dispatched
    body = _reconcile_body(carrier, orders)
    del body["orders"][-1]["failure_reason"]

    response = client.post("/api/v1/reconciliation", json=body)

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "VALIDATION_FAILED"
    assert "orders[9].failure_reason" in data["errors"]


def test_malformed_body_uses_error_envelope(client):
    response = client.post("/api/v1/reconciliation", json={"carrier_id": "not-a-uuid"})
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "VALIDATION_FAILED"
    assert data["errors"]


def test_no_dispatched_session_is_404(client, carrier):
    response = client.post(
        "/api/v1/reconciliation",
        json={
            "carrier_id": str(carrier.id),
            "date": DISPATCH_DATE,
            "total_amount_collected": "0",
            "orders": [{"order_id": str(uuid.uuid4()), "delivered": True}],
        },
    )
    assert response.status_code == 404


def test_drafts(client, carrier, dispatched):
    session_id, orders = dispatched
    url = f"/api/v1/reconciliation/drafts/{session_id}"

    assert client.get(url).status_code == 404
    saved = client.put(
        url, json={"payload": {"collected": "100"}}, headers={"X-User-Id": "ana"}
    )
    assert saved.status_code == 200
    assert saved.json()["revision"] == 1
    assert saved.json()["updated_by"] == "ana"
    assert client.put(url, json={"payload": {"collected": "200"}}).json()["revision"] == 2
    assert client.get(url).json()["payload"] == {"collected": "200"}

    # a successful reconcile drops the draft
    assert client.post(
        "/api/v1/reconciliation", json=_reconcile_body(carrier, orders)
    ).status_code == 201
    assert client.get(url).status_code == 404


def test_draft_for_unknown_session_is_404(client):
    response = client.put(
        f"/api/v1/reconciliation/drafts/{uuid.uuid4()}", json={"payload": {}}
    )
    assert response.status_code == 404


def test_discard_draft(client, dispatched):
    session_id, _ = dispatched
    url = f"/api/v1/reconciliation/drafts/{session_id}"
    client.put(url, json={"payload": {"a": 1}})

    assert client.delete(url).status_code == 204
    assert client.get(url).status_code == 404


def test_adjustment_and_payment_endpoints(client, carrier):
    base = f"/api/v1/ledger/carriers/{carrier.id}"

    adjustment = client.post(
        f"{base}/adjustments",
        json={"amount": "5000", "type": "debit", "description": "Paquete dañado"},
        headers={"X-User-Id": "ana"},
    )
    assert adjustment.status_code == 201, adjustment.text
    assert Decimal(adjustment.json()["amount"]) == Decimal("5000")

    unsettled = client.get(f"{base}/unsettled").json()
    assert Decimal(unsettled["total"]) == Decimal("5000")

    payment = client.post(
        f"{base}/payments",
        json={
            "amount": "5000",
            "direction": "from_carrier",
            "method": "cash",
            "movement_ids": [adjustment.json()["id"]],
        },
    )
    assert payment.status_code == 201, payment.text
    assert payment.json()["code"].startswith("PAG-")

    assert client.get(f"{base}/unsettled").json()["items"] == []
    movements = client.get(f"{base}/movements").json()
    assert movements["total"] == 2
    assert client.get("/api/v1/ledger/payments").json()["total"] == 1


def test_adjustment_without_description_is_422(client, carrier):
    response = client.post(
        f"/api/v1/ledger/carriers/{carrier.id}/adjustments",
        json={"amount": "5000", "type": "credit", "description": "  "},
    )
    assert response.status_code == 422
    assert "description" in response.json()["errors"]
