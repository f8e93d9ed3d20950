"""Tests for the HTTP client using httpx.MockTransport."""

from __future__ import annotations

import json
import uuid
from datetime import date
from decimal import Decimal

import httpx
import pytest

from cod_settlements.client import ApiError, SettlementsClient
from cod_settlements.core.exceptions import SupersededCall
from cod_settlements.schemas.reconciliation import OrderOutcomeIn, ReconcileRequest

CARRIER_ID = uuid.uuid4()

ORDER_ROW = {
    "session_id": str(uuid.uuid4()),
    "session_code": "DSP-01102026-001",
    "order_id": str(uuid.uuid4()),
    "order_number": "ORD-0001",
    "customer_name": "Maria",
    "destination_city": "Asunción",
    "delivery_zone": None,
    "total_price": "100000.00",
    "is_cod": True,
    "cod_amount": "100000.00",
    "shipping_cost": "25000.00",
    "fee_source": "zone",
    "zone_name": "Asunción",
}


def _client(handler, **kwargs) -> SettlementsClient:
    return SettlementsClient(
        "http://testserver/", transport=httpx.MockTransport(handler), **kwargs
    )


def test_list_orders_sends_selection():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["user"] = request.headers.get("X-User-Id")
        return httpx.Response(200, json=[ORDER_ROW])

    with _client(handler, user_id="ana") as client:
        [row] = client.list_orders(date(2026, 10, 1), CARRIER_ID)

    assert seen["url"].path == "/api/v1/reconciliation/orders"
    assert seen["url"].params["date"] == "2026-10-01"
    assert seen["url"].params["carrier_id"] == str(CARRIER_ID)
    assert seen["user"] == "ana"
    assert row.shipping_cost == Decimal("25000.00")
    assert row.fee_source == "zone"


def test_stale_selection_is_dropped():
    client = None

    def handler(request: httpx.Request) -> httpx.Response:
        # the operator picks another carrier before this response lands
        client.calls.begin("orders")
        return httpx.Response(200, json=[ORDER_ROW])

    client = _client(handler)
    with pytest.raises(SupersededCall):
        client.list_orders(date(2026, 10, 1), CARRIER_ID)
    client.close()


def test_error_envelope_becomes_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={
                "error": "VALIDATION_FAILED",
                "detail": "Invalid input: orders[0].failure_reason",
                "errors": {"orders[0].failure_reason": "Required when not delivered"},
            },
        )

    request = ReconcileRequest(
        date=date(2026, 10, 1),
        carrier_id=CARRIER_ID,
        orders=[OrderOutcomeIn(order_id=uuid.uuid4(), delivered=False)],
        total_amount_collected=Decimal("0"),
    )
    with _client(handler) as client:
        with pytest.raises(ApiError) as excinfo:
            client.reconcile(request)

    assert excinfo.value.status_code == 422
    assert excinfo.value.code == "VALIDATION_FAILED"
    assert "orders[0].failure_reason" in excinfo.value.errors


def test_non_json_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad gateway")

    with _client(handler) as client:
        with pytest.raises(ApiError) as excinfo:
            client.get_settlement(uuid.uuid4())

    assert excinfo.value.code == "HTTP_ERROR"
    assert excinfo.value.errors == {}


def test_pay_out_omits_amount_by_default():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(404, json={"error": "NOT_FOUND", "detail": "x", "errors": {}})

    with _client(handler) as client:
        with pytest.raises(ApiError):
            client.pay_out(uuid.uuid4(), "cash")

    assert "amount" not in bodies[0]
    assert bodies[0]["method"] == "cash"
