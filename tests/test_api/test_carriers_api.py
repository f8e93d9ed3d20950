"""API tests for carrier, zone and fee endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal


def _create_carrier(client, **overrides):
    body = {"name": "Rapido Express", "default_rate": "30000"}
    body.update(overrides)
    response = client.post("/api/v1/carriers", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_get_carrier(client):
    carrier = _create_carrier(client)

    response = client.get(f"/api/v1/carriers/{carrier['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Rapido Express"
    assert data["settlement_type"] == "gross"
    assert Decimal(data["failed_attempt_fee_percent"]) == Decimal("50")


def test_update_config(client):
    carrier = _create_carrier(client)

    response = client.patch(
        f"/api/v1/carriers/{carrier['id']}/config",
        json={"charges_failed_attempts": False},
    )
    assert response.status_code == 200
    assert response.json()["charges_failed_attempts"] is False


def test_percent_out_of_range_is_422(client):
    response = client.post(
        "/api/v1/carriers", json={"name": "X", "failed_attempt_fee_percent": "150"}
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "VALIDATION_FAILED"
    assert "failed_attempt_fee_percent" in body["errors"]


def test_zone_lifecycle_and_fee_lookup(client):
    carrier = _create_carrier(client)
    base = f"/api/v1/carriers/{carrier['id']}"

    zone = client.post(f"{base}/zones", json={"zone_name": "Asunción", "rate": "25000"})
    assert zone.status_code == 201
    coverage = client.post(f"{base}/coverage", json={"city": "Luque", "rate": "28000"})
    assert coverage.status_code == 201

    quote = client.get(f"{base}/fee", params={"city": "ASUNCION"}).json()
    assert (Decimal(quote["rate"]), quote["fee_source"]) == (Decimal("25000"), "zone")
    assert client.get(f"{base}/fee", params={"city": "luque"}).json()["fee_source"] == "coverage"
    unknown = client.get(f"{base}/fee", params={"city": "Nowhere"}).json()
    assert (Decimal(unknown["rate"]), unknown["fee_source"]) == (Decimal("30000"), "default")

    zone_id = zone.json()["id"]
    patched = client.patch(f"{base}/zones/{zone_id}", json={"rate": "26000"})
    assert Decimal(patched.json()["rate"]) == Decimal("26000")
    assert client.delete(f"{base}/zones/{zone_id}").status_code == 204
    assert client.get(f"{base}/zones").json() == []


def test_unknown_carrier_is_404(client):
    response = client.get(f"/api/v1/carriers/{uuid.uuid4()}/fee", params={"city": "x"})
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"
