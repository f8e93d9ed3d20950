"""HTTP client for the settlements API.

Each method returns one explicit pydantic model parsed from the response
body.  Error responses raise ``ApiError`` carrying the server's error code
and per-field errors.  Read calls made while the operator navigates go
through ``SupersedingCalls`` so a late response for a session the operator
has already left is dropped instead of overwriting newer data.
"""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any, Optional

import httpx

from cod_settlements.core.exceptions import SettlementError
from cod_settlements.core.logging import get_logger
from cod_settlements.schemas.dispatch import DispatchSessionResponse
from cod_settlements.schemas.ledger import CarrierBalanceResponse, PaymentResponse
from cod_settlements.schemas.reconciliation import (
    PendingReconciliationResponse,
    ReconcileRequest,
    ReconcileResponse,
    ReconciliationOrderResponse,
)
from cod_settlements.schemas.settlement import SettlementResponse
from cod_settlements.services.supersede import SupersedingCalls

logger = get_logger(__name__)


class ApiError(SettlementError):
    """Non-2xx response from the settlements API."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        errors: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.errors = errors or {}
        super().__init__(message)


class SettlementsClient:
    """Thin synchronous client over ``httpx.Client``."""

    def __init__(
        self,
        base_url: str,
        user_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"X-User-Id": user_id} if user_id else {}
        self._http = httpx.Client(
            base_url=base_url.rstrip("/") + "/api/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.calls = SupersedingCalls()

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> SettlementsClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ── Reconciliation ───────────────────────────────────────────────

    def list_pending(self) -> list[PendingReconciliationResponse]:
        data = self._superseding("pending", "GET", "/reconciliation/pending")
        return [PendingReconciliationResponse.model_validate(item) for item in data]

    def list_orders(
        self, dispatch_date: dt.date, carrier_id: uuid.UUID
    ) -> list[ReconciliationOrderResponse]:
        """Orders for the selection; a newer selection supersedes this call."""
        data = self._superseding(
            "orders",
            "GET",
            "/reconciliation/orders",
            params={"date": dispatch_date.isoformat(), "carrier_id": str(carrier_id)},
        )
        return [ReconciliationOrderResponse.model_validate(item) for item in data]

    def reconcile(self, request: ReconcileRequest) -> ReconcileResponse:
        data = self._request(
            "POST", "/reconciliation", json=request.model_dump(mode="json")
        )
        return ReconcileResponse.model_validate(data)

    # ── Dispatch and settlements ─────────────────────────────────────

    def get_session(self, session_id: uuid.UUID) -> DispatchSessionResponse:
        data = self._superseding("session", "GET", f"/dispatch-sessions/{session_id}")
        return DispatchSessionResponse.model_validate(data)

    def get_settlement(self, settlement_id: uuid.UUID) -> SettlementResponse:
        data = self._request("GET", f"/settlements/{settlement_id}")
        return SettlementResponse.model_validate(data)

    def pay_out(
        self,
        settlement_id: uuid.UUID,
        method: str,
        amount: Optional[Decimal] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SettlementResponse:
        body: dict[str, Any] = {"method": method, "reference": reference, "notes": notes}
        if amount is not None:
            body["amount"] = str(amount)
        data = self._request("POST", f"/settlements/{settlement_id}/pay", json=body)
        return SettlementResponse.model_validate(data)

    # ── Ledger ───────────────────────────────────────────────────────

    def get_balances(self) -> list[CarrierBalanceResponse]:
        data = self._superseding("balances", "GET", "/ledger/balances")
        return [CarrierBalanceResponse.model_validate(item) for item in data]

    def register_payment(
        self,
        carrier_id: uuid.UUID,
        amount: Decimal,
        direction: str,
        method: str,
        **extra: Any,
    ) -> PaymentResponse:
        body = {"amount": str(amount), "direction": direction, "method": method}
        body.update({k: v for k, v in extra.items() if v is not None})
        data = self._request(
            "POST", f"/ledger/carriers/{carrier_id}/payments", json=body
        )
        return PaymentResponse.model_validate(data)

    # ── Private helpers ──────────────────────────────────────────────

    def _superseding(self, key: str, method: str, path: str, **kwargs: Any) -> Any:
        token = self.calls.begin(key)
        data = self._request(method, path, **kwargs)
        return self.calls.accept(token, data)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._http.request(method, path, **kwargs)
        if response.is_success:
            return response.json() if response.content else None

        try:
            body = response.json()
        except ValueError:
            body = {}
        logger.warning(
            "API error: %s %s -> %d %s",
            method,
            path,
            response.status_code,
            body.get("error"),
        )
        raise ApiError(
            status_code=response.status_code,
            code=body.get("error", "HTTP_ERROR"),
            message=body.get("detail", response.text or response.reason_phrase),
            errors=body.get("errors"),
        )
