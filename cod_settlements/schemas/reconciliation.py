"""Pydantic schemas for reconciliation requests, results and drafts."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class OrderOutcomeIn(BaseModel):
    """Carrier-reported outcome for one order."""

    order_id: UUID
    delivered: bool
    failure_reason: Optional[str] = Field(
        None,
        description="Required when delivered is false",
    )
    override_prepaid: bool = Field(
        False,
        description="Treat a COD order as prepaid (no cash expected)",
    )
    delivery_result: Optional[
        Literal["delivered", "failed", "rejected", "rescheduled"]
    ] = Field(
        None,
        description="Finer outcome; defaults to delivered/failed from the flag",
    )


class ReconcileRequest(BaseModel):
    """Request body for reconciling one dispatched session."""

    model_config = ConfigDict(populate_by_name=True)

    carrier_id: UUID
    dispatch_date: dt.date = Field(
        ...,
        validation_alias=AliasChoices("date", "dispatch_date"),
        description="Dispatch date of the session",
    )
    session_id: Optional[UUID] = Field(
        None,
        description="Pick one session when the carrier has several on the date",
    )
    orders: list[OrderOutcomeIn] = Field(default_factory=list)
    total_amount_collected: Optional[Decimal] = Field(
        None,
        max_digits=15,
        decimal_places=2,
        description="Cash the carrier handed over for the whole batch",
    )
    discrepancy_notes: Optional[str] = None


class ReconcileResponse(BaseModel):
    """Outcome of a successful reconciliation."""

    settlement_id: UUID
    settlement_code: str
    dispatch_session_id: UUID
    status: str
    total_orders: int
    total_delivered: int
    total_not_delivered: int
    total_cod_expected: Decimal
    total_cod_collected: Decimal
    total_carrier_fees: Decimal
    failed_attempt_fee: Decimal
    net_receivable: Decimal
    discrepancy: Decimal
    has_discrepancy: bool
    balance_due: Decimal

    @classmethod
    def from_settlement(cls, settlement: Any) -> ReconcileResponse:
        return cls(
            settlement_id=settlement.id,
            settlement_code=settlement.code,
            dispatch_session_id=settlement.dispatch_session_id,
            status=settlement.status,
            total_orders=settlement.total_orders,
            total_delivered=settlement.total_delivered,
            total_not_delivered=settlement.total_not_delivered,
            total_cod_expected=settlement.total_cod_expected,
            total_cod_collected=settlement.total_cod_collected,
            total_carrier_fees=settlement.total_carrier_fees,
            failed_attempt_fee=settlement.failed_attempt_fee,
            net_receivable=settlement.net_receivable,
            discrepancy=settlement.discrepancy,
            has_discrepancy=settlement.has_discrepancy,
            balance_due=settlement.balance_due,
        )


class PendingReconciliationResponse(BaseModel):
    """Dispatched sessions for one carrier and date awaiting reconciliation."""

    dispatch_date: dt.date
    carrier_id: UUID
    carrier_name: str
    failed_attempt_fee_percent: Decimal
    session_ids: list[UUID]
    total_orders: int
    total_cod: Decimal
    total_prepaid: int = Field(..., description="Number of prepaid orders")


class ReconciliationOrderResponse(BaseModel):
    """One order as shown to the operator before reconciling."""

    session_id: UUID
    session_code: str
    order_id: UUID
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    destination_city: Optional[str] = None
    delivery_zone: Optional[str] = None
    total_price: Decimal
    is_cod: bool
    cod_amount: Decimal
    shipping_cost: Optional[Decimal] = None
    fee_source: Optional[str] = None
    zone_name: Optional[str] = None


class DraftIn(BaseModel):
    """In-progress reconciliation input; free-form and unvalidated."""

    payload: dict[str, Any] = Field(default_factory=dict)


class DraftResponse(BaseModel):
    session_id: UUID
    payload: dict[str, Any]
    revision: int
    saved_at: dt.datetime
    expires_at: dt.datetime
    updated_by: Optional[str] = None

    @classmethod
    def from_draft(cls, draft: Any) -> DraftResponse:
        return cls(
            session_id=draft.session_id,
            payload=draft.payload,
            revision=draft.revision,
            saved_at=dt.datetime.fromtimestamp(draft.saved_at, tz=dt.timezone.utc),
            expires_at=dt.datetime.fromtimestamp(draft.expires_at, tz=dt.timezone.utc),
            updated_by=draft.updated_by,
        )
