"""Pydantic schemas for settlements and settlement payouts."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SettlementResponse(BaseModel):
    """A settlement as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    carrier_id: UUID
    dispatch_session_id: UUID
    settlement_date: date
    total_orders: int
    total_delivered: int
    total_not_delivered: int
    total_cod_expected: Decimal
    total_cod_collected: Decimal
    total_carrier_fees: Decimal
    failed_attempt_fee: Decimal
    net_receivable: Decimal = Field(
        ...,
        description="Positive when the carrier owes the store",
    )
    discrepancy: Decimal
    has_discrepancy: bool
    discrepancy_notes: Optional[str] = None
    amount_paid: Decimal
    balance_due: Decimal
    status: str = Field(..., description="settled | pending_payment | paid")
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class SettlementListResponse(BaseModel):
    items: list[SettlementResponse]
    total: int
    page: int
    limit: int


class PayOutRequest(BaseModel):
    """Pay one settlement; the direction follows the sign of its net."""

    amount: Optional[Decimal] = Field(
        None,
        gt=0,
        max_digits=15,
        decimal_places=2,
        description="Defaults to the settlement's balance due",
    )
    method: str = Field(
        ...,
        description="cash | bank_transfer | mobile_payment | check | deduction | other | pending",
    )
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class SettlementSummaryResponse(BaseModel):
    total_settlements: int
    pending_payment: int
    paid: int
    settled: int
    with_discrepancy: int
    total_cod_collected: Decimal
    total_net_receivable: Decimal
    outstanding_from_carriers: Decimal
    outstanding_to_carriers: Decimal
