"""Pydantic schemas for ledger reports, adjustments and payments."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CarrierBalanceResponse(BaseModel):
    """Balance breakdown for one carrier; positive means the carrier owes the store."""

    carrier_id: UUID
    carrier_name: str
    settlement_type: str
    charges_failed_attempts: bool
    payment_schedule: str
    total_cod_collected: Decimal
    total_delivery_fees: Decimal
    total_failed_fees: Decimal
    total_payments_received: Decimal
    total_payments_sent: Decimal
    total_adjustments: Decimal
    net_balance: Decimal
    unsettled_balance: Decimal
    last_movement_at: Optional[datetime] = None
    last_payment_at: Optional[datetime] = None


class LedgerSummaryResponse(BaseModel):
    total_carriers_with_balance: int
    total_owed_by_carriers: Decimal
    total_owed_to_carriers: Decimal
    net_position: Decimal


class MovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    carrier_id: UUID
    movement_type: str
    amount: Decimal
    order_id: Optional[UUID] = None
    dispatch_session_id: Optional[UUID] = None
    settlement_id: Optional[UUID] = None
    payment_id: Optional[UUID] = None
    description: str
    created_by: Optional[str] = None
    created_at: datetime


class MovementListResponse(BaseModel):
    items: list[MovementResponse]
    total: int
    page: int
    limit: int


class UnsettledResponse(BaseModel):
    carrier_id: UUID
    total: Decimal
    items: list[MovementResponse]


class AdjustmentCreate(BaseModel):
    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    type: Literal["credit", "debit"] = Field(
        ...,
        description="credit reduces what the carrier owes; debit increases it",
    )
    description: str = Field(..., description="Audit trail; required")


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    direction: Literal["from_carrier", "to_carrier"]
    method: Literal[
        "cash", "bank_transfer", "mobile_payment", "check", "deduction", "other", "pending"
    ]
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    settlement_ids: Optional[list[UUID]] = Field(
        None,
        description="Settlements to pay; defaults to the oldest open ones",
    )
    movement_ids: Optional[list[UUID]] = Field(
        None,
        description="Extra unsettled movements this payment closes out",
    )
    payment_date: Optional[date] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    carrier_id: UUID
    settlement_id: Optional[UUID] = None
    direction: str
    amount: Decimal
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: str
    payment_date: date
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
    page: int
    limit: int
