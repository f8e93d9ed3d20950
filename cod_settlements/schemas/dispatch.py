"""Pydantic schemas for dispatch sessions."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DispatchSessionCreate(BaseModel):
    carrier_id: UUID
    dispatch_date: date
    order_ids: list[UUID] = Field(..., description="Orders handed to the carrier")
    notes: Optional[str] = None


class AbandonRequest(BaseModel):
    reason: str = Field(..., description="Why the session was dropped")


class SessionOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    order_number: Optional[str] = None
    delivery_result: str
    is_cod: bool
    cod_amount: Decimal
    collected_amount: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    fee_source: Optional[str] = None
    zone_name: Optional[str] = None
    destination_city: Optional[str] = None
    failure_reason: Optional[str] = None
    override_prepaid: bool
    processed_at: Optional[datetime] = None


class DispatchSessionSummary(BaseModel):
    """Session without its orders, for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_code: str
    carrier_id: UUID
    dispatch_date: date
    status: str
    total_orders: int
    delivered_count: int
    failed_count: int
    rejected_count: int
    pending_count: int
    total_cod_expected: Decimal
    total_cod_collected: Decimal
    total_shipping_cost: Decimal
    net_receivable: Decimal
    notes: Optional[str] = None
    abandon_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    reconciled_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None


class DispatchSessionResponse(DispatchSessionSummary):
    orders: list[SessionOrderResponse] = Field(default_factory=list)
