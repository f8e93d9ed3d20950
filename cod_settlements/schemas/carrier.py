"""Pydantic schemas for carriers, zones, coverage and fee quotes."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

SettlementType = Literal["net", "gross", "salary"]
PaymentSchedule = Literal["daily", "weekly", "biweekly", "monthly", "on_demand"]


class CarrierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    settlement_type: SettlementType = "gross"
    charges_failed_attempts: bool = True
    failed_attempt_fee_percent: Decimal = Field(
        Decimal("50"),
        ge=0,
        le=100,
        description="Share of the normal fee charged for a failed attempt",
    )
    payment_schedule: PaymentSchedule = "weekly"
    default_rate: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    is_active: bool = True


class CarrierConfigUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    settlement_type: Optional[SettlementType] = None
    charges_failed_attempts: Optional[bool] = None
    failed_attempt_fee_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    payment_schedule: Optional[PaymentSchedule] = None
    default_rate: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    is_active: Optional[bool] = None


class CarrierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    settlement_type: str
    charges_failed_attempts: bool
    failed_attempt_fee_percent: Decimal
    payment_schedule: str
    default_rate: Optional[Decimal] = None
    is_active: bool
    created_at: Optional[datetime] = None


class ZoneCreate(BaseModel):
    zone_name: str = Field(..., min_length=1, max_length=120)
    zone_code: Optional[str] = Field(None, max_length=30)
    rate: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    is_active: bool = True


class ZoneUpdate(BaseModel):
    zone_name: Optional[str] = Field(None, min_length=1, max_length=120)
    zone_code: Optional[str] = Field(None, max_length=30)
    rate: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    is_active: Optional[bool] = None


class ZoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    carrier_id: UUID
    zone_name: str
    zone_code: Optional[str] = None
    rate: Decimal
    is_active: bool


class CoverageCreate(BaseModel):
    city: str = Field(..., min_length=1, max_length=120)
    rate: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    is_active: bool = True


class CoverageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    carrier_id: UUID
    city: str
    rate: Decimal
    is_active: bool


class FeeQuoteResponse(BaseModel):
    carrier_id: UUID
    destination_city: Optional[str] = None
    rate: Decimal
    fee_source: Literal["zone", "coverage", "default"]
    zone_name: Optional[str] = None
