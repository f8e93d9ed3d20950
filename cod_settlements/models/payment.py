"""Carrier payment model — money that actually changed hands."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cod_settlements.core.database import Base

PAYMENT_DIRECTIONS = ("from_carrier", "to_carrier")
PAYMENT_METHODS = (
    "cash",
    "bank_transfer",
    "mobile_payment",
    "check",
    "deduction",
    "other",
    "pending",
)


class CarrierPayment(Base):
    """A remittance from a carrier, or a payout to one.

    ``method="pending"`` rows acknowledge a settlement without moving
    money; they carry ``status="pending"`` and have no ledger movement.
    """

    __tablename__ = "carrier_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        comment="PAG-DDMMYYYY-NNN",
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
        index=True,
    )
    settlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("settlements.id"),
        nullable=True,
    )
    direction: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="from_carrier | to_carrier",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    reference: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="completed",
        comment="pending | completed",
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<CarrierPayment(code={self.code!r}, direction={self.direction!r}, "
            f"amount={self.amount})>"
        )
