"""Carrier ledger models — signed movements and payment allocations."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cod_settlements.core.database import Base

MOVEMENT_TYPES = (
    "delivery_fee",
    "failed_fee",
    "cod_collected",
    "payment_in",
    "payment_out",
    "adjustment",
)
PAYMENT_MOVEMENT_TYPES = ("payment_in", "payment_out")


class CarrierMovement(Base):
    """One signed monetary entry between the store and a carrier.

    Positive amounts mean the carrier owes the store.  Rows are append-only:
    corrections are new ``adjustment`` rows, never edits.
    """

    __tablename__ = "carrier_movements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    movement_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment=(
            "delivery_fee | failed_fee | cod_collected | payment_in "
            "| payment_out | adjustment"
        ),
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("orders.id"),
        nullable=True,
    )
    dispatch_session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("dispatch_sessions.id"),
        nullable=True,
    )
    settlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("settlements.id"),
        nullable=True,
        index=True,
    )
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("carrier_payments.id"),
        nullable=True,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
    )

    __table_args__ = (
        Index("ix_carrier_movements_carrier_created", "carrier_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CarrierMovement(type={self.movement_type!r}, amount={self.amount}, "
            f"carrier_id={self.carrier_id!r})>"
        )


class PaymentAllocation(Base):
    """Write-once link between a payment and a movement it closes out.

    A movement with an allocation is settled; one without is unsettled.
    """

    __tablename__ = "payment_allocations"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carrier_payments.id"),
        nullable=False,
        index=True,
    )
    movement_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carrier_movements.id"),
        unique=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
