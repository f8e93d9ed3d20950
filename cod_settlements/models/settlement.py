"""Settlement model — the immutable summary of one reconciliation pass."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from cod_settlements.core.database import Base

SETTLEMENT_STATUSES = ("settled", "pending_payment", "paid")


class Settlement(Base):
    """What the carrier and the store owe each other for one dispatch session.

    Totals are written once.  Only ``status``, ``amount_paid`` and
    ``balance_due`` advance afterwards, as payments are registered.
    ``net_receivable`` is positive when the carrier owes the store.
    """

    __tablename__ = "settlements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        comment="LIQ-DDMMYYYY-NNN",
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    dispatch_session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("dispatch_sessions.id"),
        unique=True,
        nullable=False,
    )
    settlement_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_not_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_cod_expected: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    total_cod_collected: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    total_carrier_fees: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    failed_attempt_fee: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    net_receivable: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    discrepancy: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    has_discrepancy: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
    )
    discrepancy_notes: Mapped[Optional[str]] = mapped_column(Text)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
        comment="Unsigned amount still to be paid",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="settled | pending_payment | paid",
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_settlements_carrier_date", "carrier_id", "settlement_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Settlement(code={self.code!r}, net_receivable={self.net_receivable}, "
            f"status={self.status!r})>"
        )
