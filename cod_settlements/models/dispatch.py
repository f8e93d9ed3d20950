"""Dispatch session models — a batch of orders handed to one carrier."""

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
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cod_settlements.core.database import Base

SESSION_STATUSES = ("open", "dispatched", "reconciled", "settled", "abandoned")

# Sessions in these states hold their orders; an order may sit in at most one.
HOLDING_STATUSES = ("open", "dispatched")

DELIVERY_RESULTS = ("pending", "delivered", "failed", "rejected", "rescheduled")
NOT_DELIVERED_RESULTS = ("failed", "rejected", "rescheduled")


class DispatchSession(Base):
    """Orders batched for one carrier on one date, with running totals.

    Moves forward only: open -> dispatched -> reconciled -> settled.
    An open session may instead be abandoned, which is terminal.
    """

    __tablename__ = "dispatch_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    session_code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    dispatch_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="open",
        comment="open | dispatched | reconciled | settled | abandoned",
    )
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    delivered_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0)
    pending_count: Mapped[int] = mapped_column(Integer, default=0)
    total_cod_expected: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    total_cod_collected: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    total_shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    net_receivable: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    abandon_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    abandoned_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # -- Relationships --
    orders: Mapped[list[SessionOrder]] = relationship(
        "SessionOrder",
        back_populates="session",
        lazy="select",
        order_by="SessionOrder.created_at",
    )

    __table_args__ = (
        Index("ix_dispatch_sessions_carrier_date", "carrier_id", "dispatch_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DispatchSession(code={self.session_code!r}, status={self.status!r}, "
            f"total_orders={self.total_orders})>"
        )


class SessionOrder(Base):
    """One order inside a dispatch session.

    ``shipping_cost`` is the fee snapshot taken when the session was
    dispatched; later rate changes never touch it.
    """

    __tablename__ = "session_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    dispatch_session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("dispatch_sessions.id"),
        nullable=False,
        index=True,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )
    order_number: Mapped[Optional[str]] = mapped_column(String(50))
    delivery_result: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending | delivered | failed | rejected | rescheduled",
    )
    is_cod: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    cod_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0"),
    )
    collected_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
        nullable=True,
    )
    shipping_cost: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
        nullable=True,
    )
    fee_source: Mapped[Optional[str]] = mapped_column(
        String(10),
        comment="zone | coverage | default",
    )
    zone_name: Mapped[Optional[str]] = mapped_column(String(120))
    destination_city: Mapped[Optional[str]] = mapped_column(String(120))
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    override_prepaid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    session: Mapped[DispatchSession] = relationship(
        "DispatchSession",
        back_populates="orders",
    )

    __table_args__ = (
        UniqueConstraint(
            "dispatch_session_id", "order_id", name="uq_session_orders_session_order"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SessionOrder(order_number={self.order_number!r}, "
            f"delivery_result={self.delivery_result!r}, shipping_cost={self.shipping_cost})>"
        )
