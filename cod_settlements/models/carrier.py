"""Carrier directory models — carriers and their fee tables."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cod_settlements.core.database import Base

SETTLEMENT_TYPES = ("net", "gross", "salary")
PAYMENT_SCHEDULES = ("daily", "weekly", "biweekly", "monthly", "on_demand")


class Carrier(Base):
    """A third-party courier and its settlement configuration.

    The carrier directory owns these rows; sessions, movements and
    settlements only reference them.
    """

    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    settlement_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="gross",
        comment="net | gross | salary",
    )
    charges_failed_attempts: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    failed_attempt_fee_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("50"),
    )
    payment_schedule: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="weekly",
        comment="daily | weekly | biweekly | monthly | on_demand",
    )
    default_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    # -- Relationships --
    zones: Mapped[list[CarrierZone]] = relationship(
        "CarrierZone",
        back_populates="carrier",
        lazy="select",
        cascade="all, delete-orphan",
    )
    coverage: Mapped[list[CarrierCoverage]] = relationship(
        "CarrierCoverage",
        back_populates="carrier",
        lazy="select",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Carrier(name={self.name!r}, settlement_type={self.settlement_type!r})>"


class CarrierZone(Base):
    """A named delivery area with its own fee for one carrier.

    Name/code uniqueness is soft: lookups compare normalized text, so two
    zones that normalize to the same value are resolved in insertion order.
    """

    __tablename__ = "carrier_zones"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
        index=True,
    )
    zone_name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    zone_code: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
    )
    rate: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    carrier: Mapped[Carrier] = relationship(
        "Carrier",
        back_populates="zones",
    )

    def __repr__(self) -> str:
        return f"<CarrierZone(zone_name={self.zone_name!r}, rate={self.rate})>"


class CarrierCoverage(Base):
    """City-level rate for a carrier, consulted after zones."""

    __tablename__ = "carrier_coverage"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    city: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    carrier: Mapped[Carrier] = relationship(
        "Carrier",
        back_populates="coverage",
    )

    __table_args__ = (Index("ix_carrier_coverage_carrier_city", "carrier_id", "city"),)

    def __repr__(self) -> str:
        return f"<CarrierCoverage(city={self.city!r}, rate={self.rate})>"
