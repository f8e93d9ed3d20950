"""Order model — read-only view of the order store."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from cod_settlements.core.database import Base

# Payment methods the courier collects in cash. An empty method counts as COD.
COD_PAYMENT_METHODS = frozenset(
    {"efectivo", "cash", "contra entrega", "contra_entrega", "cod", ""}
)


class Order(Base):
    """An order as recorded by the order store.

    The settlement engine never writes these rows; it reads the COD amount,
    payment method and destination when batching and reconciling.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    customer_name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    shipping_city: Mapped[Optional[str]] = mapped_column(
        String(120),
    )
    delivery_zone: Mapped[Optional[str]] = mapped_column(
        String(120),
    )
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0"),
    )
    payment_method: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    prepaid_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        comment="Set when the customer paid before delivery",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    @property
    def is_cod(self) -> bool:
        """True when the courier must collect cash for this order."""
        if self.prepaid_method:
            return False
        return (self.payment_method or "").strip().lower() in COD_PAYMENT_METHODS

    def __repr__(self) -> str:
        return (
            f"<Order(order_number={self.order_number!r}, "
            f"total_price={self.total_price}, city={self.shipping_city!r})>"
        )
