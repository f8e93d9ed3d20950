"""Named counters backing human-readable codes."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cod_settlements.core.database import Base


class SequenceCounter(Base):
    """Last value handed out for one sequence name (e.g. ``LIQ-17102026``)."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(60),
        primary_key=True,
    )
    current_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter(name={self.name!r}, current_value={self.current_value})>"
