"""Per-date counters for human-readable codes.

Codes look like ``LIQ-17102026-003``: a prefix, the business date as
DDMMYYYY and a per-date sequence.  The counter row for a (prefix, date)
pair is read with ``SELECT ... FOR UPDATE`` so concurrent allocations are
serialized by the database.  The increment belongs to the caller's
transaction: if that transaction rolls back, the number is issued again
by the next allocation.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cod_settlements.core.logging import get_logger
from cod_settlements.models.sequence import SequenceCounter

logger = get_logger(__name__)


def format_code(prefix: str, business_date: date, number: int) -> str:
    """Build ``PREFIX-DDMMYYYY-NNN``."""
    return f"{prefix}-{business_date.strftime('%d%m%Y')}-{number:03d}"


class SequenceAllocator:
    """Allocates the next number of a named sequence inside the caller's transaction."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def next_value(self, name: str) -> int:
        """Lock the counter row (creating it on first use) and increment it."""
        counter = self._locked_counter(name)

        if counter is None:
            savepoint = self.db.begin_nested()
            try:
                counter = SequenceCounter(name=name, current_value=1)
                self.db.add(counter)
                self.db.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                # Another transaction created the row first
                savepoint.rollback()
                logger.debug("Sequence %s created concurrently, re-reading", name)
                counter = self._locked_counter(name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.db.flush()
        return counter.current_value

    def next_code(self, prefix: str, business_date: date) -> str:
        """Allocate the next ``PREFIX-DDMMYYYY-NNN`` code for a date."""
        name = f"{prefix}-{business_date.strftime('%d%m%Y')}"
        return format_code(prefix, business_date, self.next_value(name))

    def _locked_counter(self, name: str):
        return self.db.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
