"""Settlement record factory.

Creates exactly one settlement per dispatch session.  The database is the
arbiter: ``settlements.dispatch_session_id`` and ``settlements.code`` are
both unique, and the insert runs inside a savepoint so a lost race can be
told apart and answered without poisoning the caller's transaction.

  * Code collision (two sessions drew the same number)  -> retry
  * Session collision (someone settled this session)    -> Conflict
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cod_settlements.core.config import Settings
from cod_settlements.core.exceptions import Conflict
from cod_settlements.core.logging import get_logger
from cod_settlements.models.dispatch import DispatchSession
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.sequences import SequenceAllocator

logger = get_logger(__name__)


class SettlementFactory:
    """Inserts settlements with unique human-readable codes."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.sequences = SequenceAllocator(db)

    def create(
        self,
        session: DispatchSession,
        settlement_date: date,
        totals: dict,
        status: str,
        discrepancy_notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Settlement:
        """Insert the settlement for ``session`` inside the current transaction.

        Args:
            session: The dispatch session being reconciled.
            settlement_date: Business date used in the code.
            totals: Aggregates from the reconciliation computation, keyed by
                Settlement column name.
            status: ``settled`` or ``pending_payment``.

        Raises:
            Conflict: If the session already has a settlement, or no unique
                code could be drawn within the retry budget.
        """
        net_receivable: Decimal = totals["net_receivable"]
        balance_due = Decimal("0.00") if status == "settled" else abs(net_receivable)

        attempts = self.config.code_generation_retries
        for attempt in range(1, attempts + 1):
            code = self.sequences.next_code(
                self.config.settlement_code_prefix, settlement_date
            )
            settlement = Settlement(
                code=code,
                carrier_id=session.carrier_id,
                dispatch_session_id=session.id,
                settlement_date=settlement_date,
                status=status,
                amount_paid=Decimal("0.00"),
                balance_due=balance_due,
                discrepancy_notes=discrepancy_notes,
                created_by=created_by,
                **totals,
            )

            savepoint = self.db.begin_nested()
            try:
                self.db.add(settlement)
                self.db.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                if self._session_already_settled(session):
                    logger.warning(
                        "Settlement race lost for session %s", session.session_code
                    )
                    raise Conflict(
                        f"Session {session.session_code} already has a settlement"
                    )
                logger.warning(
                    "Settlement code collision on %s (attempt %d/%d)",
                    code,
                    attempt,
                    attempts,
                )
                continue

            logger.info(
                "Settlement created: code=%s session=%s net_receivable=%s status=%s",
                code,
                session.session_code,
                net_receivable,
                status,
            )
            return settlement

        raise Conflict("Could not allocate a unique settlement code; retry the request")

    def _session_already_settled(self, session: DispatchSession) -> bool:
        return (
            self.db.query(Settlement.id)
            .filter(Settlement.dispatch_session_id == session.id)
            .first()
            is not None
        )
