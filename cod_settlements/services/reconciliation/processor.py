"""Reconciliation processor — turns a carrier's delivery report into a settlement.

A reconcile call runs in four phases:
  1. Validate the input.  Nothing is read for write and nothing is written.
  2. Find the dispatched session and check the report covers it exactly.
  3. Compute the figures (``rules.summarize``).
  4. In ONE transaction: swap the session status ``dispatched -> reconciled``,
     insert the settlement, append the ledger movements and update the
     session orders.  Any failure rolls the whole write set back.

The status swap is a guarded UPDATE, so of two concurrent calls for the same
session exactly one proceeds and the other gets ``Conflict``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cod_settlements.core.config import Settings
from cod_settlements.core.exceptions import (
    Conflict,
    NotFound,
    SettlementError,
    Transient,
    ValidationFailed,
)
from cod_settlements.core.logging import get_logger
from cod_settlements.models.carrier import Carrier
from cod_settlements.models.dispatch import (
    NOT_DELIVERED_RESULTS,
    DispatchSession,
    SessionOrder,
)
from cod_settlements.models.order import Order
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.ledger.ledger import CarrierLedger
from cod_settlements.services.normalizer import to_money
from cod_settlements.services.reconciliation.rules import (
    ReconciledLine,
    ReconciliationSummary,
    summarize,
)
from cod_settlements.services.settlements.factory import SettlementFactory

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderOutcome:
    """What the carrier reported for one order."""

    order_id: uuid.UUID
    delivered: bool
    failure_reason: Optional[str] = None
    override_prepaid: bool = False
    delivery_result: Optional[str] = None


class ReconciliationProcessor:
    """Reconciles dispatched sessions and answers the pre-reconcile queries."""

    def __init__(self, db: Session, config: Settings, drafts: Any = None) -> None:
        self.db = db
        self.config = config
        self.drafts = drafts
        self.ledger = CarrierLedger(db)
        self.factory = SettlementFactory(db, config)

    # ── Public API ───────────────────────────────────────────────────

    def reconcile(
        self,
        carrier_id: uuid.UUID,
        dispatch_date: date,
        outcomes: list[OrderOutcome],
        total_amount_collected: Optional[Decimal],
        discrepancy_notes: Optional[str] = None,
        session_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> Settlement:
        """Reconcile one dispatched session.

        Raises:
            ValidationFailed: Bad input; nothing was written.
            NotFound: Unknown carrier or no session for the carrier and date.
            Conflict: The session is not ``dispatched`` (already reconciled,
                or a concurrent call won).
            Transient: The database failed; everything was rolled back.
        """
        collected = self._validate_input(outcomes, total_amount_collected)

        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier", carrier_id)

        session = self._find_session(carrier_id, dispatch_date, session_id)
        items = self._match_outcomes(session, outcomes)

        lines = [self._line(item, outcome) for item, outcome in items]
        summary = summarize(
            lines,
            collected,
            charges_failed_attempts=carrier.charges_failed_attempts,
            fee_percent=carrier.failed_attempt_fee_percent,
            discrepancy_tolerance=self.config.discrepancy_tolerance,
            settled_threshold=self.config.settled_threshold,
        )

        session_code = session.session_code
        try:
            self._claim_session(session)
            settlement = self.factory.create(
                session,
                dispatch_date,
                summary.settlement_totals(),
                summary.status,
                discrepancy_notes=discrepancy_notes,
                created_by=created_by,
            )
            self._post_movements(session, settlement, summary, created_by)
            self._apply_outcomes(session, items, lines, summary)
            self.db.commit()
        except SettlementError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Reconciliation failed: session=%s", session_code)
            raise Transient(f"Could not persist reconciliation: {exc}") from exc

        if self.drafts is not None:
            self.drafts.discard(session.id)

        logger.info(
            "Session reconciled: code=%s settlement=%s collected=%s expected=%s "
            "net_receivable=%s discrepancy=%s status=%s",
            session.session_code,
            settlement.code,
            summary.collected,
            summary.cod_expected,
            summary.net_receivable,
            summary.discrepancy,
            summary.status,
        )
        return settlement

    def list_pending(self) -> list[dict]:
        """Dispatched sessions awaiting reconciliation, grouped by carrier and date."""
        rows = (
            self.db.query(DispatchSession, Carrier)
            .join(Carrier, DispatchSession.carrier_id == Carrier.id)
            .filter(DispatchSession.status == "dispatched")
            .order_by(DispatchSession.dispatch_date.desc(), Carrier.name)
            .all()
        )

        groups: dict[tuple, dict] = {}
        for session, carrier in rows:
            key = (session.dispatch_date, carrier.id)
            group = groups.get(key)
            if group is None:
                group = groups[key] = {
                    "dispatch_date": session.dispatch_date,
                    "carrier_id": carrier.id,
                    "carrier_name": carrier.name,
                    "failed_attempt_fee_percent": carrier.failed_attempt_fee_percent,
                    "session_ids": [],
                    "total_orders": 0,
                    "total_cod": Decimal("0.00"),
                    "total_prepaid": 0,
                }
            group["session_ids"].append(session.id)
            for item in session.orders:
                group["total_orders"] += 1
                if item.is_cod:
                    group["total_cod"] += item.cod_amount
                else:
                    group["total_prepaid"] += 1
        return list(groups.values())

    def list_orders(self, dispatch_date: date, carrier_id: uuid.UUID) -> list[dict]:
        """Orders of the carrier's dispatched sessions for ``dispatch_date``."""
        rows = (
            self.db.query(SessionOrder, DispatchSession, Order)
            .join(DispatchSession, SessionOrder.dispatch_session_id == DispatchSession.id)
            .join(Order, SessionOrder.order_id == Order.id)
            .filter(DispatchSession.carrier_id == carrier_id)
            .filter(DispatchSession.dispatch_date == dispatch_date)
            .filter(DispatchSession.status == "dispatched")
            .order_by(DispatchSession.session_code, SessionOrder.order_number)
            .all()
        )
        return [
            {
                "session_id": session.id,
                "session_code": session.session_code,
                "order_id": item.order_id,
                "order_number": item.order_number,
                "customer_name": order.customer_name,
                "destination_city": item.destination_city,
                "delivery_zone": order.delivery_zone,
                "total_price": order.total_price,
                "is_cod": item.is_cod,
                "cod_amount": item.cod_amount if item.is_cod else Decimal("0.00"),
                "shipping_cost": item.shipping_cost,
                "fee_source": item.fee_source,
                "zone_name": item.zone_name,
            }
            for item, session, order in rows
        ]

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _validate_input(
        outcomes: list[OrderOutcome], total_amount_collected: Optional[Decimal]
    ) -> Decimal:
        errors: dict[str, str] = {}

        collected = None
        if total_amount_collected is None:
            errors["total_amount_collected"] = "Collected amount is required"
        else:
            try:
                collected = to_money(total_amount_collected)
            except ValueError:
                errors["total_amount_collected"] = "Must be a number"
            else:
                if collected < 0:
                    errors["total_amount_collected"] = "Must not be negative"

        if not outcomes:
            errors["orders"] = "At least one order outcome is required"

        seen: set = set()
        for index, outcome in enumerate(outcomes):
            if outcome.order_id in seen:
                errors[f"orders[{index}].order_id"] = "Order listed more than once"
            seen.add(outcome.order_id)

            if outcome.delivered:
                if outcome.delivery_result not in (None, "delivered"):
                    errors[f"orders[{index}].delivery_result"] = (
                        "Delivered orders must have result 'delivered'"
                    )
                continue
            if not outcome.failure_reason or not outcome.failure_reason.strip():
                errors[f"orders[{index}].failure_reason"] = (
                    "A failure reason is required for undelivered orders"
                )
            if (
                outcome.delivery_result is not None
                and outcome.delivery_result not in NOT_DELIVERED_RESULTS
            ):
                errors[f"orders[{index}].delivery_result"] = (
                    f"Must be one of {', '.join(NOT_DELIVERED_RESULTS)}"
                )

        if errors:
            raise ValidationFailed(errors)
        return collected

    def _find_session(
        self,
        carrier_id: uuid.UUID,
        dispatch_date: date,
        session_id: Optional[uuid.UUID],
    ) -> DispatchSession:
        if session_id is not None:
            session = self.db.get(DispatchSession, session_id)
            if session is None or session.carrier_id != carrier_id:
                raise NotFound("Dispatch session", session_id)
            if session.status != "dispatched":
                raise Conflict(
                    f"Session {session.session_code} is {session.status}; "
                    "only dispatched sessions can be reconciled"
                )
            return session

        sessions = (
            self.db.query(DispatchSession)
            .filter(DispatchSession.carrier_id == carrier_id)
            .filter(DispatchSession.dispatch_date == dispatch_date)
            .filter(DispatchSession.status != "abandoned")
            .all()
        )
        dispatched = [s for s in sessions if s.status == "dispatched"]
        if len(dispatched) == 1:
            return dispatched[0]
        if len(dispatched) > 1:
            codes = ", ".join(sorted(s.session_code for s in dispatched))
            raise ValidationFailed(
                {"session_id": f"Several dispatched sessions match ({codes}); pick one"}
            )
        if sessions:
            raise Conflict(
                f"No dispatched session for carrier {carrier_id} on {dispatch_date}; "
                "it may already be reconciled"
            )
        raise NotFound("Dispatch session", f"carrier={carrier_id} date={dispatch_date}")

    @staticmethod
    def _match_outcomes(
        session: DispatchSession, outcomes: list[OrderOutcome]
    ) -> list[tuple[SessionOrder, OrderOutcome]]:
        by_order = {item.order_id: item for item in session.orders}
        reported = {outcome.order_id for outcome in outcomes}

        errors: dict[str, str] = {}
        unknown = sorted(str(oid) for oid in reported if oid not in by_order)
        missing = sorted(
            item.order_number or str(oid)
            for oid, item in by_order.items()
            if oid not in reported
        )
        if unknown:
            errors["orders"] = (
                f"Orders not in session {session.session_code}: {', '.join(unknown)}"
            )
        if missing:
            errors["orders_missing"] = f"Outcome missing for: {', '.join(missing)}"
        if errors:
            raise ValidationFailed(errors)

        return [(by_order[outcome.order_id], outcome) for outcome in outcomes]

    @staticmethod
    def _line(item: SessionOrder, outcome: OrderOutcome) -> ReconciledLine:
        return ReconciledLine(
            delivered=outcome.delivered,
            is_cod=item.is_cod,
            cod_amount=to_money(item.cod_amount),
            shipping_cost=to_money(item.shipping_cost),
            override_prepaid=outcome.override_prepaid,
            delivery_result=outcome.delivery_result,
        )

    def _claim_session(self, session: DispatchSession) -> None:
        """Guarded ``dispatched -> reconciled`` swap; exactly one caller wins."""
        result = self.db.execute(
            update(DispatchSession)
            .where(DispatchSession.id == session.id)
            .where(DispatchSession.status == "dispatched")
            .values(status="reconciled", reconciled_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Reconcile race lost for session %s", session.session_code)
            raise Conflict(f"Session {session.session_code} is no longer dispatched")

    def _post_movements(
        self,
        session: DispatchSession,
        settlement: Settlement,
        summary: ReconciliationSummary,
        created_by: Optional[str],
    ) -> None:
        components = (
            ("cod_collected", summary.collected, "COD collected"),
            ("delivery_fee", -summary.delivered_fees, "Delivery fees"),
            ("failed_fee", -summary.failed_fees, "Failed attempt fees"),
        )
        for movement_type, amount, label in components:
            if amount == 0:
                continue
            self.ledger.append(
                session.carrier_id,
                movement_type,
                amount,
                f"{label} - {settlement.code} ({session.session_code})",
                dispatch_session_id=session.id,
                settlement_id=settlement.id,
                created_by=created_by,
            )

    def _apply_outcomes(
        self,
        session: DispatchSession,
        items: list[tuple[SessionOrder, OrderOutcome]],
        lines: list[ReconciledLine],
        summary: ReconciliationSummary,
    ) -> None:
        now = datetime.utcnow()
        for (item, outcome), line in zip(items, lines):
            item.delivery_result = line.result
            item.override_prepaid = outcome.override_prepaid
            item.failure_reason = None if outcome.delivered else outcome.failure_reason.strip()
            item.collected_amount = item.cod_amount if line.counts_as_cod else Decimal("0.00")
            item.processed_at = now

        session.status = "reconciled"
        session.reconciled_at = now
        session.delivered_count = summary.delivered_count
        session.failed_count = summary.failed_count
        session.rejected_count = summary.rejected_count
        session.pending_count = 0
        session.total_cod_collected = summary.collected
        session.net_receivable = summary.net_receivable
        if summary.status == "settled":
            session.status = "settled"
            session.settled_at = now
        self.db.flush()
