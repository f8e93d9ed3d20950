"""Payment registration — money changing hands against open settlements.

A completed payment writes one ledger movement:

    from_carrier  ->  payment_in   (-amount)
    to_carrier    ->  payment_out  (+amount)

and is then applied to open settlements whose sign matches the direction
(carrier owes the store for ``from_carrier``, the store owes the carrier
for ``to_carrier``).  A settlement that is fully covered becomes ``paid``,
its session advances to ``settled`` and its movements are allocated to the
payment.  A partial payment leaves the settlement ``pending_payment`` with
a smaller ``balance_due``.

``method="pending"`` only records the intention to pay: no movement, no
balance change, no status change.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

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
from cod_settlements.models.dispatch import DispatchSession
from cod_settlements.models.ledger import PAYMENT_MOVEMENT_TYPES, CarrierMovement
from cod_settlements.models.payment import (
    PAYMENT_DIRECTIONS,
    PAYMENT_METHODS,
    CarrierPayment,
)
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.ledger.ledger import CarrierLedger
from cod_settlements.services.normalizer import to_money
from cod_settlements.services.sequences import SequenceAllocator

logger = get_logger(__name__)

CLOSED_SETTLEMENT_STATUSES = ("paid", "settled")


def direction_for(net_receivable: Decimal) -> str:
    """Which way money moves to close a settlement with this net."""
    return "from_carrier" if net_receivable > 0 else "to_carrier"


class PaymentService:
    """Registers carrier payments and applies them to settlements."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.ledger = CarrierLedger(db)
        self.sequences = SequenceAllocator(db)

    # ── Public API ───────────────────────────────────────────────────

    def register_payment(
        self,
        carrier_id: uuid.UUID,
        amount: Decimal,
        direction: str,
        method: str,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        settlement_ids: Optional[list[uuid.UUID]] = None,
        movement_ids: Optional[list[uuid.UUID]] = None,
        payment_date: Optional[date] = None,
        created_by: Optional[str] = None,
    ) -> CarrierPayment:
        """Record a payment and apply it.

        Args:
            settlement_ids: Settlements to pay, in order.  When omitted the
                carrier's oldest open settlements of matching sign are used.
            movement_ids: Extra unsettled movements (e.g. adjustments) the
                payment closes out.

        Raises:
            ValidationFailed: Bad amount, direction, method or targets.
            NotFound: Unknown carrier, settlement or movement.
            Conflict: A targeted settlement is already closed.
            Transient: The database failed; nothing was written.
        """
        value = self._validate(amount, direction, method)
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier", carrier_id)
        payment_date = payment_date or date.today()

        try:
            targets = self._targets(carrier_id, direction, settlement_ids)
            extra = self._extra_movements(carrier_id, movement_ids or [])

            pending = method == "pending"
            payment = CarrierPayment(
                id=uuid.uuid4(),
                code=self.sequences.next_code(
                    self.config.payment_code_prefix, payment_date
                ),
                carrier_id=carrier_id,
                settlement_id=targets[0].id if len(targets) == 1 else None,
                direction=direction,
                amount=value,
                method=method,
                reference=reference,
                notes=notes,
                status="pending" if pending else "completed",
                payment_date=payment_date,
                created_by=created_by,
            )
            self.db.add(payment)
            self.db.flush()

            if not pending:
                self._post_payment_movement(payment, created_by)
                self._apply(payment, targets)
                if extra:
                    self.ledger.allocate(payment.id, extra)

            self.db.commit()
        except SettlementError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Payment registration failed: carrier=%s", carrier_id)
            raise Transient(f"Could not persist payment: {exc}") from exc

        logger.info(
            "Payment registered: code=%s carrier=%s direction=%s amount=%s "
            "method=%s settlements=%d",
            payment.code,
            carrier_id,
            direction,
            value,
            method,
            len(targets),
        )
        return payment

    def pay_out(
        self,
        settlement_id: uuid.UUID,
        amount: Optional[Decimal],
        method: str,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Settlement:
        """Pay one settlement; ``amount`` defaults to its balance due.

        Raises:
            NotFound: Unknown settlement.
            Conflict: Settlement already ``paid`` or ``settled``.
        """
        settlement = self.db.get(Settlement, settlement_id)
        if settlement is None:
            raise NotFound("Settlement", settlement_id)
        if settlement.status in CLOSED_SETTLEMENT_STATUSES:
            raise Conflict(f"Settlement {settlement.code} is already {settlement.status}")

        self.register_payment(
            settlement.carrier_id,
            settlement.balance_due if amount is None else amount,
            direction_for(settlement.net_receivable),
            method,
            reference=reference,
            notes=notes,
            settlement_ids=[settlement.id],
            created_by=created_by,
        )
        self.db.refresh(settlement)
        return settlement

    def list_payments(
        self,
        carrier_id: Optional[uuid.UUID] = None,
        settlement_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[CarrierPayment], int]:
        query = self.db.query(CarrierPayment)
        if carrier_id is not None:
            query = query.filter(CarrierPayment.carrier_id == carrier_id)
        if settlement_id is not None:
            query = query.filter(CarrierPayment.settlement_id == settlement_id)
        total = query.count()
        items = (
            query.order_by(CarrierPayment.payment_date.desc(), CarrierPayment.code.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _validate(amount: Decimal, direction: str, method: str) -> Decimal:
        errors: dict[str, str] = {}
        value = Decimal("0.00")
        try:
            value = to_money(amount)
        except ValueError:
            errors["amount"] = "Must be a number"
        else:
            if value <= 0:
                errors["amount"] = "Must be greater than zero"
        if direction not in PAYMENT_DIRECTIONS:
            errors["direction"] = f"Must be one of {', '.join(PAYMENT_DIRECTIONS)}"
        if method not in PAYMENT_METHODS:
            errors["method"] = f"Must be one of {', '.join(PAYMENT_METHODS)}"
        if errors:
            raise ValidationFailed(errors)
        return value

    def _targets(
        self,
        carrier_id: uuid.UUID,
        direction: str,
        settlement_ids: Optional[list[uuid.UUID]],
    ) -> list[Settlement]:
        query = (
            self.db.query(Settlement)
            .filter(Settlement.carrier_id == carrier_id)
            .with_for_update()
            .populate_existing()
        )

        if not settlement_ids:
            sign = (
                Settlement.net_receivable > 0
                if direction == "from_carrier"
                else Settlement.net_receivable < 0
            )
            return (
                query.filter(Settlement.status == "pending_payment")
                .filter(sign)
                .order_by(Settlement.settlement_date, Settlement.code)
                .all()
            )

        found = {s.id: s for s in query.filter(Settlement.id.in_(settlement_ids)).all()}
        targets = []
        for sid in settlement_ids:
            settlement = found.get(sid)
            if settlement is None:
                raise NotFound("Settlement", sid)
            if settlement.status in CLOSED_SETTLEMENT_STATUSES:
                raise Conflict(
                    f"Settlement {settlement.code} is already {settlement.status}"
                )
            if direction_for(settlement.net_receivable) != direction:
                raise ValidationFailed(
                    {
                        "direction": (
                            f"Settlement {settlement.code} needs a "
                            f"{direction_for(settlement.net_receivable)} payment"
                        )
                    }
                )
            targets.append(settlement)
        return targets

    def _extra_movements(
        self, carrier_id: uuid.UUID, movement_ids: list[uuid.UUID]
    ) -> list[CarrierMovement]:
        if not movement_ids:
            return []
        open_ids = {
            m.id: m
            for m in self.ledger.unsettled(carrier_id)
            if m.id in set(movement_ids)
        }
        for mid in movement_ids:
            if mid in open_ids:
                continue
            movement = self.db.get(CarrierMovement, mid)
            if movement is None or movement.carrier_id != carrier_id:
                raise NotFound("Movement", mid)
            raise Conflict(f"Movement {mid} is already settled")
        return [open_ids[mid] for mid in movement_ids]

    def _post_payment_movement(
        self, payment: CarrierPayment, created_by: Optional[str]
    ) -> CarrierMovement:
        movement_type, signed = (
            (PAYMENT_MOVEMENT_TYPES[0], -payment.amount)
            if payment.direction == "from_carrier"
            else (PAYMENT_MOVEMENT_TYPES[1], payment.amount)
        )
        label = "Payment received" if payment.direction == "from_carrier" else "Payment sent"
        return self.ledger.append(
            payment.carrier_id,
            movement_type,
            signed,
            f"{label} - {payment.code} ({payment.method})",
            settlement_id=payment.settlement_id,
            payment_id=payment.id,
            created_by=created_by,
        )

    def _apply(self, payment: CarrierPayment, targets: list[Settlement]) -> None:
        remaining = payment.amount
        now = datetime.utcnow()
        for settlement in targets:
            if remaining <= 0:
                break
            applied = min(remaining, settlement.balance_due)
            settlement.amount_paid = to_money(settlement.amount_paid + applied)
            settlement.balance_due = to_money(settlement.balance_due - applied)
            remaining -= applied

            if settlement.balance_due > 0:
                logger.info(
                    "Partial payment: settlement=%s applied=%s balance_due=%s",
                    settlement.code,
                    applied,
                    settlement.balance_due,
                )
                continue

            settlement.status = "paid"
            settlement.paid_at = now
            self.ledger.allocate(
                payment.id, self.ledger.unsettled_for_settlement(settlement.id)
            )
            session = self.db.get(DispatchSession, settlement.dispatch_session_id)
            if session is not None and session.status == "reconciled":
                session.status = "settled"
                session.settled_at = now
            logger.info("Settlement paid: code=%s", settlement.code)

        if remaining > 0:
            logger.warning(
                "Payment %s exceeds open balances by %s", payment.code, remaining
            )
        self.db.flush()
