"""Carrier ledger — append-only signed movements per carrier.

Sign convention, used everywhere in this package:

    amount > 0  ->  the carrier owes the store
    amount < 0  ->  the store owes the carrier

So a carrier's balance is simply the sum of its movements.  Typical
entries per reconciled session:

    cod_collected   +collected cash
    delivery_fee    -fees for delivered orders
    failed_fee      -fees for failed attempts

and per payment:

    payment_in      -amount   (carrier remitted cash to the store)
    payment_out     +amount   (store paid the carrier)

Nothing here updates or deletes a movement.  A movement is "settled" once a
``PaymentAllocation`` row points at it.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from cod_settlements.core.exceptions import NotFound, ValidationFailed
from cod_settlements.core.logging import get_logger
from cod_settlements.models.carrier import Carrier
from cod_settlements.models.ledger import (
    MOVEMENT_TYPES,
    PAYMENT_MOVEMENT_TYPES,
    CarrierMovement,
    PaymentAllocation,
)
from cod_settlements.services.normalizer import to_money

logger = get_logger(__name__)

ADJUSTMENT_KINDS = ("credit", "debit")


class CarrierLedger:
    """Reads and appends carrier movements.

    ``append`` and ``allocate`` only flush: the caller owns the transaction.
    ``create_adjustment`` is a standalone operation and commits.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Writes ───────────────────────────────────────────────────────

    def append(
        self,
        carrier_id: uuid.UUID,
        movement_type: str,
        amount: Decimal,
        description: str,
        *,
        order_id: Optional[uuid.UUID] = None,
        dispatch_session_id: Optional[uuid.UUID] = None,
        settlement_id: Optional[uuid.UUID] = None,
        payment_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> CarrierMovement:
        """Add one movement to the current transaction."""
        if movement_type not in MOVEMENT_TYPES:
            raise ValueError(f"Unknown movement type: {movement_type!r}")
        movement = CarrierMovement(
            id=uuid.uuid4(),
            carrier_id=carrier_id,
            movement_type=movement_type,
            amount=to_money(amount),
            description=description,
            order_id=order_id,
            dispatch_session_id=dispatch_session_id,
            settlement_id=settlement_id,
            payment_id=payment_id,
            created_by=created_by,
            created_at=datetime.utcnow(),
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def allocate(
        self, payment_id: uuid.UUID, movements: Iterable[CarrierMovement]
    ) -> list[PaymentAllocation]:
        """Mark ``movements`` as closed out by ``payment_id``."""
        allocations = [
            PaymentAllocation(id=uuid.uuid4(), payment_id=payment_id, movement_id=m.id)
            for m in movements
        ]
        self.db.add_all(allocations)
        self.db.flush()
        return allocations

    def create_adjustment(
        self,
        carrier_id: uuid.UUID,
        amount: Decimal,
        kind: str,
        description: str,
        created_by: Optional[str] = None,
    ) -> CarrierMovement:
        """Post a manual correction.

        A ``credit`` reduces what the carrier owes (negative amount), a
        ``debit`` increases it (positive amount).  The description is the
        audit trail and is mandatory.
        """
        errors: dict[str, str] = {}
        if kind not in ADJUSTMENT_KINDS:
            errors["type"] = "Must be 'credit' or 'debit'"
        if not description or not description.strip():
            errors["description"] = "A description is required for adjustments"
        try:
            value = abs(to_money(amount))
        except ValueError:
            errors["amount"] = "Must be a number"
        else:
            if value == 0:
                errors["amount"] = "Must not be zero"
        if errors:
            raise ValidationFailed(errors)

        self._require_carrier(carrier_id)
        signed = -value if kind == "credit" else value
        movement = self.append(
            carrier_id,
            "adjustment",
            signed,
            description.strip(),
            created_by=created_by,
        )
        self.db.commit()
        logger.info(
            "Adjustment posted: carrier=%s kind=%s amount=%s", carrier_id, kind, signed
        )
        return movement

    # ── Reads ────────────────────────────────────────────────────────

    def balance(self, carrier_id: uuid.UUID) -> Decimal:
        """Sum of all movement amounts; positive means the carrier owes the store."""
        total = (
            self.db.query(func.coalesce(func.sum(CarrierMovement.amount), 0))
            .filter(CarrierMovement.carrier_id == carrier_id)
            .scalar()
        )
        return to_money(total)

    def unsettled(self, carrier_id: uuid.UUID) -> list[CarrierMovement]:
        """Movements not yet closed out by any payment."""
        return (
            self._unsettled_query()
            .filter(CarrierMovement.carrier_id == carrier_id)
            .order_by(CarrierMovement.created_at)
            .all()
        )

    def unsettled_for_settlement(self, settlement_id: uuid.UUID) -> list[CarrierMovement]:
        return (
            self._unsettled_query()
            .filter(CarrierMovement.settlement_id == settlement_id)
            .order_by(CarrierMovement.created_at)
            .all()
        )

    def movements(
        self,
        carrier_id: uuid.UUID,
        movement_type: Optional[str] = None,
        settlement_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[CarrierMovement], int]:
        """Movement history, newest first, with the unpaginated total."""
        query = self.db.query(CarrierMovement).filter(
            CarrierMovement.carrier_id == carrier_id
        )
        if movement_type is not None:
            query = query.filter(CarrierMovement.movement_type == movement_type)
        if settlement_id is not None:
            query = query.filter(CarrierMovement.settlement_id == settlement_id)
        if date_from is not None:
            query = query.filter(
                CarrierMovement.created_at
                >= datetime(date_from.year, date_from.month, date_from.day)
            )
        if date_to is not None:
            query = query.filter(
                CarrierMovement.created_at
                <= datetime(date_to.year, date_to.month, date_to.day, 23, 59, 59)
            )

        total = query.count()
        items = (
            query.order_by(CarrierMovement.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def balances(self) -> list[dict]:
        """Per-carrier balance breakdown, largest amount owed to the store first."""

        def _sum_of(*types: str):
            return func.coalesce(
                func.sum(
                    case(
                        (CarrierMovement.movement_type.in_(types), CarrierMovement.amount),
                        else_=0,
                    )
                ),
                0,
            )

        rows = (
            self.db.query(
                Carrier.id,
                Carrier.name,
                Carrier.settlement_type,
                Carrier.charges_failed_attempts,
                Carrier.payment_schedule,
                _sum_of("cod_collected"),
                _sum_of("delivery_fee"),
                _sum_of("failed_fee"),
                _sum_of("payment_in"),
                _sum_of("payment_out"),
                _sum_of("adjustment"),
                func.coalesce(func.sum(CarrierMovement.amount), 0),
                func.max(CarrierMovement.created_at),
            )
            .outerjoin(CarrierMovement, CarrierMovement.carrier_id == Carrier.id)
            .group_by(
                Carrier.id,
                Carrier.name,
                Carrier.settlement_type,
                Carrier.charges_failed_attempts,
                Carrier.payment_schedule,
            )
            .all()
        )

        unsettled = dict(
            self._unsettled_query()
            .with_entities(CarrierMovement.carrier_id, func.sum(CarrierMovement.amount))
            .group_by(CarrierMovement.carrier_id)
            .all()
        )
        last_payment = dict(
            self.db.query(CarrierMovement.carrier_id, func.max(CarrierMovement.created_at))
            .filter(CarrierMovement.movement_type.in_(PAYMENT_MOVEMENT_TYPES))
            .group_by(CarrierMovement.carrier_id)
            .all()
        )

        result = []
        for row in rows:
            carrier_id = row[0]
            result.append(
                {
                    "carrier_id": carrier_id,
                    "carrier_name": row[1],
                    "settlement_type": row[2],
                    "charges_failed_attempts": row[3],
                    "payment_schedule": row[4],
                    "total_cod_collected": to_money(row[5]),
                    "total_delivery_fees": abs(to_money(row[6])),
                    "total_failed_fees": abs(to_money(row[7])),
                    "total_payments_received": abs(to_money(row[8])),
                    "total_payments_sent": abs(to_money(row[9])),
                    "total_adjustments": to_money(row[10]),
                    "net_balance": to_money(row[11]),
                    "unsettled_balance": to_money(unsettled.get(carrier_id)),
                    "last_movement_at": row[12],
                    "last_payment_at": last_payment.get(carrier_id),
                }
            )
        result.sort(key=lambda r: r["net_balance"], reverse=True)
        return result

    def summary(self) -> dict:
        """Dashboard totals across all carriers."""
        balances = self.balances()
        owed_by = sum(
            (b["net_balance"] for b in balances if b["net_balance"] > 0), Decimal("0.00")
        )
        owed_to = sum(
            (-b["net_balance"] for b in balances if b["net_balance"] < 0), Decimal("0.00")
        )
        return {
            "total_carriers_with_balance": sum(1 for b in balances if b["net_balance"] != 0),
            "total_owed_by_carriers": to_money(owed_by),
            "total_owed_to_carriers": to_money(owed_to),
            "net_position": to_money(owed_by - owed_to),
        }

    # ── Private helpers ──────────────────────────────────────────────

    def _unsettled_query(self):
        allocated = select(PaymentAllocation.movement_id)
        return (
            self.db.query(CarrierMovement)
            .filter(CarrierMovement.movement_type.notin_(PAYMENT_MOVEMENT_TYPES))
            .filter(CarrierMovement.id.notin_(allocated))
        )

    def _require_carrier(self, carrier_id: uuid.UUID) -> None:
        if self.db.get(Carrier, carrier_id) is None:
            raise NotFound("Carrier", carrier_id)
