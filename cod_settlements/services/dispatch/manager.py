"""Dispatch session manager — batches orders for a carrier and drives the lifecycle.

    open ──mark_dispatched──> dispatched ──reconcile──> reconciled ──paid──> settled
      │
      └──abandon──> abandoned (terminal)

Reconciliation and payment transitions live in their own services; this
module owns creation, dispatch (fee snapshot) and abandonment.
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
from cod_settlements.models.dispatch import (
    HOLDING_STATUSES,
    DispatchSession,
    SessionOrder,
)
from cod_settlements.models.order import Order
from cod_settlements.services.fees.resolver import FeeQuote, FeeResolver
from cod_settlements.services.normalizer import to_money
from cod_settlements.services.sequences import SequenceAllocator

logger = get_logger(__name__)


class DispatchSessionManager:
    """Creates, dispatches and abandons dispatch sessions."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.fees = FeeResolver(db, config)
        self.sequences = SequenceAllocator(db)

    # ── Public API ───────────────────────────────────────────────────

    def create(
        self,
        carrier_id: uuid.UUID,
        dispatch_date: date,
        order_ids: list[uuid.UUID],
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DispatchSession:
        """Open a new session holding ``order_ids``.

        Raises:
            ValidationFailed: Empty or repeated order ids, inactive carrier.
            NotFound: Unknown carrier or order.
            Conflict: An order is already held by an open/dispatched session,
                or was already delivered in an earlier session.
        """
        if not order_ids:
            raise ValidationFailed({"order_ids": "At least one order is required"})
        if len(set(order_ids)) != len(order_ids):
            raise ValidationFailed({"order_ids": "Order ids must not repeat"})

        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier", carrier_id)
        if not carrier.is_active:
            raise ValidationFailed({"carrier_id": "Carrier is inactive"})

        try:
            # Lock the order rows so two sessions cannot claim the same order
            orders = (
                self.db.query(Order)
                .filter(Order.id.in_(order_ids))
                .with_for_update()
                .all()
            )
            by_id = {o.id: o for o in orders}
            missing = [oid for oid in order_ids if oid not in by_id]
            if missing:
                raise NotFound("Order", missing[0])

            self._ensure_orders_free(order_ids)

            session = DispatchSession(
                id=uuid.uuid4(),
                session_code=self.sequences.next_code(
                    self.config.dispatch_code_prefix, dispatch_date
                ),
                carrier_id=carrier_id,
                dispatch_date=dispatch_date,
                status="open",
                total_orders=len(order_ids),
                pending_count=len(order_ids),
                notes=notes,
                created_by=created_by,
            )
            self.db.add(session)

            for oid in order_ids:
                order = by_id[oid]
                self.db.add(
                    SessionOrder(
                        id=uuid.uuid4(),
                        dispatch_session_id=session.id,
                        order_id=order.id,
                        order_number=order.order_number,
                        delivery_result="pending",
                        is_cod=order.is_cod,
                        cod_amount=to_money(order.total_price),
                        destination_city=order.shipping_city,
                    )
                )

            self.db.commit()
        except SettlementError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Session creation failed: carrier=%s date=%s", carrier_id, dispatch_date
            )
            raise Transient(f"Could not persist dispatch session: {exc}") from exc

        logger.info(
            "Dispatch session created: code=%s carrier=%s date=%s orders=%d",
            session.session_code,
            carrier_id,
            dispatch_date,
            len(order_ids),
        )
        return session

    def mark_dispatched(self, session_id: uuid.UUID) -> DispatchSession:
        """Hand the session to the carrier, snapshotting a fee per order.

        Raises:
            NotFound: Unknown session.
            Conflict: Session is not ``open``.
        """
        try:
            session = self._get_locked(session_id)
            if session.status != "open":
                raise Conflict(
                    f"Session {session.session_code} is {session.status}; "
                    "only open sessions can be dispatched"
                )

            carrier = self.db.get(Carrier, session.carrier_id)
            if carrier is None:
                raise NotFound("Carrier", session.carrier_id)

            total_shipping = Decimal("0.00")
            total_cod = Decimal("0.00")
            for item in session.orders:
                order = self.db.get(Order, item.order_id)
                quote = self._quote(carrier, order)
                item.shipping_cost = quote.rate
                item.fee_source = quote.fee_source
                item.zone_name = quote.zone_name
                total_shipping += quote.rate
                if item.is_cod:
                    total_cod += item.cod_amount

            session.status = "dispatched"
            session.dispatched_at = datetime.utcnow()
            session.total_shipping_cost = to_money(total_shipping)
            session.total_cod_expected = to_money(total_cod)
            session.pending_count = len(session.orders)
            self.db.commit()
        except SettlementError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Dispatch failed: session=%s", session_id)
            raise Transient(f"Could not persist dispatch: {exc}") from exc

        logger.info(
            "Session dispatched: code=%s orders=%d shipping=%s cod=%s",
            session.session_code,
            len(session.orders),
            session.total_shipping_cost,
            session.total_cod_expected,
        )
        return session

    def abandon(self, session_id: uuid.UUID, reason: str) -> DispatchSession:
        """Drop an open session and release its orders.

        No movements exist for an open session, so nothing reaches the ledger.

        Raises:
            ValidationFailed: Missing reason.
            NotFound: Unknown session.
            Conflict: Session is not ``open``.
        """
        if not reason or not reason.strip():
            raise ValidationFailed({"reason": "A reason is required to abandon a session"})

        try:
            session = self._get_locked(session_id)
            if session.status != "open":
                raise Conflict(
                    f"Session {session.session_code} is {session.status}; "
                    "only open sessions can be abandoned"
                )
            session.status = "abandoned"
            session.abandon_reason = reason.strip()
            session.abandoned_at = datetime.utcnow()
            self.db.commit()
        except SettlementError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Abandon failed: session=%s", session_id)
            raise Transient(f"Could not persist abandonment: {exc}") from exc

        logger.info("Session abandoned: code=%s reason=%r", session.session_code, reason)
        return session

    def get(self, session_id: uuid.UUID) -> DispatchSession:
        session = self.db.get(DispatchSession, session_id)
        if session is None:
            raise NotFound("Dispatch session", session_id)
        return session

    def list_sessions(
        self,
        carrier_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[DispatchSession]:
        query = self.db.query(DispatchSession)
        if carrier_id is not None:
            query = query.filter(DispatchSession.carrier_id == carrier_id)
        if status is not None:
            query = query.filter(DispatchSession.status == status)
        if date_from is not None:
            query = query.filter(DispatchSession.dispatch_date >= date_from)
        if date_to is not None:
            query = query.filter(DispatchSession.dispatch_date <= date_to)
        return (
            query.order_by(
                DispatchSession.dispatch_date.desc(), DispatchSession.session_code.desc()
            )
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    # ── Private helpers ──────────────────────────────────────────────

    def _get_locked(self, session_id: uuid.UUID) -> DispatchSession:
        session = (
            self.db.query(DispatchSession)
            .filter(DispatchSession.id == session_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if session is None:
            raise NotFound("Dispatch session", session_id)
        return session

    def _quote(self, carrier: Carrier, order: Optional[Order]) -> FeeQuote:
        """Fee for one order: its city first, then its delivery zone."""
        city = order.shipping_city if order else None
        quote = self.fees.resolve_for(carrier, city)
        if quote.fee_source == "default" and order is not None and order.delivery_zone:
            by_zone = self.fees.resolve_for(carrier, order.delivery_zone)
            if by_zone.fee_source != "default":
                return by_zone
        return quote

    def _ensure_orders_free(self, order_ids: list[uuid.UUID]) -> None:
        rows = (
            self.db.query(SessionOrder.order_number, DispatchSession.session_code)
            .join(DispatchSession, SessionOrder.dispatch_session_id == DispatchSession.id)
            .filter(SessionOrder.order_id.in_(order_ids))
            .filter(DispatchSession.status.in_(HOLDING_STATUSES))
            .all()
        )
        if rows:
            held = ", ".join(f"{number} ({code})" for number, code in rows)
            raise Conflict(f"Orders already in an active dispatch session: {held}")

        delivered = (
            self.db.query(SessionOrder.order_number)
            .join(DispatchSession, SessionOrder.dispatch_session_id == DispatchSession.id)
            .filter(SessionOrder.order_id.in_(order_ids))
            .filter(SessionOrder.delivery_result == "delivered")
            .filter(DispatchSession.status != "abandoned")
            .all()
        )
        if delivered:
            numbers = ", ".join(row[0] for row in delivered)
            raise Conflict(f"Orders already delivered: {numbers}")
