"""Tests for the reconciliation processor against a real (SQLite) database."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from cod_settlements.core.exceptions import Conflict, NotFound, Transient, ValidationFailed
from cod_settlements.models.dispatch import DispatchSession
from cod_settlements.models.ledger import CarrierMovement
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.ledger.ledger import CarrierLedger
from cod_settlements.services.reconciliation.drafts import DraftStore
from cod_settlements.services.reconciliation.processor import (
    OrderOutcome,
    ReconciliationProcessor,
)

DISPATCH_DATE = date(2026, 10, 1)


@pytest.fixture
def carrier(make_carrier, make_zone):
    carrier = make_carrier()
    make_zone(carrier, "Asuncion", 25_000)
    return carrier


def _outcomes(orders, failed=0, reason="Cliente ausente"):
    """All delivered except the last ``failed`` orders."""
    cut = len(orders) - failed
    return [OrderOutcome(order_id=o.id, delivered=True) for o in orders[:cut]] + [
        OrderOutcome(order_id=o.id, delivered=False, failure_reason=reason)
        for o in orders[cut:]
    ]


def _counts(db_session):
    return (
        db_session.query(Settlement).count(),
        db_session.query(CarrierMovement).count(),
    )


# ── Scenarios ────────────────────────────────────────────────────────


class TestReconcile:
    def test_all_delivered(self, db_session, config, carrier, make_orders, dispatched_session):
        orders = make_orders(10)
        session = dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("1000000")
        )

        assert settlement.code.startswith("LIQ-01102026-")
        assert settlement.total_cod_expected == Decimal("1000000.00")
        assert settlement.total_carrier_fees == Decimal("250000.00")
        assert settlement.net_receivable == Decimal("750000.00")
        assert settlement.discrepancy == Decimal("0.00")
        assert settlement.has_discrepancy is False
        assert settlement.status == "pending_payment"
        assert settlement.balance_due == Decimal("750000.00")

        db_session.refresh(session)
        assert session.status == "reconciled"
        assert session.delivered_count == 10
        assert session.reconciled_at is not None

    def test_failed_attempts_and_discrepancy(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(10)
        dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id,
            DISPATCH_DATE,
            _outcomes(orders, failed=2),
            Decimal("750000"),
            discrepancy_notes="Faltan 50.000",
        )

        assert settlement.total_cod_expected == Decimal("800000.00")
        assert settlement.discrepancy == Decimal("-50000.00")
        assert settlement.has_discrepancy is True
        assert settlement.discrepancy_notes == "Faltan 50.000"
        assert settlement.total_carrier_fees == Decimal("200000.00")
        assert settlement.failed_attempt_fee == Decimal("25000.00")
        assert settlement.net_receivable == Decimal("525000.00")
        assert settlement.total_not_delivered == 2

    def test_movements_reference_settlement(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(10)
        dispatched_session(carrier, orders)
        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders, failed=2), Decimal("750000")
        )

        movements = {
            m.movement_type: m.amount
            for m in db_session.query(CarrierMovement).filter_by(settlement_id=settlement.id)
        }
        assert movements == {
            "cod_collected": Decimal("750000.00"),
            "delivery_fee": Decimal("-200000.00"),
            "failed_fee": Decimal("-25000.00"),
        }

    def test_ledger_moves_by_net_receivable(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        ledger = CarrierLedger(db_session)
        ledger.create_adjustment(carrier.id, Decimal("1234.56"), "debit", "Opening balance")
        before = ledger.balance(carrier.id)

        orders = make_orders(4)
        dispatched_session(carrier, orders)
        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders, failed=1), Decimal("290000")
        )

        assert ledger.balance(carrier.id) - before == settlement.net_receivable

    def test_zero_failed_fee_percent(
        self, db_session, config, make_carrier, make_zone, make_orders, dispatched_session
    ):
        carrier = make_carrier(failed_attempt_fee_percent=Decimal("0"))
        make_zone(carrier, "Asuncion", 25_000)
        orders = make_orders(3)
        dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders, failed=3), Decimal("0")
        )

        assert settlement.failed_attempt_fee == Decimal("0.00")
        assert (
            db_session.query(CarrierMovement).filter_by(movement_type="failed_fee").count()
            == 0
        )

    def test_carrier_failed_fee_percent_is_applied(
        self, db_session, config, make_carrier, make_zone, make_orders, dispatched_session
    ):
        carrier = make_carrier(failed_attempt_fee_percent=Decimal("40"))
        make_zone(carrier, "Asuncion", 25_000)
        orders = make_orders(3)
        dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders, failed=2), Decimal("100000")
        )

        assert settlement.failed_attempt_fee == Decimal("20000.00")

    def test_carrier_not_charging_failed_attempts(
        self, db_session, config, make_carrier, make_zone, make_orders, dispatched_session
    ):
        carrier = make_carrier(charges_failed_attempts=False)
        make_zone(carrier, "Asuncion", 25_000)
        orders = make_orders(2)
        dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders, failed=1), Decimal("100000")
        )
        assert settlement.failed_attempt_fee == Decimal("0.00")
        assert settlement.net_receivable == Decimal("75000.00")

    def test_small_net_settles_immediately(
        self, db_session, config, make_carrier, make_zone, make_orders, dispatched_session
    ):
        carrier = make_carrier()
        make_zone(carrier, "Asuncion", "100000")
        orders = make_orders(1)
        session = dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("100000.50")
        )

        assert settlement.net_receivable == Decimal("0.50")
        assert settlement.status == "settled"
        assert settlement.balance_due == Decimal("0.00")
        db_session.refresh(session)
        assert session.status == "settled"

    def test_store_owes_carrier(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(2, prepaid_method="transferencia")
        dispatched_session(carrier, orders)

        settlement = ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("0")
        )

        assert settlement.total_cod_expected == Decimal("0.00")
        assert settlement.net_receivable == Decimal("-50000.00")
        assert settlement.balance_due == Decimal("50000.00")
        assert settlement.status == "pending_payment"

    def test_session_orders_updated(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(2)
        session = dispatched_session(carrier, orders)
        outcomes = [
            OrderOutcome(order_id=orders[0].id, delivered=True),
            OrderOutcome(
                order_id=orders[1].id,
                delivered=False,
                failure_reason="Rechazado en puerta",
                delivery_result="rejected",
            ),
        ]
        ReconciliationProcessor(db_session, config).reconcile(
            carrier.id, DISPATCH_DATE, outcomes, Decimal("100000")
        )

        db_session.refresh(session)
        results = {item.order_id: item for item in session.orders}
        assert results[orders[0].id].delivery_result == "delivered"
        assert results[orders[0].id].collected_amount == Decimal("100000.00")
        assert results[orders[1].id].delivery_result == "rejected"
        assert results[orders[1].id].failure_reason == "Rechazado en puerta"
        assert session.rejected_count == 1

    def test_draft_discarded_after_submit(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(1)
        session = dispatched_session(carrier, orders)
        drafts = DraftStore(ttl_seconds=60)
        drafts.save(session.id, {"total_amount_collected": "1"})

        ReconciliationProcessor(db_session, config, drafts=drafts).reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("100000")
        )
        assert drafts.get(session.id) is None


# ── Validation and conflicts ─────────────────────────────────────────


class TestRejections:
    def test_missing_failure_reason_writes_nothing(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(3)
        session = dispatched_session(carrier, orders)
        outcomes = _outcomes(orders, failed=1, reason="  ")

        with pytest.raises(ValidationFailed) as excinfo:
            ReconciliationProcessor(db_session, config).reconcile(
                carrier.id, DISPATCH_DATE, outcomes, Decimal("200000")
            )

        assert "orders[2].failure_reason" in excinfo.value.errors
        assert _counts(db_session) == (0, 0)
        db_session.refresh(session)
        assert session.status == "dispatched"

    @pytest.mark.parametrize("collected", [None, Decimal("-1")])
    def test_collected_amount_required(
        self, db_session, config, carrier, make_orders, dispatched_session, collected
    ):
        orders = make_orders(1)
        dispatched_session(carrier, orders)
        with pytest.raises(ValidationFailed) as excinfo:
            ReconciliationProcessor(db_session, config).reconcile(
                carrier.id, DISPATCH_DATE, _outcomes(orders), collected
            )
        assert "total_amount_collected" in excinfo.value.errors

    def test_outcomes_must_cover_session(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(3)
        dispatched_session(carrier, orders)
        with pytest.raises(ValidationFailed) as excinfo:
            ReconciliationProcessor(db_session, config).reconcile(
                carrier.id, DISPATCH_DATE, _outcomes(orders[:2]), Decimal("200000")
            )
        assert "orders_missing" in excinfo.value.errors
        assert _counts(db_session) == (0, 0)

    def test_second_reconcile_conflicts(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(2)
        session = dispatched_session(carrier, orders)
        processor = ReconciliationProcessor(db_session, config)
        processor.reconcile(carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("200000"))
        counts = _counts(db_session)

        with pytest.raises(Conflict):
            processor.reconcile(
                carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("200000")
            )
        with pytest.raises(Conflict):
            processor.reconcile(
                carrier.id,
                DISPATCH_DATE,
                _outcomes(orders),
                Decimal("200000"),
                session_id=session.id,
            )
        assert _counts(db_session) == counts

    def test_lost_status_swap_conflicts(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(1)
        session = dispatched_session(carrier, orders)
        processor = ReconciliationProcessor(db_session, config)

        # Another writer reconciled the session after it was read
        real_find = processor._find_session

        def find_then_race(*args, **kwargs):
            found = real_find(*args, **kwargs)
            db_session.query(DispatchSession).filter_by(id=session.id).update(
                {"status": "reconciled"}
            )
            db_session.commit()
            return found

        with mock.patch.object(processor, "_find_session", side_effect=find_then_race):
            with pytest.raises(Conflict):
                processor.reconcile(
                    carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("100000")
                )
        assert _counts(db_session) == (0, 0)

    def test_storage_failure_rolls_back_everything(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(2)
        session = dispatched_session(carrier, orders)
        processor = ReconciliationProcessor(db_session, config)

        boom = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with mock.patch.object(processor.ledger, "append", side_effect=boom):
            with pytest.raises(Transient):
                processor.reconcile(
                    carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("200000")
                )

        assert _counts(db_session) == (0, 0)
        db_session.refresh(session)
        assert session.status == "dispatched"

        # A retry after the rollback behaves like a fresh attempt
        settlement = processor.reconcile(
            carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("200000")
        )
        assert settlement.net_receivable == Decimal("150000.00")

    def test_unknown_carrier(self, db_session, config):
        with pytest.raises(NotFound):
            ReconciliationProcessor(db_session, config).reconcile(
                uuid.uuid4(),
                DISPATCH_DATE,
                [OrderOutcome(order_id=uuid.uuid4(), delivered=True)],
                Decimal("0"),
            )

    def test_no_session_on_date(self, db_session, config, carrier):
        with pytest.raises(NotFound):
            ReconciliationProcessor(db_session, config).reconcile(
                carrier.id,
                DISPATCH_DATE,
                [OrderOutcome(order_id=uuid.uuid4(), delivered=True)],
                Decimal("0"),
            )


# ── Queries ──────────────────────────────────────────────────────────


class TestQueries:
    def test_list_pending_groups_by_carrier_and_date(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        cod = make_orders(2)
        prepaid = make_orders(1, prepaid_method="tarjeta")
        dispatched_session(carrier, cod + prepaid)

        pending = ReconciliationProcessor(db_session, config).list_pending()

        assert len(pending) == 1
        group = pending[0]
        assert group["carrier_name"] == "Rapido Express"
        assert group["dispatch_date"] == DISPATCH_DATE
        assert group["total_orders"] == 3
        assert group["total_cod"] == Decimal("200000.00")
        assert group["total_prepaid"] == 1

    def test_list_orders_shows_snapshotted_fee(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(2)
        dispatched_session(carrier, orders)

        rows = ReconciliationProcessor(db_session, config).list_orders(
            DISPATCH_DATE, carrier.id
        )

        assert len(rows) == 2
        assert {r["shipping_cost"] for r in rows} == {Decimal("25000.00")}
        assert {r["fee_source"] for r in rows} == {"zone"}

    def test_reconciled_sessions_leave_pending_list(
        self, db_session, config, carrier, make_orders, dispatched_session
    ):
        orders = make_orders(1)
        dispatched_session(carrier, orders)
        processor = ReconciliationProcessor(db_session, config)
        processor.reconcile(carrier.id, DISPATCH_DATE, _outcomes(orders), Decimal("100000"))

        assert processor.list_pending() == []
        assert processor.list_orders(DISPATCH_DATE, carrier.id) == []
