"""Tests for code sequences and the settlement factory."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from cod_settlements.core.exceptions import Conflict
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.sequences import SequenceAllocator, format_code
from cod_settlements.services.settlements.factory import SettlementFactory

BUSINESS_DATE = date(2026, 10, 17)

TOTALS = {
    "total_orders": 1,
    "total_delivered": 1,
    "total_not_delivered": 0,
    "total_cod_expected": Decimal("100000.00"),
    "total_cod_collected": Decimal("100000.00"),
    "total_carrier_fees": Decimal("25000.00"),
    "failed_attempt_fee": Decimal("0.00"),
    "net_receivable": Decimal("75000.00"),
    "discrepancy": Decimal("0.00"),
    "has_discrepancy": False,
}


class TestSequences:
    def test_format(self):
        assert format_code("LIQ", BUSINESS_DATE, 3) == "LIQ-17102026-003"
        assert format_code("PAG", date(2026, 1, 5), 1234) == "PAG-05012026-1234"

    def test_counters_are_per_prefix_and_date(self, db_session):
        allocator = SequenceAllocator(db_session)
        codes = [
            allocator.next_code("LIQ", BUSINESS_DATE),
            allocator.next_code("LIQ", BUSINESS_DATE),
            allocator.next_code("PAG", BUSINESS_DATE),
            allocator.next_code("LIQ", date(2026, 10, 18)),
        ]
        assert codes == [
            "LIQ-17102026-001",
            "LIQ-17102026-002",
            "PAG-17102026-001",
            "LIQ-18102026-001",
        ]

    def test_rolled_back_allocation_is_reissued(self, db_session):
        allocator = SequenceAllocator(db_session)
        allocator.next_value("X")
        db_session.commit()
        allocator.next_value("X")
        db_session.rollback()
        assert allocator.next_value("X") == 2


class TestSettlementFactory:
    def test_balance_due_follows_status(
        self, db_session, config, make_carrier, make_orders, dispatched_session
    ):
        carrier = make_carrier()
        factory = SettlementFactory(db_session, config)

        pending = factory.create(
            dispatched_session(carrier, make_orders(1)), BUSINESS_DATE, TOTALS, "pending_payment"
        )
        settled = factory.create(
            dispatched_session(carrier, make_orders(1)), BUSINESS_DATE, TOTALS, "settled"
        )

        assert pending.code == "LIQ-17102026-001"
        assert pending.balance_due == Decimal("75000.00")
        assert settled.code == "LIQ-17102026-002"
        assert settled.balance_due == Decimal("0.00")

    def test_second_settlement_for_session_conflicts(
        self, db_session, config, make_carrier, make_orders, dispatched_session
    ):
        session = dispatched_session(make_carrier(), make_orders(1))
        factory = SettlementFactory(db_session, config)
        factory.create(session, BUSINESS_DATE, TOTALS, "pending_payment")

        with pytest.raises(Conflict):
            factory.create(session, BUSINESS_DATE, TOTALS, "pending_payment")
        assert db_session.query(Settlement).count() == 1
