"""Pure reconciliation arithmetic.

Everything here works on plain values: ``ReconciledLine`` describes one
order as the carrier reported it, and ``summarize`` turns a batch of lines
plus the cash handed over into the figures a settlement records.  No
database session is needed, so the money rules are unit-tested directly.

All amounts are ``Decimal`` rounded half-up to cents.  Sign convention:
``net_receivable > 0`` means the carrier owes the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from cod_settlements.services.normalizer import percent_of, to_money


@dataclass(frozen=True)
class ReconciledLine:
    """One order's outcome as used by the arithmetic."""

    delivered: bool
    is_cod: bool
    cod_amount: Decimal
    shipping_cost: Decimal
    override_prepaid: bool = False
    delivery_result: Optional[str] = None

    @property
    def counts_as_cod(self) -> bool:
        """Cash the carrier should have collected for this order."""
        return self.delivered and self.is_cod and not self.override_prepaid

    @property
    def result(self) -> str:
        if self.delivered:
            return "delivered"
        return self.delivery_result or "failed"


@dataclass(frozen=True)
class ReconciliationSummary:
    total_orders: int
    delivered_count: int
    failed_count: int
    rejected_count: int
    cod_expected: Decimal
    collected: Decimal
    delivered_fees: Decimal
    failed_fees: Decimal
    discrepancy: Decimal
    has_discrepancy: bool
    net_receivable: Decimal
    status: str

    @property
    def not_delivered_count(self) -> int:
        return self.total_orders - self.delivered_count

    @property
    def carrier_fees(self) -> Decimal:
        return to_money(self.delivered_fees + self.failed_fees)

    def settlement_totals(self) -> dict[str, Any]:
        """Totals keyed by ``Settlement`` column name."""
        return {
            "total_orders": self.total_orders,
            "total_delivered": self.delivered_count,
            "total_not_delivered": self.not_delivered_count,
            "total_cod_expected": self.cod_expected,
            "total_cod_collected": self.collected,
            "total_carrier_fees": self.delivered_fees,
            "failed_attempt_fee": self.failed_fees,
            "net_receivable": self.net_receivable,
            "discrepancy": self.discrepancy,
            "has_discrepancy": self.has_discrepancy,
        }


def failed_attempt_fees(
    lines: Iterable[ReconciledLine],
    charges_failed_attempts: bool,
    fee_percent: Decimal,
) -> Decimal:
    """Percentage of the normal fee charged for every undelivered order.

    ``failed``, ``rejected`` and ``rescheduled`` are all charged alike.
    """
    if not charges_failed_attempts:
        return Decimal("0.00")
    base = sum((line.shipping_cost for line in lines if not line.delivered), Decimal("0"))
    return percent_of(base, fee_percent)


def settlement_status(net_receivable: Decimal, settled_threshold: Decimal) -> str:
    """``settled`` when the balance is too small to chase, else ``pending_payment``."""
    if abs(net_receivable) < settled_threshold:
        return "settled"
    return "pending_payment"


def summarize(
    lines: list[ReconciledLine],
    collected: Decimal,
    charges_failed_attempts: bool,
    fee_percent: Decimal,
    discrepancy_tolerance: Decimal,
    settled_threshold: Decimal,
) -> ReconciliationSummary:
    """Compute the settlement figures for one dispatch session.

    Args:
        lines: Every order in the session.
        collected: Cash the carrier handed over for the whole batch.
        charges_failed_attempts: Carrier setting; ``False`` zeroes failed fees.
        fee_percent: Share of the normal fee charged per failed attempt.
        discrepancy_tolerance: Largest ``|collected - expected|`` not flagged.
        settled_threshold: ``|net|`` below this settles immediately.
    """
    collected = to_money(collected)
    cod_expected = to_money(
        sum((line.cod_amount for line in lines if line.counts_as_cod), Decimal("0"))
    )
    delivered_fees = to_money(
        sum((line.shipping_cost for line in lines if line.delivered), Decimal("0"))
    )
    failed_fees = failed_attempt_fees(lines, charges_failed_attempts, fee_percent)

    discrepancy = to_money(collected - cod_expected)
    net_receivable = to_money(collected - delivered_fees - failed_fees)

    results = [line.result for line in lines]
    return ReconciliationSummary(
        total_orders=len(lines),
        delivered_count=results.count("delivered"),
        failed_count=results.count("failed") + results.count("rescheduled"),
        rejected_count=results.count("rejected"),
        cod_expected=cod_expected,
        collected=collected,
        delivered_fees=delivered_fees,
        failed_fees=failed_fees,
        discrepancy=discrepancy,
        has_discrepancy=abs(discrepancy) > discrepancy_tolerance,
        net_receivable=net_receivable,
        status=settlement_status(net_receivable, settled_threshold),
    )
