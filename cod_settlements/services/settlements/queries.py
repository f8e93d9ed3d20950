"""Read-side queries over settlements."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from cod_settlements.core.exceptions import NotFound
from cod_settlements.models.settlement import Settlement
from cod_settlements.services.normalizer import to_money


class SettlementQueries:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, settlement_id: uuid.UUID) -> Settlement:
        settlement = self.db.get(Settlement, settlement_id)
        if settlement is None:
            raise NotFound("Settlement", settlement_id)
        return settlement

    def list(
        self,
        carrier_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        has_discrepancy: Optional[bool] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Settlement], int]:
        query = self.db.query(Settlement)
        if carrier_id is not None:
            query = query.filter(Settlement.carrier_id == carrier_id)
        if status is not None:
            query = query.filter(Settlement.status == status)
        if has_discrepancy is not None:
            query = query.filter(Settlement.has_discrepancy.is_(has_discrepancy))
        if date_from is not None:
            query = query.filter(Settlement.settlement_date >= date_from)
        if date_to is not None:
            query = query.filter(Settlement.settlement_date <= date_to)

        total = query.count()
        items = (
            query.order_by(Settlement.settlement_date.desc(), Settlement.code.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def summary(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict:
        """Counts per status and the money still outstanding in each direction."""
        query = self.db.query(
            func.count(Settlement.id),
            func.sum(case((Settlement.status == "pending_payment", 1), else_=0)),
            func.sum(case((Settlement.status == "paid", 1), else_=0)),
            func.sum(case((Settlement.status == "settled", 1), else_=0)),
            func.sum(case((Settlement.has_discrepancy.is_(True), 1), else_=0)),
            func.coalesce(func.sum(Settlement.total_cod_collected), 0),
            func.coalesce(func.sum(Settlement.net_receivable), 0),
            func.coalesce(
                func.sum(
                    case(
                        (
                            (Settlement.status == "pending_payment")
                            & (Settlement.net_receivable > 0),
                            Settlement.balance_due,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (
                            (Settlement.status == "pending_payment")
                            & (Settlement.net_receivable < 0),
                            Settlement.balance_due,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
        )
        if date_from is not None:
            query = query.filter(Settlement.settlement_date >= date_from)
        if date_to is not None:
            query = query.filter(Settlement.settlement_date <= date_to)
        row = query.one()

        return {
            "total_settlements": row[0] or 0,
            "pending_payment": row[1] or 0,
            "paid": row[2] or 0,
            "settled": row[3] or 0,
            "with_discrepancy": row[4] or 0,
            "total_cod_collected": to_money(row[5]),
            "total_net_receivable": to_money(row[6]),
            "outstanding_from_carriers": to_money(row[7]),
            "outstanding_to_carriers": to_money(row[8] or Decimal("0")),
        }
