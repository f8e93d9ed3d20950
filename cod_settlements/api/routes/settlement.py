"""Settlement endpoints: listing, detail, summary and payouts."""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cod_settlements.api.deps import get_caller, get_settings
from cod_settlements.core.config import Settings
from cod_settlements.core.database import get_db
from cod_settlements.core.logging import get_logger
from cod_settlements.models.settlement import Settlement
from cod_settlements.schemas.settlement import (
    PayOutRequest,
    SettlementListResponse,
    SettlementResponse,
    SettlementSummaryResponse,
)
from cod_settlements.services.settlements.payments import PaymentService
from cod_settlements.services.settlements.queries import SettlementQueries

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=SettlementListResponse)
def list_settlements(
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    status: Optional[str] = Query(
        None, description="Filter by status: settled, pending_payment, paid"
    ),
    has_discrepancy: Optional[bool] = Query(None, description="Only flagged ones"),
    date_from: Optional[date] = Query(None, description="settlement_date >= date"),
    date_to: Optional[date] = Query(None, description="settlement_date <= date"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> dict:
    items, total = SettlementQueries(db).list(
        carrier_id=carrier_id,
        status=status,
        has_discrepancy=has_discrepancy,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    logger.info(
        "Settlements query: total=%d page=%d limit=%d returned=%d",
        total,
        page,
        limit,
        len(items),
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/summary", response_model=SettlementSummaryResponse)
def settlement_summary(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> dict:
    """Counts per status and outstanding balances in each direction."""
    return SettlementQueries(db).summary(date_from=date_from, date_to=date_to)


@router.get("/{settlement_id}", response_model=SettlementResponse)
def get_settlement(
    settlement_id: UUID,
    db: Session = Depends(get_db),
) -> Settlement:
    return SettlementQueries(db).get(settlement_id)


@router.post("/{settlement_id}/pay", response_model=SettlementResponse)
def pay_out(
    settlement_id: UUID,
    body: PayOutRequest,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    caller: Optional[str] = Depends(get_caller),
) -> Settlement:
    """Register a payment against one settlement.

    The direction follows the sign of ``net_receivable``.  A partial amount
    leaves the settlement ``pending_payment`` with a smaller balance due.
    """
    return PaymentService(db, config).pay_out(
        settlement_id,
        amount=body.amount,
        method=body.method,
        reference=body.reference,
        notes=body.notes,
        created_by=caller,
    )
