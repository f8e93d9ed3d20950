"""Carrier ledger endpoints: balances, movement history, adjustments and payments."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cod_settlements.api.deps import get_caller, get_settings
from cod_settlements.core.config import Settings
from cod_settlements.core.database import get_db
from cod_settlements.core.exceptions import NotFound
from cod_settlements.core.logging import get_logger
from cod_settlements.models.carrier import Carrier
from cod_settlements.models.ledger import CarrierMovement
from cod_settlements.models.payment import CarrierPayment
from cod_settlements.schemas.ledger import (
    AdjustmentCreate,
    CarrierBalanceResponse,
    LedgerSummaryResponse,
    MovementListResponse,
    MovementResponse,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
    UnsettledResponse,
)
from cod_settlements.services.ledger.ledger import CarrierLedger
from cod_settlements.services.normalizer import to_money
from cod_settlements.services.settlements.payments import PaymentService

logger = get_logger(__name__)

router = APIRouter()


def _require_carrier(db: Session, carrier_id: UUID) -> None:
    if db.get(Carrier, carrier_id) is None:
        raise NotFound("Carrier", carrier_id)


@router.get("/balances", response_model=list[CarrierBalanceResponse])
def get_balances(db: Session = Depends(get_db)) -> list[dict]:
    """Balance per carrier; positive means the carrier owes the store."""
    return CarrierLedger(db).balances()


@router.get("/summary", response_model=LedgerSummaryResponse)
def get_summary(db: Session = Depends(get_db)) -> dict:
    return CarrierLedger(db).summary()


@router.get("/carriers/{carrier_id}/movements", response_model=MovementListResponse)
def get_movements(
    carrier_id: UUID,
    movement_type: Optional[str] = Query(None, description="Filter by movement type"),
    settlement_id: Optional[UUID] = Query(None, description="Filter by settlement"),
    date_from: Optional[date] = Query(None, description="created_at >= date"),
    date_to: Optional[date] = Query(None, description="created_at <= date"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> dict:
    _require_carrier(db, carrier_id)
    items, total = CarrierLedger(db).movements(
        carrier_id,
        movement_type=movement_type,
        settlement_id=settlement_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    logger.info(
        "Movements query: carrier=%s total=%d page=%d returned=%d",
        carrier_id,
        total,
        page,
        len(items),
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/carriers/{carrier_id}/unsettled", response_model=UnsettledResponse)
def get_unsettled(carrier_id: UUID, db: Session = Depends(get_db)) -> dict:
    """Movements no payment has closed out yet."""
    _require_carrier(db, carrier_id)
    items = CarrierLedger(db).unsettled(carrier_id)
    total = to_money(sum((m.amount for m in items), Decimal("0")))
    return {"carrier_id": carrier_id, "total": total, "items": items}


@router.post(
    "/carriers/{carrier_id}/adjustments",
    response_model=MovementResponse,
    status_code=201,
)
def create_adjustment(
    carrier_id: UUID,
    body: AdjustmentCreate,
    db: Session = Depends(get_db),
    caller: Optional[str] = Depends(get_caller),
) -> CarrierMovement:
    """Post a manual correction; the description is the audit trail."""
    return CarrierLedger(db).create_adjustment(
        carrier_id,
        amount=body.amount,
        kind=body.type,
        description=body.description,
        created_by=caller,
    )


@router.post(
    "/carriers/{carrier_id}/payments",
    response_model=PaymentResponse,
    status_code=201,
)
def register_payment(
    carrier_id: UUID,
    body: PaymentCreate,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    caller: Optional[str] = Depends(get_caller),
) -> CarrierPayment:
    return PaymentService(db, config).register_payment(
        carrier_id,
        amount=body.amount,
        direction=body.direction,
        method=body.method,
        reference=body.reference,
        notes=body.notes,
        settlement_ids=body.settlement_ids,
        movement_ids=body.movement_ids,
        payment_date=body.payment_date,
        created_by=caller,
    )


@router.get("/payments", response_model=PaymentListResponse)
def list_payments(
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    settlement_id: Optional[UUID] = Query(None, description="Filter by settlement"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> dict:
    items, total = PaymentService(db, config).list_payments(
        carrier_id=carrier_id,
        settlement_id=settlement_id,
        page=page,
        limit=limit,
    )
    return {"items": items, "total": total, "page": page, "limit": limit}
