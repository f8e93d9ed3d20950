"""Reconciliation endpoints.

Lists what is waiting to be reconciled, shows the orders of a carrier's
dispatch for a date, submits a reconciliation and keeps operator drafts.
"""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cod_settlements.api.deps import get_caller, get_draft_store, get_settings
from cod_settlements.core.config import Settings
from cod_settlements.core.database import get_db
from cod_settlements.core.exceptions import NotFound
from cod_settlements.core.logging import get_logger
from cod_settlements.schemas.reconciliation import (
    DraftIn,
    DraftResponse,
    PendingReconciliationResponse,
    ReconcileRequest,
    ReconcileResponse,
    ReconciliationOrderResponse,
)
from cod_settlements.services.dispatch.manager import DispatchSessionManager
from cod_settlements.services.reconciliation.drafts import DraftStore
from cod_settlements.services.reconciliation.processor import (
    OrderOutcome,
    ReconciliationProcessor,
)

logger = get_logger(__name__)

router = APIRouter()


@router.get("/pending", response_model=list[PendingReconciliationResponse])
def list_pending_reconciliation(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> list[dict]:
    """Dispatched sessions awaiting reconciliation, grouped by carrier and date."""
    return ReconciliationProcessor(db, config).list_pending()


@router.get("/orders", response_model=list[ReconciliationOrderResponse])
def list_orders_for_reconciliation(
    dispatch_date: date = Query(..., alias="date", description="Dispatch date"),
    carrier_id: UUID = Query(..., description="Carrier to reconcile"),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> list[dict]:
    """Orders with their snapshotted shipping cost, ready to be marked."""
    return ReconciliationProcessor(db, config).list_orders(dispatch_date, carrier_id)


@router.post("", response_model=ReconcileResponse, status_code=201)
def reconcile(
    body: ReconcileRequest,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    drafts: DraftStore = Depends(get_draft_store),
    caller: Optional[str] = Depends(get_caller),
) -> ReconcileResponse:
    """Reconcile one dispatched session and create its settlement."""
    logger.info(
        "Reconciliation requested: carrier=%s date=%s orders=%d",
        body.carrier_id,
        body.dispatch_date,
        len(body.orders),
    )
    processor = ReconciliationProcessor(db, config, drafts=drafts)
    settlement = processor.reconcile(
        carrier_id=body.carrier_id,
        dispatch_date=body.dispatch_date,
        outcomes=[OrderOutcome(**o.model_dump()) for o in body.orders],
        total_amount_collected=body.total_amount_collected,
        discrepancy_notes=body.discrepancy_notes,
        session_id=body.session_id,
        created_by=caller,
    )
    return ReconcileResponse.from_settlement(settlement)


# ── Drafts ───────────────────────────────────────────────────────────


@router.get("/drafts/{session_id}", response_model=DraftResponse)
def get_draft(
    session_id: UUID,
    drafts: DraftStore = Depends(get_draft_store),
) -> DraftResponse:
    draft = drafts.get(session_id)
    if draft is None:
        raise NotFound("Draft", session_id)
    return DraftResponse.from_draft(draft)


@router.put("/drafts/{session_id}", response_model=DraftResponse)
def save_draft(
    session_id: UUID,
    body: DraftIn,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    drafts: DraftStore = Depends(get_draft_store),
    caller: Optional[str] = Depends(get_caller),
) -> DraftResponse:
    """Keep in-progress input for a session; never touches the ledger."""
    DispatchSessionManager(db, config).get(session_id)
    draft = drafts.save(session_id, body.payload, updated_by=caller)
    return DraftResponse.from_draft(draft)


@router.delete("/drafts/{session_id}", status_code=204)
def discard_draft(
    session_id: UUID,
    drafts: DraftStore = Depends(get_draft_store),
) -> Response:
    drafts.discard(session_id)
    return Response(status_code=204)
