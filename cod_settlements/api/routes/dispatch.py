"""Dispatch session endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cod_settlements.api.deps import get_caller, get_settings
from cod_settlements.core.config import Settings
from cod_settlements.core.database import get_db
from cod_settlements.models.dispatch import DispatchSession
from cod_settlements.schemas.dispatch import (
    AbandonRequest,
    DispatchSessionCreate,
    DispatchSessionResponse,
    DispatchSessionSummary,
)
from cod_settlements.services.dispatch.manager import DispatchSessionManager

router = APIRouter()


@router.post("", response_model=DispatchSessionResponse, status_code=201)
def create_session(
    body: DispatchSessionCreate,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    caller: Optional[str] = Depends(get_caller),
) -> DispatchSession:
    """Open a session holding the given orders."""
    return DispatchSessionManager(db, config).create(
        carrier_id=body.carrier_id,
        dispatch_date=body.dispatch_date,
        order_ids=body.order_ids,
        notes=body.notes,
        created_by=caller,
    )


@router.get("", response_model=list[DispatchSessionSummary])
def list_sessions(
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    status: Optional[str] = Query(None, description="Filter by status"),
    date_from: Optional[date] = Query(None, description="dispatch_date >= date"),
    date_to: Optional[date] = Query(None, description="dispatch_date <= date"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> list[DispatchSession]:
    return DispatchSessionManager(db, config).list_sessions(
        carrier_id=carrier_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@router.get("/{session_id}", response_model=DispatchSessionResponse)
def get_session(
    session_id: UUID,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> DispatchSession:
    return DispatchSessionManager(db, config).get(session_id)


@router.post("/{session_id}/dispatch", response_model=DispatchSessionResponse)
def mark_dispatched(
    session_id: UUID,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> DispatchSession:
    """Hand the session to the carrier and snapshot each order's fee."""
    return DispatchSessionManager(db, config).mark_dispatched(session_id)


@router.post("/{session_id}/abandon", response_model=DispatchSessionResponse)
def abandon_session(
    session_id: UUID,
    body: AbandonRequest,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> DispatchSession:
    """Drop an open session and release its orders."""
    return DispatchSessionManager(db, config).abandon(session_id, body.reason)
