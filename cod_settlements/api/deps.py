"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from cod_settlements.core.config import Settings, settings
from cod_settlements.services.reconciliation.drafts import DraftStore


def get_settings() -> Settings:
    return settings


def get_caller(
    x_user_id: Optional[str] = Header(None, description="Caller identity, stored as created_by"),
) -> Optional[str]:
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def get_draft_store(request: Request) -> DraftStore:
    """The app-scoped draft store created in the lifespan."""
    return request.app.state.drafts
