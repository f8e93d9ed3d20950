"""Unsubmitted reconciliation drafts.

A draft is whatever the operator has typed so far for one dispatch session:
outcomes, collected amount, notes.  It is scratch data only.  Nothing here
reaches the ledger; a draft becomes real only by being submitted through
``ReconciliationProcessor.reconcile``, which discards it on success.

The store lives for the lifetime of the app (created in the FastAPI
lifespan, closed at shutdown) and entries expire after a TTL.  In-memory
only: drafts do not survive a restart.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from cod_settlements.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Draft:
    session_id: uuid.UUID
    payload: dict[str, Any]
    saved_at: float
    expires_at: float
    updated_by: Optional[str] = None
    revision: int = field(default=1)


class DraftStore:
    """Thread-safe TTL cache of drafts keyed by dispatch session id.

    Every ``save`` sweeps out expired drafts of all sessions.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._drafts: dict[uuid.UUID, Draft] = {}
        self._lock = threading.Lock()
        self._closed = False

    def save(
        self,
        session_id: uuid.UUID,
        payload: dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> Draft:
        """Store or replace the draft for a session, resetting its expiry."""
        now = self._clock()
        with self._lock:
            self._ensure_open()
            self._sweep(now)
            previous = self._live(session_id, now)
            draft = Draft(
                session_id=session_id,
                payload=dict(payload),
                saved_at=now,
                expires_at=now + self.ttl_seconds,
                updated_by=updated_by,
                revision=previous.revision + 1 if previous else 1,
            )
            self._drafts[session_id] = draft
        logger.debug("Draft saved: session=%s revision=%d", session_id, draft.revision)
        return draft

    def get(self, session_id: uuid.UUID) -> Optional[Draft]:
        with self._lock:
            self._ensure_open()
            return self._live(session_id, self._clock())

    def discard(self, session_id: uuid.UUID) -> bool:
        """Drop a session's draft; True if one was there."""
        with self._lock:
            removed = self._drafts.pop(session_id, None) is not None
        if removed:
            logger.debug("Draft discarded: session=%s", session_id)
        return removed

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._drafts)

    def close(self) -> None:
        with self._lock:
            count = len(self._drafts)
            self._drafts.clear()
            self._closed = True
        logger.info("Draft store closed, %d drafts dropped", count)

    # ── Private helpers ──────────────────────────────────────────────

    def _live(self, session_id: uuid.UUID, now: float) -> Optional[Draft]:
        draft = self._drafts.get(session_id)
        if draft is None:
            return None
        if draft.expires_at <= now:
            del self._drafts[session_id]
            return None
        return draft

    def _sweep(self, now: float) -> int:
        expired = [sid for sid, d in self._drafts.items() if d.expires_at <= now]
        for sid in expired:
            del self._drafts[sid]
        if expired:
            logger.info("Purged %d expired drafts", len(expired))
        return len(expired)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Draft store is closed")
