"""Typed errors raised by the settlement services.

Services raise these; the API layer maps them to HTTP responses in
``cod_settlements.main``.  Every class carries a machine-readable ``code``
and the HTTP status it is rendered with.
"""

from __future__ import annotations

from typing import Optional


class SettlementError(Exception):
    """Base exception for all settlement engine errors."""

    code: str = "SETTLEMENT_ERROR"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationFailed(SettlementError):
    """Input rejected before any mutation, with per-field messages."""

    code: str = "VALIDATION_FAILED"
    status_code: int = 422

    def __init__(self, errors: dict[str, str], message: Optional[str] = None) -> None:
        self.errors = errors
        super().__init__(message or f"Invalid input: {', '.join(sorted(errors))}")


class Conflict(SettlementError):
    """The target is not in the state the operation requires."""

    code: str = "CONFLICT"
    status_code: int = 409


class NotFound(SettlementError):
    """Unknown carrier, zone, session, order, or settlement."""

    code: str = "NOT_FOUND"
    status_code: int = 404

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class Transient(SettlementError):
    """Storage failure; the transaction was rolled back and may be retried."""

    code: str = "TRANSIENT"
    status_code: int = 503


class SupersededCall(SettlementError):
    """A newer call for the same key was issued; this result is stale."""

    code: str = "SUPERSEDED"
    status_code: int = 409

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Call superseded by a newer request for {key!r}")
