"""Last-issued-call-wins bookkeeping for client calls.

Every call for a key (e.g. ``"orders"`` while an operator flips between
dispatch sessions) begins with ``begin(key)``, which cancels the token of
the previous call for that key.  When the response arrives, ``accept``
returns it only if the token is still the current one; a stale response
raises ``SupersededCall`` and is never applied.

    token = calls.begin("orders")
    response = http.get(...)
    data = calls.accept(token, response)
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Optional, TypeVar

from cod_settlements.core.exceptions import SupersededCall
from cod_settlements.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CallToken:
    key: str
    sequence: int
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SupersededCall(self.key)


class SupersedingCalls:
    """Registry of the latest in-flight call per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._current: dict[str, CallToken] = {}

    def begin(self, key: str) -> CallToken:
        """Start a call for ``key``, cancelling whichever call was current."""
        with self._lock:
            token = CallToken(key=key, sequence=next(self._counter))
            previous = self._current.get(key)
            self._current[key] = token
        if previous is not None and not previous.cancelled:
            previous.cancel()
            logger.debug("Call %s#%d superseded by #%d", key, previous.sequence, token.sequence)
        return token

    def is_current(self, token: CallToken) -> bool:
        with self._lock:
            return self._current.get(token.key) is token and not token.cancelled

    def accept(self, token: CallToken, result: T) -> T:
        """Return ``result`` if ``token`` is still current, else raise ``SupersededCall``."""
        if not self.is_current(token):
            raise SupersededCall(token.key)
        with self._lock:
            if self._current.get(token.key) is token:
                del self._current[token.key]
        return result

    def cancel(self, key: str) -> Optional[CallToken]:
        """Cancel the current call for ``key`` without starting another."""
        with self._lock:
            token = self._current.pop(key, None)
        if token is not None:
            token.cancel()
        return token
