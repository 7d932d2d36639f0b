"""Cooperative cancellation for vault operations.

A token is handed to every suspend point (backend call, ceremony) and
checked before and after it. Cancelling a token never interrupts
cryptographic work that is already running.
"""

import threading
from typing import Optional

from ..errors import OperationCancelled


class CancellationToken:
    """One-shot cancellation flag, safe to cancel from another thread."""

    def __init__(self):
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "Operation cancelled") -> None:
        """Cancel the token. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if the token has been cancelled."""
        if self._event.is_set():
            raise OperationCancelled(f"AbortError: {self._reason}")
