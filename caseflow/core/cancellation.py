"""Cooperative cancellation signal for engine operations.

A token is created by the caller (request handler, worker, test) and passed
as ``cancel_token=`` to any workflow service operation. The service checks it
before mutating and again right before commit; a cancelled token rolls the
whole unit of work back.
"""

import threading

from caseflow.core.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation cancelled")


def raise_if_cancelled(token: CancellationToken | None) -> None:
    """No-op when no token was supplied."""
    if token is not None:
        token.raise_if_cancelled()
