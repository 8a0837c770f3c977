"""Run-scoped cancellation passed down to every remote call."""

from __future__ import annotations

import threading


class OperationCancelled(Exception):
    """Raised when a cancellation token has been triggered."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation was canceled.")

    def wait(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise as soon as the token is cancelled."""
        if self._event.wait(max(0.0, seconds)):
            raise OperationCancelled("Operation was canceled.")
