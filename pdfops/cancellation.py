"""Cancellation handles shared by long-running pdfops operations."""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import PdfError, cancelled_error, timeout_error


class CancellationToken:
    """Cooperative cancellation handle with an optional deadline.

    A token is cancelled either explicitly through :meth:`cancel` or
    implicitly once its deadline passes. Operations poll it at safe points
    (between attempts, chunks or candidate passwords) and sleep through
    :meth:`wait` so that a cancel wakes them immediately.
    """

    def __init__(self, timeout: Optional[float] = None, *, parent: Optional["CancellationToken"] = None) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._timeout = timeout
        self._deadline = time.monotonic() + timeout if timeout is not None and timeout > 0 else None
        self._parent = parent

    @classmethod
    def with_timeout(cls, timeout: Optional[float], parent: Optional["CancellationToken"] = None) -> "CancellationToken":
        return cls(timeout, parent=parent)

    def cancel(self, reason: str = "operation was cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def timed_out(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent.timed_out if self._parent is not None else False

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent.cancelled if self._parent is not None else False

    @property
    def done(self) -> bool:
        return self.cancelled or self.timed_out

    def remaining(self) -> Optional[float]:
        remaining = None
        if self._deadline is not None:
            remaining = max(0.0, self._deadline - time.monotonic())
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                remaining = parent_remaining if remaining is None else min(remaining, parent_remaining)
        return remaining

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` if the token finished meanwhile."""

        end = time.monotonic() + max(0.0, seconds)
        while True:
            if self.done:
                return True
            left = end - time.monotonic()
            if left <= 0:
                return self.done
            remaining = self.remaining()
            step = left if remaining is None else min(left, remaining)
            # Parents are polled, so cap the slice when one is attached.
            if self._parent is not None:
                step = min(step, 0.05)
            self._event.wait(max(step, 0.0))

    def error(self) -> PdfError:
        if self.cancelled:
            reason = self._reason
            if reason is None and self._parent is not None:
                return self._parent.error()
            return cancelled_error(reason or "operation was cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return timeout_error(self._timeout or 0.0)
        if self._parent is not None and self._parent.done:
            return self._parent.error()
        return cancelled_error()

    def raise_if_done(self) -> None:
        if self.done:
            raise self.error()


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_done()


__all__ = ["CancellationToken", "check_cancelled"]
