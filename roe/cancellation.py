"""Cooperative cancellation for blocking calls.

A ``CancellationToken`` is passed into every blocking operation (HTTP calls,
retry sleeps, poll sleeps) and checked before each call, before each sleep
and after waking. A token can carry a deadline, and derived tokens observe
their parent, so a timeout composes with caller cancellation: whichever
fires first wins.

No threads or timers are created; deadlines are evaluated lazily against
``time.monotonic()``.

Example:
    >>> token = CancellationToken()
    >>> with CancellationToken.with_timeout(30, parent=token) as scoped:
    ...     job.wait(cancel=scoped)
"""

import threading
import time
from typing import List, Optional

from roe.errors import CancelledError, DeadlineExceededError


class CancellationToken:
    """Cancellation signal with an optional deadline and parent."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
    ):
        """Initialize a token.

        Args:
            deadline: Absolute ``time.monotonic()`` value after which the token
                counts as expired
            parent: Token whose cancellation also cancels this one
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancellationToken"] = []
        self._reason: Optional[CancelledError] = None
        self.deadline = deadline
        self.parent = parent
        if parent is not None:
            parent._attach(self)

    @classmethod
    def with_timeout(
        cls, seconds: float, parent: Optional["CancellationToken"] = None
    ) -> "CancellationToken":
        """Create a token that expires ``seconds`` from now.

        The effective deadline is the earlier of this one and the parent's.
        """
        deadline = time.monotonic() + max(seconds, 0.0)
        if parent is not None and parent.deadline is not None:
            deadline = min(deadline, parent.deadline)
        return cls(deadline=deadline, parent=parent)

    def _attach(self, child: "CancellationToken") -> None:
        with self._lock:
            self._children.append(child)
            reason = self._reason
        if reason is not None:
            child._set(reason)

    def _detach(self, child: "CancellationToken") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _set(self, reason: CancelledError) -> None:
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            children = list(self._children)
        self._event.set()
        for child in children:
            child._set(reason)

    def cancel(self) -> None:
        """Cancel this token and every token derived from it."""
        self._set(CancelledError())

    def close(self) -> None:
        """Stop observing the parent. Safe to call more than once."""
        if self.parent is not None:
            self.parent._detach(self)

    def __enter__(self) -> "CancellationToken":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def error(self) -> Optional[CancelledError]:
        """Return the cancellation error, or None while the token is live."""
        if self._reason is not None:
            return self._reason
        token: Optional[CancellationToken] = self
        now = time.monotonic()
        while token is not None:
            if token.deadline is not None and now >= token.deadline:
                self._set(DeadlineExceededError())
                return self._reason
            token = token.parent
        return None

    @property
    def cancelled(self) -> bool:
        return self.error() is not None

    def raise_if_cancelled(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def remaining(self) -> Optional[float]:
        """Seconds until the nearest deadline in the chain, None if unbounded."""
        deadlines = []
        token: Optional[CancellationToken] = self
        while token is not None:
            if token.deadline is not None:
                deadlines.append(token.deadline)
            token = token.parent
        if not deadlines:
            return None
        return max(min(deadlines) - time.monotonic(), 0.0)

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds`` or until cancelled.

        Raises:
            CancelledError: If the token is cancelled or expires first
        """
        end = time.monotonic() + max(seconds, 0.0)
        while True:
            self.raise_if_cancelled()
            left = end - time.monotonic()
            if left <= 0:
                return
            remaining = self.remaining()
            if remaining is not None:
                left = min(left, remaining)
            self._event.wait(left)


def resolve_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh, never-cancelled one."""
    return token if token is not None else CancellationToken()
