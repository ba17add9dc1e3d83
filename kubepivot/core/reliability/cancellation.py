"""
Cancellation token — one per run, threaded through every stage.

Combines an explicit cancel flag (set from a signal handler or on
KeyboardInterrupt) with an optional overall deadline.  Long waits
consult it between polls, so a cancelled run stops at the next
suspension point instead of blocking indefinitely.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from kubepivot.core.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Args:
        timeout: Overall budget in seconds, or None for no deadline.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._event = threading.Event()
        self._reason = ""
        self._deadline = clock() + timeout if timeout is not None else None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return self._reason or "cancelled"
        if self.expired:
            return "overall run timeout exceeded"
        return ""

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None when unbounded)."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            logger.warning("Cancellation requested: %s", reason)
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason)
