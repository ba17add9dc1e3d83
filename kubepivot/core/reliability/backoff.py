"""
Backoff — bounded polling and retry with exponential delay + jitter.

Readiness waits (cluster kubeconfig available, API server reachable,
controllers rolled out) poll through ``poll_until``.  The delay doubles
per attempt up to ``max_delay``; the wait ends at ``timeout`` seconds,
after ``max_attempts`` probes, or when the run's cancellation token
fires, whichever comes first.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from kubepivot.core.errors import KubepivotError, WaitTimeoutError
from kubepivot.core.reliability.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff parameters.

    Args:
        base_delay: Delay after the first failed probe, in seconds.
        max_delay: Upper bound for a single delay.
        timeout: Total wall-clock budget, or None for unbounded.
        max_attempts: Probe limit, or None for unbounded.
        jitter: Fraction of the delay added as random jitter.
    """

    base_delay: float = 2.0
    max_delay: float = 60.0
    timeout: float | None = 1800.0
    max_attempts: int | None = None
    jitter: float = 0.3

    def delay(self, attempt: int) -> float:
        """Delay before probe ``attempt + 1`` (attempt counts from 1)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay


def poll_until(
    probe: Callable[[], T | None],
    policy: BackoffPolicy,
    *,
    description: str,
    cancel: CancellationToken | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``probe`` until it returns a non-None value.

    A probe may raise a retryable ``KubepivotError`` to signal "not yet";
    any other exception propagates immediately.

    Returns:
        The first non-None probe result.

    Raises:
        WaitTimeoutError: Budget or attempts exhausted.
        OperationCancelled: The cancellation token fired.
    """
    start = clock()
    attempt = 0
    last_error = ""

    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()

        attempt += 1
        try:
            value = probe()
        except KubepivotError as e:
            if not e.retryable:
                raise
            value = None
            last_error = e.message

        if value is not None:
            if attempt > 1:
                logger.info("%s: ready after %d attempts", description, attempt)
            return value

        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            break

        delay = policy.delay(attempt)
        elapsed = clock() - start
        if policy.timeout is not None:
            remaining = policy.timeout - elapsed
            if remaining <= 0:
                break
            delay = min(delay, remaining)
        if cancel is not None and cancel.remaining() is not None:
            delay = min(delay, cancel.remaining() or 0.0)

        logger.debug(
            "%s: not ready (attempt %d), retrying in %.1fs", description, attempt, delay
        )
        sleep(delay)

    detail = f" (last error: {last_error})" if last_error else ""
    raise WaitTimeoutError(
        f"Timed out waiting for {description} after {attempt} attempts{detail}"
    )
