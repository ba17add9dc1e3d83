"""
Tests for reliability — cancellation token + backoff polling.
"""

import pytest

from kubepivot.core.errors import OperationCancelled, ProvisioningError, WaitTimeoutError
from kubepivot.core.reliability.backoff import BackoffPolicy, poll_until
from kubepivot.core.reliability.cancellation import CancellationToken


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellationToken:
    def test_initially_active(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason == ""
        assert token.remaining() is None
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancellationToken()
        token.cancel("interrupted by user")
        assert token.cancelled
        assert token.reason == "interrupted by user"
        with pytest.raises(OperationCancelled, match="interrupted by user"):
            token.raise_if_cancelled()

    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_deadline(self):
        clock = FakeClock()
        token = CancellationToken(timeout=10, clock=clock)
        assert token.remaining() == 10
        clock.now = 4
        assert token.remaining() == 6
        assert not token.expired

        clock.now = 10
        assert token.expired
        assert token.cancelled
        assert token.remaining() == 0.0
        assert token.reason == "overall run timeout exceeded"

    def test_explicit_cancel_reason_over_deadline(self):
        clock = FakeClock()
        token = CancellationToken(timeout=1, clock=clock)
        token.cancel("stop")
        clock.now = 5
        assert token.reason == "stop"


# ── Backoff ──────────────────────────────────────────────────────────


class TestBackoffPolicy:
    def test_exponential(self):
        policy = BackoffPolicy(base_delay=1, max_delay=100, jitter=0)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 8]

    def test_capped(self):
        policy = BackoffPolicy(base_delay=10, max_delay=15, jitter=0)
        assert policy.delay(5) == 15

    def test_jitter_bounds(self):
        policy = BackoffPolicy(base_delay=10, max_delay=100, jitter=0.5)
        for _ in range(20):
            assert 10 <= policy.delay(1) <= 15


class TestPollUntil:
    def test_immediate(self):
        sleeps = []
        value = poll_until(lambda: "ready", BackoffPolicy(), description="x", sleep=sleeps.append)
        assert value == "ready"
        assert sleeps == []

    def test_eventually(self):
        answers = iter([None, None, "ok"])
        sleeps = []
        value = poll_until(
            lambda: next(answers),
            BackoffPolicy(base_delay=1, jitter=0),
            description="x",
            sleep=sleeps.append,
        )
        assert value == "ok"
        assert sleeps == [1, 2]

    def test_false_is_a_value(self):
        assert poll_until(lambda: False, BackoffPolicy(), description="x") is False

    def test_max_attempts(self):
        calls = []

        def probe():
            calls.append(1)

        with pytest.raises(WaitTimeoutError, match="after 3 attempts"):
            poll_until(
                probe,
                BackoffPolicy(max_attempts=3, jitter=0),
                description="api server",
                sleep=lambda _: None,
            )
        assert len(calls) == 3

    def test_timeout(self):
        clock = FakeClock()
        with pytest.raises(WaitTimeoutError, match="Timed out waiting for nodes"):
            poll_until(
                lambda: None,
                BackoffPolicy(base_delay=4, timeout=10, jitter=0),
                description="nodes",
                sleep=clock.sleep,
                clock=clock,
            )
        assert clock.now == 10

    def test_retryable_error_means_not_yet(self):
        answers = iter([ProvisioningError("refused", retryable=True), "ok"])

        def probe():
            answer = next(answers)
            if isinstance(answer, Exception):
                raise answer
            return answer

        assert poll_until(probe, BackoffPolicy(jitter=0), description="x", sleep=lambda _: None) == "ok"

    def test_last_error_reported(self):
        def probe():
            raise ProvisioningError("connection refused", retryable=True)

        with pytest.raises(WaitTimeoutError, match="last error: connection refused"):
            poll_until(
                probe, BackoffPolicy(max_attempts=2), description="x", sleep=lambda _: None
            )

    def test_terminal_error_propagates(self):
        def probe():
            raise ProvisioningError("forbidden")

        with pytest.raises(ProvisioningError, match="forbidden"):
            poll_until(probe, BackoffPolicy(), description="x", sleep=lambda _: None)

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel("deadline")
        with pytest.raises(OperationCancelled):
            poll_until(lambda: "ok", BackoffPolicy(), description="x", cancel=token)

    def test_sleep_bounded_by_deadline(self):
        clock = FakeClock()
        token = CancellationToken(timeout=3, clock=clock)
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            clock.sleep(seconds)

        with pytest.raises(OperationCancelled):
            poll_until(
                lambda: None,
                BackoffPolicy(base_delay=10, timeout=None, jitter=0),
                description="x",
                cancel=token,
                sleep=sleep,
            )
        assert sleeps == [3]
