"""Retry executor tests."""

import pytest

from order_service.errors import InvalidOrder, OrderNotFound, RetryExhausted
from order_service.retry import RetryPolicy, backoff_delay_ms, execute


class Flaky:
    """Callable failing `failures` times before returning `result`."""

    def __init__(self, failures, result="ok", error=ConnectionError):
        self.failures = failures
        self.result = result
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.result


class TestBackoff:
    """Delays double after each failed attempt, starting at the base delay."""

    def test_delays(self) -> None:
        assert [backoff_delay_ms(k, 1000) for k in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]


class TestExecute:
    def test_first_attempt_succeeds_without_waiting(self) -> None:
        waits = []
        assert execute(Flaky(0), "op", sleep=waits.append) == "ok"
        assert waits == []

    def test_fails_twice_then_succeeds(self) -> None:
        waits = []
        op = Flaky(2, result=42)
        assert execute(op, "op", max_attempts=3, sleep=waits.append) == 42
        assert op.calls == 3
        # 1000ms + 2000ms with the defaults
        assert waits == [1.0, 2.0]
        assert sum(waits) == 3.0

    def test_always_failing_raises_after_exactly_max_attempts(self) -> None:
        waits = []
        op = Flaky(100)
        with pytest.raises(RetryExhausted) as exc_info:
            execute(op, "load things", max_attempts=3, base_delay_ms=10, sleep=waits.append)
        err = exc_info.value
        assert op.calls == 3
        assert waits == [0.01, 0.02]
        assert err.label == "load things"
        assert err.attempts == 3
        assert isinstance(err.last_error, ConnectionError)
        assert str(err.last_error) == "failure 3"
        assert err.__cause__ is err.last_error
        assert err.code == "RETRY_FAILED"
        assert "load things" in err.message
        assert err.details == "Transient dependency failure (ConnectionError)"
        assert "failure 3" not in str(err.to_dict())

    def test_domain_error_is_retried_then_reraised_unchanged(self) -> None:
        waits = []
        calls = []

        def op():
            calls.append(1)
            raise OrderNotFound(7)

        with pytest.raises(OrderNotFound) as exc_info:
            execute(op, "read", max_attempts=3, base_delay_ms=1, sleep=waits.append)
        assert len(calls) == 3
        assert exc_info.value.order_id == 7

    def test_give_up_on_stops_at_first_occurrence(self) -> None:
        waits = []
        calls = []

        def op():
            calls.append(1)
            raise InvalidOrder(["Insufficient stock"])

        with pytest.raises(InvalidOrder):
            execute(op, "tx", give_up_on=(InvalidOrder,), sleep=waits.append)
        assert len(calls) == 1
        assert waits == []

    def test_give_up_on_does_not_affect_other_errors(self) -> None:
        waits = []
        op = Flaky(1)
        assert execute(op, "tx", give_up_on=(InvalidOrder,), base_delay_ms=5, sleep=waits.append) == "ok"
        assert waits == [0.005]

    def test_single_attempt(self) -> None:
        op = Flaky(1)
        with pytest.raises(RetryExhausted):
            execute(op, "once", max_attempts=1, sleep=lambda s: None)
        assert op.calls == 1

    def test_rejects_non_positive_attempts(self) -> None:
        with pytest.raises(ValueError):
            execute(Flaky(0), "op", max_attempts=0)


class TestRetryPolicy:
    def test_run_uses_policy_parameters(self) -> None:
        waits = []
        policy = RetryPolicy(max_attempts=4, base_delay_ms=100, sleep=waits.append)
        op = Flaky(3)
        assert policy.run(op, "op") == "ok"
        assert op.calls == 4
        assert waits == [0.1, 0.2, 0.4]

    def test_defaults_come_from_config(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay_ms == 1000
