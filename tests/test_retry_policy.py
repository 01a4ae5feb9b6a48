from __future__ import annotations

import pytest

from invokelauncher.retry import FatalError, RecoverableError, RetryPolicy, run_with_retry


def test_retry_policy_recovers_after_transient_failures() -> None:
    attempts: list[int] = []

    def operation(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 2:
            raise RecoverableError("temporary")
        return "ok"

    result = run_with_retry(operation, policy=RetryPolicy(max_attempts=4), sleep=lambda _: None)
    assert result == "ok"
    assert attempts == [0, 1, 2]


def test_retry_policy_stops_on_fatal_error() -> None:
    def operation(_attempt: int) -> str:
        raise FatalError("fatal")

    with pytest.raises(FatalError):
        run_with_retry(operation, policy=RetryPolicy(max_attempts=5), sleep=lambda _: None)


def test_retry_policy_raises_last_recoverable_error() -> None:
    def operation(attempt: int) -> str:
        raise RecoverableError(f"temporary {attempt}")

    with pytest.raises(RecoverableError, match="temporary 1"):
        run_with_retry(operation, policy=RetryPolicy(max_attempts=2), sleep=lambda _: None)


def test_retry_policy_backs_off_exponentially() -> None:
    sleeps: list[float] = []

    def operation(_attempt: int) -> str:
        raise RecoverableError("temporary")

    with pytest.raises(RecoverableError):
        run_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=3, initial_backoff_seconds=0.5, multiplier=2.0),
            sleep=sleeps.append,
        )
    assert sleeps == [0.5, 1.0]


def test_zero_backoff_never_sleeps() -> None:
    sleeps: list[float] = []

    def operation(attempt: int) -> int:
        if attempt == 0:
            raise RecoverableError("first mirror down")
        return attempt

    assert run_with_retry(operation, policy=RetryPolicy(initial_backoff_seconds=0.0), sleep=sleeps.append) == 1
    assert sleeps == []


def test_unexpected_errors_propagate_without_retry() -> None:
    calls: list[int] = []

    def operation(attempt: int) -> str:
        calls.append(attempt)
        raise ValueError("boom")

    with pytest.raises(ValueError):
        run_with_retry(operation, policy=RetryPolicy(max_attempts=3), sleep=lambda _: None)
    assert calls == [0]


def test_on_retry_reports_each_failed_attempt_except_the_last() -> None:
    retries: list[tuple[int, str]] = []

    def operation(attempt: int) -> str:
        raise RecoverableError(f"mirror {attempt}")

    with pytest.raises(RecoverableError):
        run_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=3, initial_backoff_seconds=0.0),
            on_retry=lambda attempt, exc: retries.append((attempt, str(exc))),
        )
    assert retries == [(0, "mirror 0"), (1, "mirror 1")]


def test_non_positive_attempts_are_rejected() -> None:
    with pytest.raises(ValueError):
        run_with_retry(lambda _attempt: "ok", policy=RetryPolicy(max_attempts=0))


def test_last_failure_is_reraised_as_the_same_instance() -> None:
    failures: list[RecoverableError] = []

    def operation(attempt: int) -> str:
        failures.append(RecoverableError(f"attempt {attempt}"))
        raise failures[-1]

    with pytest.raises(RecoverableError) as exc:
        run_with_retry(operation, policy=RetryPolicy(max_attempts=2, initial_backoff_seconds=0.0))
    assert exc.value is failures[-1]
