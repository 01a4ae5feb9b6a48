"""Attempt-indexed retry for operations that can fail transiently."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


class RecoverableError(Exception):
    """Transient failure; the next attempt may succeed."""


class FatalError(Exception):
    """Failure that no further attempt can fix."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    multiplier: float = 2.0

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before zero-based ``attempt`` (never before the first)."""
        if attempt <= 0:
            return 0.0
        return self.initial_backoff_seconds * self.multiplier ** (attempt - 1)


RetryListener = Callable[[int, RecoverableError], None]


def run_with_retry(
    operation: Callable[[int], T],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: RetryListener | None = None,
) -> T:
    """Call ``operation(attempt)`` until it succeeds or ``policy`` runs out.

    ``attempt`` is zero-based so callers can walk a list of mirrors with it.
    ``FatalError`` and any other exception propagate immediately; only
    ``RecoverableError`` is retried, and the last one is re-raised once every
    attempt has failed.
    """
    if policy.max_attempts < 1:
        raise ValueError(f"max_attempts must be positive: {policy.max_attempts}")

    failure: RecoverableError | None = None
    for attempt in range(policy.max_attempts):
        delay = policy.delay_before(attempt)
        if delay > 0:
            sleep(delay)
        try:
            return operation(attempt)
        except RecoverableError as exc:
            failure = exc
            if on_retry is not None and attempt + 1 < policy.max_attempts:
                on_retry(attempt, exc)

    if failure is not None:
        raise failure
    raise RuntimeError("Retry policy exhausted without executing operation.")
