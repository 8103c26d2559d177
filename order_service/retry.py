"""
retry.py — Bounded Exponential-Backoff Retry

Wraps a zero-argument callable and re-runs it on failure. Attempt k (1-based)
is followed, on failure, by a wait of base_delay_ms * 2**(k-1) milliseconds.
There is no jitter.

Every exception is retried unless the caller names it in `give_up_on`.
When all attempts fail, the last error is wrapped in `RetryExhausted`, except
for domain errors (`OrderServiceError`), which are re-raised as they are.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

from . import config
from .errors import OrderServiceError, RetryExhausted
from .logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Wait before the attempt following `attempt` (1-based)."""
    return base_delay_ms * 2 ** (attempt - 1)


def execute(
        operation: Callable[[], T],
        label: str,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        give_up_on: Tuple[Type[BaseException], ...] = (),
        sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Runs `operation` up to `max_attempts` times, sequentially.

    Args:
        operation: Zero-argument callable producing the result.
        label (str): Operation name used in logs and in the final error.
        max_attempts (int): Upper bound on attempts (>= 1).
        base_delay_ms (int): Wait after the first failed attempt, doubled after each further one.
        give_up_on: Exception types that are re-raised on first occurrence, without retrying.
        sleep: Function used to wait, called with seconds. Injectable for tests.

    Returns:
        The value returned by the first successful attempt.

    Raises:
        RetryExhausted: If every attempt failed with a non-domain error.
        OrderServiceError: If the final (or a `give_up_on`) failure was a domain error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error = None
    for attempt in range(1, max_attempts + 1):
        log.debug(f"Attempt {attempt} of {max_attempts} for: {label}")
        try:
            return operation()
        except give_up_on:
            log.info(f"{label}: terminal failure on attempt {attempt}, not retrying.")
            raise
        except Exception as e:
            last_error = e
            log.warning(f"Attempt {attempt} of {max_attempts} failed for {label}: {type(e).__name__}: {e}")

            if attempt == max_attempts:
                log.error(f"Maximum attempts reached for: {label}")
                break

            delay = backoff_delay_ms(attempt, base_delay_ms)
            log.info(f"Waiting {delay}ms before the next attempt of {label}")
            sleep(delay / 1000.0)

    if isinstance(last_error, OrderServiceError):
        raise last_error
    raise RetryExhausted(label, max_attempts, last_error) from last_error


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry parameters passed explicitly to the components that retry datastore
    or provider calls.
    """
    max_attempts: int = field(default_factory=lambda: config.RETRY_MAX_ATTEMPTS)
    base_delay_ms: int = field(default_factory=lambda: config.RETRY_BASE_DELAY_MS)
    sleep: Callable[[float], None] = time.sleep

    def run(self, operation: Callable[[], T], label: str,
            give_up_on: Tuple[Type[BaseException], ...] = ()) -> T:
        return execute(
            operation,
            label,
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            give_up_on=give_up_on,
            sleep=self.sleep,
        )
