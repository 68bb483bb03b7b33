"""Retry policy for alert delivery - Pure functions."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total delivery attempts before a job is abandoned
        backoff_base_seconds: Delay after the first failed attempt
    """
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay before the next attempt, after `attempt` failed attempts.

    Pure function. 1 -> base, 2 -> 2 * base, 3 -> 4 * base, ...
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base_seconds * (2 ** (attempt - 1))


def should_retry(attempts_made: int, policy: RetryPolicy) -> bool:
    """Check if another attempt is allowed after `attempts_made` failures.

    Pure function.
    """
    return attempts_made < policy.max_attempts
