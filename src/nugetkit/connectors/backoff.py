"""
Retry policy and exponential backoff for registry requests.

- Exponential backoff with randomized jitter between attempts
- Retry-After (seconds or HTTP-date) respected on 429/503
- Bounded by both an attempt count and an elapsed-time budget
- Seeded jitter for deterministic tests
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

DEFAULT_TRANSIENT_STATUSES = frozenset({408, 429})


@dataclass
class RetryPolicy:
    """Retry and backoff configuration for one transport call.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_ms: Delay before the second attempt.
        max_delay_ms: Cap on any single delay.
        multiplier: Exponential growth factor.
        jitter_factor: 0.5 = +/-50% jitter.
        max_elapsed_ms: Give up once this much time has been spent.
        transient_statuses: 4xx statuses worth retrying.
        retry_server_errors: Treat every 5xx as transient.
    """

    max_attempts: int = 4
    base_delay_ms: int = 500
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_factor: float = 0.5
    max_elapsed_ms: int = 120000
    transient_statuses: frozenset[int] = field(default_factory=lambda: DEFAULT_TRANSIENT_STATUSES)
    retry_server_errors: bool = True

    def __post_init__(self) -> None:
        self.transient_statuses = frozenset(self.transient_statuses)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})"
            )
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be in [0, 1], got {self.jitter_factor}")
        if self.max_elapsed_ms <= 0:
            raise ValueError(f"max_elapsed_ms must be > 0, got {self.max_elapsed_ms}")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Policy allowing exactly one attempt."""
        return cls(max_attempts=1)

    def is_transient_status(self, status: int) -> bool:
        """Check whether an HTTP status is worth retrying for idempotent calls."""
        if status in self.transient_statuses:
            return True
        return self.retry_server_errors and 500 <= status < 600


def compute_backoff_delay(
    policy: RetryPolicy,
    failures: int,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Delay before the retry that follows ``failures`` failed attempts.

    ``base_delay_ms * multiplier ** (failures - 1)``, scaled by a uniform
    jitter factor in ``[1 - jitter_factor, 1 + jitter_factor]`` and capped at
    ``max_delay_ms``. A longer Retry-After from the server replaces it.

    Args:
        policy: Retry policy.
        failures: Failed attempts so far.
        retry_after_ms: Server-requested delay, if any.
        rng: Seeded Random for deterministic jitter (default: module random).

    Returns:
        Delay in milliseconds; 0 before the first failure.
    """
    if failures < 1:
        return 0
    exponential = policy.base_delay_ms * policy.multiplier ** (failures - 1)
    spread = policy.jitter_factor
    factor = (rng or random).uniform(1.0 - spread, 1.0 + spread) if spread else 1.0
    delay_ms = min(int(exponential * factor), policy.max_delay_ms)
    if retry_after_ms:
        delay_ms = max(delay_ms, retry_after_ms)
    return delay_ms


@dataclass
class RetryBudget:
    """Attempts and time spent by one transport call against its policy."""

    policy: RetryPolicy
    started_at_ms: int = field(default_factory=lambda: int(time.monotonic() * 1000))
    attempts: int = 0

    @property
    def attempts_left(self) -> int:
        return max(0, self.policy.max_attempts - self.attempts)

    def elapsed_ms(self, now_ms: int) -> int:
        return now_ms - self.started_at_ms

    def next_delay_ms(self, retry_after_ms: int | None = None, *, rng: random.Random | None = None) -> int:
        """Backoff before the next attempt, given that every attempt so far failed."""
        return compute_backoff_delay(self.policy, self.attempts, retry_after_ms, rng=rng)

    def allows(self, delay_ms: int, now_ms: int) -> bool:
        """Whether sleeping ``delay_ms`` more stays within ``max_elapsed_ms``."""
        return self.elapsed_ms(now_ms) + delay_ms <= self.policy.max_elapsed_ms


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> int | None:
    """Parse a Retry-After header into milliseconds.

    Accepts both delay-seconds and HTTP-date forms.

    Args:
        value: Raw header value.
        now: Reference time for HTTP-date values (default: current UTC time).

    Returns:
        Delay in milliseconds, or None when absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return int(value) * 1000
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    if now is None:
        now = datetime.now(UTC)
    return max(0, int((when - now).total_seconds() * 1000))
