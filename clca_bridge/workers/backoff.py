"""
CLCA Bridge - Retry Backoff

Delay before the next delivery attempt of a dead letter queue entry.

    delay(attempt) = min(base * multiplier ** (attempt - 1), max_delay)
                     + uniform(0, jitter_ratio) * that value

With the defaults: 1 min, 2 min, 4 min, 8 min, 16 min (cap), each plus up to
10% jitter. Jitter spreads out retries of entries that failed together (for
example during a CLCA outage) so they do not all fire at the same instant.

A Retry-After hint from CLCA is honored as a lower bound.

Usage:
    from clca_bridge.workers.backoff import RetryPolicy

    policy = RetryPolicy()
    seconds = policy.delay_for(attempt=3)
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

BASE_DELAY_SECONDS = 60.0
MAX_DELAY_SECONDS = 960.0
BACKOFF_MULTIPLIER = 2.0
BACKOFF_JITTER = 0.1


@dataclass
class RetryPolicy:
    """
    Exponential backoff with a cap and proportional jitter.

    Attributes:
        base_delay: Delay for attempt 1, in seconds
        max_delay: Cap applied before jitter
        multiplier: Growth factor per attempt
        jitter_ratio: Upper bound of jitter as a fraction of the delay
        max_retries: Attempts allowed before an entry is dead-lettered
    """

    base_delay: float = BASE_DELAY_SECONDS
    max_delay: float = MAX_DELAY_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER
    jitter_ratio: float = BACKOFF_JITTER
    max_retries: int = 5
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def base_delay_for(self, attempt: int) -> float:
        """Capped exponential delay without jitter."""
        exponent = max(attempt, 1) - 1
        # Avoid float overflow for absurd attempt counts
        if exponent > 64:
            return self.max_delay
        return min(self.base_delay * (self.multiplier**exponent), self.max_delay)

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Seconds to wait before the next attempt.

        Args:
            attempt: Attempt number the delay precedes (1-based)
            retry_after: Optional server hint; used as a minimum
        """
        delay = self.base_delay_for(attempt)
        delay += self.rng.uniform(0, self.jitter_ratio) * delay
        if retry_after is not None and retry_after > delay:
            return float(retry_after)
        return delay

    def next_retry_at(
        self,
        attempt: int,
        now: datetime,
        retry_after: Optional[float] = None,
    ) -> datetime:
        return now + timedelta(seconds=self.delay_for(attempt, retry_after))
