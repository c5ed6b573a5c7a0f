"""Exponential-backoff retry for remote calls."""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from parley.config import TransportConfig
from parley.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter.

    Delay before attempt ``n + 1`` is ``min(max_delay, initial_delay * multiplier ** (n - 1))``
    scaled by a random factor in ``[1 - jitter, 1 + jitter]``.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.3

    @classmethod
    def from_config(cls, config: TransportConfig) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(config.max_attempts)),
            initial_delay=max(0.0, float(config.initial_delay)),
            max_delay=max(0.0, float(config.max_delay)),
            multiplier=max(1.0, float(config.backoff_multiplier)),
        )

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retrying after ``attempt`` failed attempts."""
        base = min(self.max_delay, self.initial_delay * (self.multiplier ** max(0, attempt - 1)))
        if self.jitter <= 0 or base <= 0:
            return base
        return max(0.0, base * random.uniform(1 - self.jitter, 1 + self.jitter))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    The last exception is re-raised unchanged once attempts run out or
    ``should_retry`` rejects it.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            retryable = should_retry(e) if should_retry is not None else True
            if not retryable or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            log.warning(
                "Retrying remote call",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=round(delay, 3),
                error=str(e),
            )
            await sleep(delay)
