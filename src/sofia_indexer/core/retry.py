"""Retry and backoff policy (core domain).

One policy object is shared by every boundary that retries: the pipeline wraps
verifier calls with `call`, the scanner uses `delay_for` to space out cycles
after a transient failure. Only TransientError is retried; everything else
propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sofia_indexer.core.config import RetryConfig
from sofia_indexer.core.errors import RetryExhausted, TransientError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap."""

    max_attempts: int
    base_delay: float
    max_delay: float
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_config(cls, config: RetryConfig, max_attempts: int) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            multiplier=config.multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the wait before retry number `attempt` (1-based)."""

        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        description: str = "call",
        sleep: Optional[Sleep] = None,
    ) -> T:
        """Await `fn()` until it succeeds or attempts run out.

        Raises RetryExhausted wrapping the last TransientError.
        """

        sleep = sleep or asyncio.sleep
        last_error: Optional[TransientError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except TransientError as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                LOGGER.info(
                    "%s failed (attempt %s/%s): %s; retrying in %.1fs",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await sleep(delay)
        assert last_error is not None
        raise RetryExhausted(self.max_attempts, last_error) from last_error
