"""Retry and rate-limit handling for collaborator calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ualgo.orchestration.errors import CollaboratorError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientCaller:
    """Wraps async collaborator calls with bounded retries and a shared pool.

    - Retryable ``CollaboratorError``s are retried up to ``max_retries`` times
      with exponential backoff starting at ``retry_delay_seconds``.
    - A ``RateLimitError`` blocks every call made through this caller until
      its ``reset_at``, unless the wait exceeds ``max_rate_limit_wait_seconds``
      in which case the error propagates.
    - At most ``max_concurrent_calls`` calls are in flight at once.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        max_rate_limit_wait_seconds: float = 900.0,
        max_concurrent_calls: int = 4,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.max_rate_limit_wait_seconds = max_rate_limit_wait_seconds
        self.sleep = sleep
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent_calls)
        self._blocked_until = 0.0

    @classmethod
    def from_config(cls, tracker_config) -> "ResilientCaller":
        return cls(
            max_retries=tracker_config.max_retries,
            retry_delay_seconds=tracker_config.retry_delay_seconds,
            max_rate_limit_wait_seconds=tracker_config.max_rate_limit_wait_seconds,
            max_concurrent_calls=tracker_config.max_concurrent_calls,
        )

    @property
    def blocked_until(self) -> float:
        return self._blocked_until

    async def _wait_for_rate_limit(self) -> None:
        remaining = self._blocked_until - self.clock()
        if remaining > 0:
            logger.info(f"Rate limited, waiting {remaining:.1f}s before next call")
            await self.sleep(remaining)

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "collaborator call",
        **kwargs: Any,
    ) -> T:
        for attempt in range(self.max_retries + 1):
            await self._wait_for_rate_limit()

            try:
                async with self._semaphore:
                    return await func(*args, **kwargs)
            except RateLimitError as e:
                wait = e.reset_at - self.clock()
                if wait > self.max_rate_limit_wait_seconds:
                    logger.error(
                        f"{description}: rate limit resets in {wait:.0f}s, "
                        f"over the {self.max_rate_limit_wait_seconds:.0f}s limit"
                    )
                    raise
                if attempt >= self.max_retries:
                    raise
                self._blocked_until = max(self._blocked_until, e.reset_at)
                logger.warning(f"{description} rate limited (attempt {attempt + 1})")
            except CollaboratorError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self.retry_delay_seconds * (2**attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}), retrying in {delay:.1f}s: {e}"
                )
                await self.sleep(delay)

        raise CollaboratorError(f"{description} failed after {self.max_retries + 1} attempts")
