from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from landed_tax.services.errors import LiveRateFetchError

T = TypeVar("T")


@dataclass
class CircuitBreaker:
    max_failures: int = 3
    reset_seconds: int = 30
    failures: int = 0
    last_failure_ts: float | None = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def allow(self) -> bool:
        if self.failures < self.max_failures:
            return True
        if self.last_failure_ts is None:
            return True
        if self.clock() - self.last_failure_ts > self.reset_seconds:
            self.failures = 0
            self.last_failure_ts = None
            return True
        return False

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_ts = self.clock()

    def record_success(self) -> None:
        self.failures = 0
        self.last_failure_ts = None


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 4,
) -> T:
    """Retry ``fn`` on LiveRateFetchError with exponential backoff, re-raising the last error."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(LiveRateFetchError),
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise LiveRateFetchError("retry loop exited without a result")
