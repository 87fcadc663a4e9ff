"""Exponential backoff retry policy."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation with ``base_delay * 2 ** (attempt - 1)`` backoff.

    Attempts are 1-indexed and there is no jitter. Sleeping suspends only
    the calling task.

    Args:
        attempts: Maximum number of attempts, including the first.
        base_delay_ms: Delay before the second attempt, in milliseconds.
        sleep: Coroutine used to wait, in seconds. Replaced in tests.
    """

    attempts: int
    base_delay_ms: int
    sleep: Sleep = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")

    def delay_for(self, attempt: int) -> int:
        """Backoff in milliseconds after failed attempt number *attempt*."""
        return self.base_delay_ms * 2 ** (attempt - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        should_retry: Callable[[BaseException], bool] = lambda exc: True,
        on_retry: Callable[[int, int, BaseException], None] | None = None,
    ) -> T:
        """Run *operation* until it succeeds or a retry is not allowed.

        The last failure is re-raised unchanged; wrapping it is the
        caller's job so that enrichment happens once.

        Args:
            operation: Zero-argument coroutine function to call per attempt.
            should_retry: Predicate deciding whether a failure may be retried.
            on_retry: Called as ``(attempt, delay_ms, exc)`` before each sleep.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.attempts or not should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, delay, exc)
                await self.sleep(delay / 1000)
                attempt += 1
