"""Recurring health probe tied to an adapter's lifetime."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Runs *probe* every *interval_ms* on a background task.

    A probe that raises or returns a falsy value calls *on_failure*; the
    schedule keeps running regardless. ``stop()`` cancels the task and
    waits for it, so no timer outlives the adapter.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[Any]],
        interval_ms: int,
        on_failure: Callable[[BaseException | None], None],
        on_success: Callable[[], None] | None = None,
        *,
        name: str = "tenant-db-health",
        log: logging.Logger | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._probe = probe
        self._interval = interval_ms / 1000
        self._on_failure = on_failure
        self._on_success = on_success
        self._name = name
        self._logger = log or logger
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the probe loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)

    async def stop(self) -> None:
        """Cancel the probe loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.tick()

    async def tick(self) -> bool:
        """Run one probe and report the outcome. Never raises."""
        try:
            healthy = bool(await self._probe())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._report_failure(exc)
            return False
        if not healthy:
            self._report_failure(None)
            return False
        if self._on_success is not None:
            self._on_success()
        return True

    def _report_failure(self, exc: BaseException | None) -> None:
        try:
            self._on_failure(exc)
        except Exception:
            self._logger.exception("Health probe failure callback raised")
