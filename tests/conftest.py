"""Shared test fixtures."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import pytest

from tenant_db.core.config import AdapterConfig


class FakeCursor:
    """Stands in for a psycopg cursor with dict rows."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        columns: list[str] | None = None,
        rowcount: int = -1,
    ) -> None:
        self._rows = rows
        if rows is None:
            self.description = None
        else:
            names = columns if columns is not None else list(rows[0] if rows else [])
            self.description = [(name,) for name in names]
        self.rowcount = rowcount

    async def fetchall(self) -> list[dict[str, Any]]:
        return list(self._rows or [])

    async def fetchone(self) -> dict[str, Any] | None:
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, pool: FakePool) -> None:
        self._pool = pool

    async def execute(self, sql: str, params: Any = None) -> FakeCursor:
        self._pool.statements.append((sql, params))
        if self._pool.outcomes:
            outcome = self._pool.outcomes.pop(0)
        else:
            outcome = FakeCursor([{"health": 1}])
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakePool:
    """In-process pool double that counts leases.

    ``acquire_failures`` are raised (in order) by ``connection()`` before a
    lease is granted; ``fail_forever`` makes every acquisition fail.
    ``outcomes`` are returned (or raised) by successive statements.
    """

    def __init__(self) -> None:
        self.options: dict[str, Any] = {}
        self.opened = False
        self.closed = False
        self.close_calls = 0
        self.attempts = 0
        self.acquired = 0
        self.released = 0
        self.acquire_failures: list[BaseException] = []
        self.fail_forever: BaseException | None = None
        self.outcomes: list[FakeCursor | BaseException] = []
        self.statements: list[tuple[str, Any]] = []

    async def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        self.opened = True

    @asynccontextmanager
    async def connection(self, timeout: float | None = None) -> AsyncIterator[FakeConnection]:
        self.attempts += 1
        if self.fail_forever is not None:
            raise self.fail_forever
        if self.acquire_failures:
            raise self.acquire_failures.pop(0)
        self.acquired += 1
        try:
            yield FakeConnection(self)
        finally:
            self.released += 1

    async def close(self, timeout: float = 5.0) -> None:
        self.close_calls += 1
        self.closed = True

    def get_stats(self) -> dict[str, int]:
        return {"requests_num": self.acquired, "connections_num": self.acquired}


@pytest.fixture
def embedded_config(tmp_path: Path) -> AdapterConfig:
    """SQLite file config under a not-yet-existing directory."""
    return AdapterConfig(
        kind="embedded",
        path=tmp_path / "data" / "tenant.db",
        health_check_interval=0,
    )


@pytest.fixture
def networked_config() -> AdapterConfig:
    """PostgreSQL config with short backoff and no background probe."""
    return AdapterConfig(
        kind="networked",
        host="db.internal",
        port=5432,
        database="tenants",
        user="app",
        password="s3cret",
        retries=3,
        retry_delay=100,
        max_connection_attempts=5,
        health_check_interval=0,
    )


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def pool_factory(fake_pool: FakePool):
    """Pool factory that records the options and returns ``fake_pool``."""

    def _factory(**options: Any) -> FakePool:
        fake_pool.options = options
        return fake_pool

    return _factory


@pytest.fixture
def cursor():
    """Factory for fake cursors: ``cursor([{"id": 1}])``."""
    return FakeCursor


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays (seconds) requested through ``fake_sleep``."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def test_logger() -> logging.Logger:
    logger = logging.getLogger("tenant_db.tests")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def tmp_sql_dir(tmp_path: Path) -> Path:
    """Temporary directory for SQL files."""
    return tmp_path / "sql"


@pytest.fixture
def write_sql(tmp_sql_dir: Path):
    """Helper to write SQL files into the temp directory.

    Usage:
        write_sql("schema.sql", "CREATE TABLE tenants (id INTEGER PRIMARY KEY)")
    """

    def _write(relative_path: str, content: str) -> Path:
        file_path = tmp_sql_dir / relative_path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return file_path

    return _write
