"""Embedded-file backend - SQLite through aiosqlite.

A single connection serves every call; aiosqlite serializes statements
on its worker thread, so the strategy adds no locking of its own. There
is no pooling and no retry: a failure is normalized once and raised.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from tenant_db.core.config import AdapterConfig
from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.errors import ErrorPipeline, normalize_error
from tenant_db.core.exceptions import AdapterStateError, ConnectionError  # noqa: A004
from tenant_db.core.params import coerce_params
from tenant_db.core.result import QueryResult, id_column_value, rows_to_dicts

logger = logging.getLogger(__name__)

PROBE_SQL = "SELECT 1 AS health"

_PRAGMAS = 'PRAGMA foreign_keys = ON; PRAGMA encoding = "UTF-8";'

_INSERT_PATTERN = re.compile(r"^\s*(INSERT|REPLACE)\b", re.IGNORECASE)

_MEMORY = ":memory:"


class EmbeddedFileStrategy:
    """SQLite file backend using one aiosqlite connection."""

    def __init__(
        self,
        config: AdapterConfig,
        *,
        errors: ErrorPipeline | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = log or logger
        self._errors = errors or ErrorPipeline(self._logger)
        self._connection: aiosqlite.Connection | None = None
        self._state = AdapterState.UNINITIALIZED

    @property
    def kind(self) -> BackendKind:
        return BackendKind.EMBEDDED

    @property
    def state(self) -> AdapterState:
        return self._state

    async def initialize(self) -> None:
        """Open the database file, creating it if absent, and apply pragmas."""
        if self._state is AdapterState.CLOSED:
            raise AdapterStateError(self._state.value, "initialize")
        if self._connection is not None:
            return

        self._state = AdapterState.CONNECTING
        path = str(self._config.path)
        self._logger.info("Initializing SQLite connection", extra={"path": path})
        try:
            if path != _MEMORY:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            connection = await aiosqlite.connect(
                path,
                isolation_level=None,
                timeout=self._config.timeout / 1000,
            )
        except (sqlite3.Error, OSError) as e:
            self._state = AdapterState.UNINITIALIZED
            error = normalize_error(e, error_class=ConnectionError)
            raise self._errors.remember(error) from e

        connection.row_factory = aiosqlite.Row
        self._connection = connection
        await self._apply_pragmas()
        self._state = AdapterState.READY
        self._logger.info("SQLite database opened", extra={"path": path})

    async def _apply_pragmas(self) -> None:
        assert self._connection is not None
        try:
            await self._connection.executescript(_PRAGMAS)
        except sqlite3.Error as e:
            self._logger.warning("Error setting SQLite pragmas: %s", e)
        else:
            self._logger.debug("SQLite pragma settings applied")

    def _require_connection(self, action: str) -> aiosqlite.Connection:
        if self._connection is None:
            raise AdapterStateError(self._state.value, action)
        return self._connection

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        """Execute *sql* on the single handle and return its rows."""
        connection = self._require_connection("query")
        try:
            async with connection.execute(sql, coerce_params(params) or ()) as cursor:
                raw_rows = await cursor.fetchall()
                description = cursor.description
                rowcount = cursor.rowcount
                lastrowid = cursor.lastrowid
        except sqlite3.Error as e:
            raise self._errors.remember(normalize_error(e, sql, params)) from e

        if description is not None:
            rows = rows_to_dicts(description, raw_rows)
            return QueryResult(rows=rows, row_count=len(rows), last_insert_id=id_column_value(rows))

        affected = max(rowcount, 0)
        last_insert_id = lastrowid if affected and _INSERT_PATTERN.match(sql) else None
        return QueryResult(rows=[], row_count=affected, last_insert_id=last_insert_id)

    async def execute(self, sql: str) -> bool:
        """Run *sql* as a script (multiple statements allowed)."""
        connection = self._require_connection("execute")
        try:
            await connection.executescript(sql)
        except sqlite3.Error as e:
            raise self._errors.remember(normalize_error(e, sql)) from e
        return True

    async def health_check(self) -> bool:
        try:
            result = await self.query(PROBE_SQL)
        except Exception as e:
            self._logger.warning("SQLite health check failed: %s", e)
            return False
        first = result.first()
        return first is not None and first.get("health") == 1

    async def close(self) -> None:
        """Close the handle. Errors are logged, never raised."""
        if self._state is AdapterState.CLOSED:
            return
        connection, self._connection = self._connection, None
        self._state = AdapterState.CLOSED
        if connection is None:
            return
        try:
            await connection.close()
        except Exception:
            self._logger.exception("Error closing SQLite database")
        else:
            self._logger.info("SQLite database closed")
