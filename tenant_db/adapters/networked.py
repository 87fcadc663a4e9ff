"""Networked backend - PostgreSQL through psycopg (v3+) and psycopg_pool.

Lifecycle:

    UNINITIALIZED -> CONNECTING -> READY <-> DEGRADED -> CLOSED

Every query and exec leases one connection from the pool for its own
duration; the lease is scoped, so the connection goes back to the pool
on every exit path. Queries retry retryable failures with exponential
backoff; exec runs once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from tenant_db.core.config import AdapterConfig
from tenant_db.core.dialect import convert_query
from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.errors import (
    ErrorPipeline,
    error_code,
    friendly_message,
    is_retryable,
    normalize_error,
)
from tenant_db.core.exceptions import AdapterStateError, ConnectionError  # noqa: A004
from tenant_db.core.health import HealthMonitor
from tenant_db.core.params import Params, to_format_style
from tenant_db.core.result import QueryResult, id_column_value, rows_to_dicts
from tenant_db.core.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

PROBE_SQL = "SELECT 1 AS health"

PoolFactory = Callable[..., Any]


def create_pool(**options: Any) -> Any:
    """Build an unopened psycopg_pool.AsyncConnectionPool."""
    from psycopg_pool import AsyncConnectionPool

    return AsyncConnectionPool(**options)


class NetworkedPooledStrategy:
    """PostgreSQL backend with a shared connection pool.

    Args:
        config: Adapter configuration.
        errors: Pipeline that receives pool-level and probe failures.
        log: Logger for lifecycle and pool events.
        pool_factory: Called with the pool options to build the pool.
            Defaults to :func:`create_pool`.
        sleep: Coroutine used for retry backoff, in seconds.
    """

    def __init__(
        self,
        config: AdapterConfig,
        *,
        errors: ErrorPipeline | None = None,
        log: logging.Logger | None = None,
        pool_factory: PoolFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._logger = log or logger
        self._errors = errors or ErrorPipeline(self._logger)
        self._pool_factory = pool_factory or create_pool
        self._pool: Any = None
        self._monitor: HealthMonitor | None = None
        self._state = AdapterState.UNINITIALIZED
        self._query_retry = RetryPolicy(config.retries, config.retry_delay, sleep)
        self._connect_retry = RetryPolicy(
            config.max_connection_attempts, config.retry_delay, sleep
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.NETWORKED

    @property
    def state(self) -> AdapterState:
        return self._state

    # --- Pool construction ---

    def connection_kwargs(self) -> dict[str, Any]:
        """Per-connection options passed to psycopg when the pool connects."""
        from psycopg.rows import dict_row

        cfg = self._config
        kwargs: dict[str, Any] = {
            "host": cfg.host,
            "port": cfg.port,
            "dbname": cfg.database,
            "user": cfg.user,
            "password": cfg.password,
            "connect_timeout": max(1, round(cfg.timeout / 1000)),
            "sslmode": "require" if cfg.ssl else "disable",
            "application_name": cfg.application_name,
            "autocommit": True,
            "row_factory": dict_row,
        }
        timeouts = [t for t in (cfg.statement_timeout, cfg.query_timeout) if t > 0]
        if timeouts:
            kwargs["options"] = f"-c statement_timeout={min(timeouts)}"
        return {key: value for key, value in kwargs.items() if value is not None}

    def pool_options(self) -> dict[str, Any]:
        """Options for the pool factory, sized from the config."""
        cfg = self._config
        return {
            "conninfo": "",
            "kwargs": self.connection_kwargs(),
            "min_size": cfg.pool.min,
            "max_size": cfg.pool.max,
            "max_idle": cfg.pool.idle / 1000,
            "timeout": cfg.timeout / 1000,
            "name": cfg.application_name,
            "open": False,
            "configure": self._on_connect,
            "check": self._on_check,
            "reconnect_failed": self._on_reconnect_failed,
        }

    # --- Pool observers ---

    async def _on_connect(self, connection: Any) -> None:
        self._logger.debug("New PostgreSQL client connected")

    async def _on_check(self, connection: Any) -> None:
        try:
            await connection.execute("SELECT 1")
        except Exception as e:
            self._logger.info("PostgreSQL client removed from pool")
            self._on_pool_error(e)
            raise

    def _on_reconnect_failed(self, pool: Any) -> None:
        self._on_pool_error(
            ConnectionError(
                "PostgreSQL pool could not reconnect to the server.",
                code="POOL_RECONNECT_FAILED",
            )
        )

    def _on_pool_error(self, exc: BaseException) -> None:
        if self._state is AdapterState.READY:
            self._state = AdapterState.DEGRADED
        self._errors.handle(exc, source="pool")

    def _on_probe_failure(self, exc: BaseException | None) -> None:
        if self._state is AdapterState.READY:
            self._state = AdapterState.DEGRADED
        if exc is None:
            exc = ConnectionError(
                "Health probe returned an unexpected result.", code="HEALTH_PROBE_FAILED"
            )
        self._errors.handle(exc, source="health-probe")

    def _mark_healthy(self) -> None:
        if self._state is AdapterState.DEGRADED:
            self._state = AdapterState.READY
            self._logger.info("PostgreSQL connection recovered")

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Build the pool, verify connectivity with retry and start health probes.

        Raises:
            ConnectionError: If no connection could be leased after
                ``max_connection_attempts`` attempts.
        """
        if self._state is AdapterState.CLOSED:
            raise AdapterStateError(self._state.value, "initialize")
        if self._pool is not None:
            return

        self._state = AdapterState.CONNECTING
        self._logger.info(
            "Initializing PostgreSQL connection pool",
            extra={"host": self._config.host, "port": self._config.port},
        )
        self._pool = self._pool_factory(**self.pool_options())
        try:
            await self._pool.open(wait=False)
            await self._verify_connection()
        except BaseException:
            await self._discard_pool()
            self._state = AdapterState.UNINITIALIZED
            raise

        self._state = AdapterState.READY
        if self._config.health_check_interval > 0:
            self._monitor = HealthMonitor(
                self.probe,
                self._config.health_check_interval,
                on_failure=self._on_probe_failure,
                on_success=self._mark_healthy,
                log=self._logger,
            )
            self._monitor.start()
        self._logger.info("PostgreSQL connection pool initialized")

    async def _verify_connection(self) -> None:
        attempts = self._connect_retry.attempts
        attempt = 0

        async def _lease_once() -> None:
            nonlocal attempt
            attempt += 1
            async with self._lease("initialize"):
                pass
            self._logger.info(
                "PostgreSQL connection test successful (attempt %d/%d)", attempt, attempts
            )

        try:
            await self._connect_retry.run(
                _lease_once, on_retry=self._retry_logger("Connection test", attempts)
            )
        except Exception as e:
            self._logger.error("All %d PostgreSQL connection attempts failed", attempts)
            error = ConnectionError(
                f"PostgreSQL connection failed after {attempts} attempts: "
                f"{friendly_message(e)}",
                code=error_code(e),
                original=e,
                retryable=is_retryable(e),
            )
            raise self._errors.remember(error) from e

    async def _discard_pool(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        try:
            await pool.close()
        except Exception:
            self._logger.exception("Error closing PostgreSQL pool")

    async def close(self) -> None:
        """Stop health probes and close the pool. Idempotent."""
        if self._state is AdapterState.CLOSED:
            return
        self._state = AdapterState.CLOSED
        monitor, self._monitor = self._monitor, None
        if monitor is not None:
            await monitor.stop()
        await self._discard_pool()
        self._logger.info("PostgreSQL connection pool closed")

    # --- Operations ---

    @asynccontextmanager
    async def _lease(self, action: str) -> AsyncIterator[Any]:
        """Lease one pooled connection for the duration of the block."""
        if self._pool is None:
            raise AdapterStateError(self._state.value, action)
        async with self._pool.connection() as connection:
            self._logger.debug("PostgreSQL client acquired from pool")
            try:
                yield connection
            finally:
                self._logger.debug("PostgreSQL client released back to pool")

    def _retry_logger(self, what: str, attempts: int) -> Callable[[int, int, BaseException], None]:
        def _log(attempt: int, delay: int, exc: BaseException) -> None:
            self._logger.warning(
                "%s failed (attempt %d/%d), retrying in %dms: %s",
                what,
                attempt,
                attempts,
                delay,
                exc,
            )

        return _log

    def _prepare(self, sql: str, params: Any) -> tuple[str, Params]:
        if self._config.translate_dialect:
            sql = convert_query(sql, BackendKind.NETWORKED)
        return to_format_style(sql, params)

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        """Execute *sql*, retrying retryable failures with backoff.

        Raises:
            AdapterError: The normalized last failure, carrying *sql* and
                *params*.
        """
        if self._pool is None:
            raise AdapterStateError(self._state.value, "query")

        async def _attempt() -> QueryResult:
            async with self._lease("query") as connection:
                cursor = await connection.execute(statement, bound)
                if cursor.description is None:
                    return QueryResult(rows=[], row_count=max(cursor.rowcount, 0))
                rows = rows_to_dicts(cursor.description, await cursor.fetchall())
            return QueryResult(rows=rows, row_count=len(rows), last_insert_id=id_column_value(rows))

        try:
            statement, bound = self._prepare(sql, params)
            result = await self._query_retry.run(
                _attempt,
                should_retry=is_retryable,
                on_retry=self._retry_logger("Query", self._query_retry.attempts),
            )
        except AdapterStateError:
            raise
        except Exception as e:
            raise self._errors.remember(normalize_error(e, sql, params)) from e

        self._mark_healthy()
        return result

    async def execute(self, sql: str) -> bool:
        """Execute *sql* once. Multiple statements are allowed."""
        if self._pool is None:
            raise AdapterStateError(self._state.value, "execute")
        statement = convert_query(sql) if self._config.translate_dialect else sql
        try:
            async with self._lease("execute") as connection:
                await connection.execute(statement)
        except AdapterStateError:
            raise
        except Exception as e:
            self._logger.error("PostgreSQL exec error: %s", e)
            raise self._errors.remember(normalize_error(e, sql)) from e
        return True

    async def probe(self) -> bool:
        """Run the health probe on one leased connection. May raise."""
        async with self._lease("health check") as connection:
            cursor = await connection.execute(PROBE_SQL)
            row = await cursor.fetchone()
        if row is None:
            return False
        value = row.get("health") if isinstance(row, Mapping) else row[0]
        return value == 1

    async def health_check(self) -> bool:
        try:
            healthy = await self.probe()
        except Exception as e:
            self._logger.warning("PostgreSQL health check failed: %s", e)
            return False
        if healthy:
            self._mark_healthy()
        return healthy

    def pool_stats(self) -> dict[str, int]:
        """Pool counters (connections, waiting requests...) if the pool reports them."""
        if self._pool is None or not hasattr(self._pool, "get_stats"):
            return {}
        return dict(self._pool.get_stats())
