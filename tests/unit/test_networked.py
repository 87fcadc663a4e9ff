"""Unit tests for NetworkedPooledStrategy against an in-process fake pool."""

from __future__ import annotations

import asyncio
import errno
from unittest.mock import Mock

import pytest
from psycopg import errors as pg_errors
from psycopg_pool import PoolTimeout

from tenant_db.adapters.networked import NetworkedPooledStrategy
from tenant_db.core.config import AdapterConfig
from tenant_db.core.enums import AdapterState
from tenant_db.core.errors import ErrorPipeline
from tenant_db.core.exceptions import (
    AdapterStateError,
    ConnectionError,  # noqa: A004
    ConstraintViolation,
    QueryError,
)


def _refused() -> OSError:
    return OSError(errno.ECONNREFUSED, "Connection refused")


def _reset() -> OSError:
    return OSError(errno.ECONNRESET, "Connection reset by peer")


@pytest.fixture
def pipeline() -> ErrorPipeline:
    return ErrorPipeline()


@pytest.fixture
def make_strategy(networked_config: AdapterConfig, pool_factory, fake_sleep, pipeline):
    def _make(**overrides) -> NetworkedPooledStrategy:
        config = networked_config.model_copy(update=overrides) if overrides else networked_config
        return NetworkedPooledStrategy(
            config, errors=pipeline, pool_factory=pool_factory, sleep=fake_sleep
        )

    return _make


@pytest.fixture
async def strategy(make_strategy, sleeps: list[float]):
    strategy = make_strategy()
    await strategy.initialize()
    sleeps.clear()
    yield strategy
    await strategy.close()


class TestPoolOptions:
    def test_pool_sized_from_config(self, make_strategy) -> None:
        options = make_strategy().pool_options()
        assert options["min_size"] == 2
        assert options["max_size"] == 10
        assert options["max_idle"] == 30.0
        assert options["timeout"] == 30.0
        assert options["open"] is False
        assert callable(options["configure"])
        assert callable(options["check"])
        assert callable(options["reconnect_failed"])

    def test_connection_kwargs(self, make_strategy) -> None:
        kwargs = make_strategy().connection_kwargs()
        assert kwargs["host"] == "db.internal"
        assert kwargs["dbname"] == "tenants"
        assert kwargs["user"] == "app"
        assert kwargs["password"] == "s3cret"
        assert kwargs["connect_timeout"] == 30
        assert kwargs["sslmode"] == "disable"
        assert kwargs["application_name"] == "tenant-manager"
        assert kwargs["options"] == "-c statement_timeout=30000"
        assert kwargs["autocommit"] is True

    def test_ssl_required(self, make_strategy) -> None:
        assert make_strategy(ssl=True).connection_kwargs()["sslmode"] == "require"

    def test_plain_connection_without_ssl(self, make_strategy) -> None:
        assert make_strategy(ssl=False).connection_kwargs()["sslmode"] == "disable"

    def test_unset_values_omitted(self, make_strategy) -> None:
        kwargs = make_strategy(user=None, password=None).connection_kwargs()
        assert "user" not in kwargs
        assert "password" not in kwargs


class TestInitialize:
    async def test_verifies_one_lease(self, make_strategy, fake_pool, sleeps) -> None:
        strategy = make_strategy()
        await strategy.initialize()

        assert fake_pool.opened
        assert fake_pool.acquired == fake_pool.released == 1
        assert strategy.state is AdapterState.READY
        assert sleeps == []
        await strategy.close()

    async def test_second_initialize_is_noop(self, strategy, fake_pool) -> None:
        await strategy.initialize()
        assert fake_pool.attempts == 1

    async def test_recovers_after_transient_failures(self, make_strategy, fake_pool, sleeps) -> None:
        fake_pool.acquire_failures = [_refused(), _refused()]
        strategy = make_strategy()

        await strategy.initialize()

        assert fake_pool.attempts == 3
        assert sleeps == [0.1, 0.2]
        assert strategy.state is AdapterState.READY
        await strategy.close()

    async def test_unreachable_host_fails_after_five_attempts(
        self, make_strategy, fake_pool, sleeps, pipeline
    ) -> None:
        failure = _refused()
        fake_pool.fail_forever = failure
        strategy = make_strategy()

        with pytest.raises(ConnectionError, match="after 5 attempts") as exc_info:
            await strategy.initialize()

        assert fake_pool.attempts == 5
        assert sleeps == [0.1, 0.2, 0.4, 0.8]
        assert exc_info.value.__cause__ is failure
        assert exc_info.value.original is failure
        assert exc_info.value.code == "ECONNREFUSED"
        assert fake_pool.closed
        assert strategy.state is AdapterState.UNINITIALIZED
        assert pipeline.last_error is exc_info.value


class TestQuery:
    async def test_select_rows(self, strategy, fake_pool, cursor) -> None:
        fake_pool.outcomes = [cursor([{"id": 7, "name": "acme"}, {"id": 8, "name": "globex"}])]

        result = await strategy.query("SELECT id, name FROM tenants")

        assert result.rows == [{"id": 7, "name": "acme"}, {"id": 8, "name": "globex"}]
        assert result.row_count == 2
        assert result.last_insert_id == 7

    async def test_insert_returning(self, strategy, fake_pool, cursor) -> None:
        fake_pool.outcomes = [cursor([{"id": 42}])]
        result = await strategy.query("INSERT INTO tenants (name) VALUES (?) RETURNING id", ["x"])
        assert result.last_insert_id == 42

    async def test_write_without_rows(self, strategy, fake_pool, cursor) -> None:
        fake_pool.outcomes = [cursor(rowcount=3)]
        result = await strategy.query("UPDATE tenants SET active = ?", [False])
        assert result.rows == []
        assert result.row_count == 3
        assert result.last_insert_id is None

    async def test_empty_select(self, strategy, fake_pool, cursor) -> None:
        fake_pool.outcomes = [cursor([], columns=["id"])]
        result = await strategy.query("SELECT id FROM tenants WHERE 1 = 0")
        assert result.rows == []
        assert result.row_count == 0

    async def test_placeholders_converted(self, strategy, fake_pool) -> None:
        await strategy.query("SELECT * FROM tenants WHERE id = ? AND slug = ?", [1, "acme"])
        assert fake_pool.statements[-1] == (
            "SELECT * FROM tenants WHERE id = %s AND slug = %s",
            (1, "acme"),
        )

    async def test_binding_count_mismatch_not_sent(self, strategy, fake_pool, sleeps) -> None:
        before = len(fake_pool.statements)

        with pytest.raises(QueryError) as exc_info:
            await strategy.query("SELECT * FROM tenants WHERE id = ?", [1, 2])

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert len(fake_pool.statements) == before
        assert sleeps == []

    async def test_retryable_failure_then_success(self, strategy, fake_pool, sleeps) -> None:
        fake_pool.outcomes = [_reset(), _reset()]

        result = await strategy.query("SELECT 1 AS health")

        assert result.rows == [{"health": 1}]
        assert sleeps == [0.1, 0.2]
        assert fake_pool.acquired == fake_pool.released

    async def test_retries_exhausted(self, strategy, fake_pool, sleeps, pipeline) -> None:
        last = pg_errors.AdminShutdown("terminating connection due to administrator command")
        fake_pool.outcomes = [_reset(), PoolTimeout("couldn't get a connection after 30.00 sec"), last]

        with pytest.raises(ConnectionError) as exc_info:
            await strategy.query("SELECT * FROM tenants", [])

        error = exc_info.value
        assert error.code == "57P01"
        assert error.__cause__ is last
        assert error.sql == "SELECT * FROM tenants"
        assert sleeps == [0.1, 0.2]
        assert fake_pool.acquired == fake_pool.released
        assert pipeline.last_error is error

    async def test_non_retryable_fails_on_first_attempt(self, strategy, fake_pool, sleeps) -> None:
        failure = pg_errors.UniqueViolation("duplicate key value violates unique constraint")
        fake_pool.outcomes = [failure]
        before = len(fake_pool.statements)

        with pytest.raises(ConstraintViolation) as exc_info:
            await strategy.query("INSERT INTO tenants (slug) VALUES (?)", ["acme"])

        assert len(fake_pool.statements) - before == 1
        assert sleeps == []
        assert exc_info.value.code == "23505"
        assert exc_info.value.params == ["acme"]
        assert exc_info.value.original is failure
        assert fake_pool.acquired == fake_pool.released

    async def test_syntax_error_is_query_error(self, strategy, fake_pool) -> None:
        fake_pool.outcomes = [pg_errors.SyntaxError('syntax error at or near "SELEC"')]
        with pytest.raises(QueryError) as exc_info:
            await strategy.query("SELEC 1")
        assert exc_info.value.code == "42601"

    async def test_lease_failures_are_retried(self, strategy, fake_pool, sleeps) -> None:
        fake_pool.acquire_failures = [PoolTimeout("couldn't get a connection after 30.00 sec")]
        await strategy.query("SELECT 1 AS health")
        assert sleeps == [0.1]

    async def test_concurrent_queries_release_every_lease(self, strategy, fake_pool) -> None:
        fake_pool.outcomes = [_reset(), pg_errors.UniqueViolation("dup")]

        results = await asyncio.gather(
            *(strategy.query("SELECT 1 AS health") for _ in range(6)),
            return_exceptions=True,
        )

        assert any(isinstance(r, ConstraintViolation) for r in results)
        assert fake_pool.acquired == fake_pool.released

    async def test_dialect_translation(self, make_strategy, fake_pool) -> None:
        strategy = make_strategy(translate_dialect=True)
        await strategy.initialize()

        await strategy.query("SELECT * FROM invoices WHERE day = date('now')")

        assert fake_pool.statements[-1][0] == "SELECT * FROM invoices WHERE day = CURRENT_DATE"
        await strategy.close()

    async def test_query_before_initialize(self, make_strategy) -> None:
        with pytest.raises(AdapterStateError, match="uninitialized"):
            await make_strategy().query("SELECT 1")


class TestExecute:
    async def test_runs_script_once(self, strategy, fake_pool) -> None:
        script = "CREATE TABLE a (id INT); CREATE TABLE b (id INT);"
        assert await strategy.execute(script) is True
        assert fake_pool.statements[-1] == (script, None)

    async def test_no_retry_on_retryable_failure(self, strategy, fake_pool, sleeps) -> None:
        fake_pool.outcomes = [_reset()]
        before = len(fake_pool.statements)

        with pytest.raises(ConnectionError) as exc_info:
            await strategy.execute("CREATE INDEX i ON t (id)")

        assert len(fake_pool.statements) - before == 1
        assert sleeps == []
        assert exc_info.value.sql == "CREATE INDEX i ON t (id)"
        assert fake_pool.acquired == fake_pool.released

    async def test_duplicate_object(self, strategy, fake_pool) -> None:
        fake_pool.outcomes = [pg_errors.DuplicateTable('relation "t" already exists')]
        with pytest.raises(ConstraintViolation):
            await strategy.execute("CREATE TABLE t (id INT)")


class TestHealth:
    async def test_healthy(self, strategy) -> None:
        assert await strategy.health_check() is True

    async def test_failure_returns_false(self, strategy, fake_pool) -> None:
        fake_pool.acquire_failures = [_refused()]
        assert await strategy.health_check() is False
        assert fake_pool.acquired == fake_pool.released

    async def test_unexpected_result(self, strategy, fake_pool, cursor) -> None:
        fake_pool.outcomes = [cursor([{"health": 0}])]
        assert await strategy.health_check() is False

    async def test_before_initialize(self, make_strategy) -> None:
        assert await make_strategy().health_check() is False

    async def test_background_probe_degrades_and_recovers(
        self, make_strategy, fake_pool, pipeline
    ) -> None:
        handler = Mock()
        pipeline.register("alerts", handler)
        strategy = make_strategy(health_check_interval=10)
        await strategy.initialize()
        fake_pool.fail_forever = _reset()

        for _ in range(100):
            if handler.called:
                break
            await asyncio.sleep(0.01)

        assert strategy.state is AdapterState.DEGRADED
        assert handler.call_args.args[1] == "Database connection was reset."

        fake_pool.fail_forever = None
        assert await strategy.health_check() is True
        assert strategy.state is AdapterState.READY
        await strategy.close()


class TestPoolObservers:
    async def test_reconnect_failure_dispatched(self, strategy, fake_pool, pipeline) -> None:
        handler = Mock()
        pipeline.register("alerts", handler)

        fake_pool.options["reconnect_failed"](fake_pool)

        handler.assert_called_once()
        assert strategy.state is AdapterState.DEGRADED
        assert pipeline.last_error.code == "POOL_RECONNECT_FAILED"

    async def test_failed_check_dispatched_and_raised(self, strategy, fake_pool, pipeline) -> None:
        handler = Mock()
        pipeline.register("alerts", handler)
        broken = Mock()
        broken.execute = Mock(side_effect=_reset())

        with pytest.raises(OSError):
            await fake_pool.options["check"](broken)

        handler.assert_called_once()

    async def test_handler_errors_are_contained(self, strategy, fake_pool, pipeline) -> None:
        survivor = Mock()
        pipeline.register("broken", Mock(side_effect=RuntimeError("handler bug")))
        pipeline.register("survivor", survivor)

        fake_pool.options["reconnect_failed"](fake_pool)

        survivor.assert_called_once()


class TestClose:
    async def test_close_twice(self, make_strategy, fake_pool) -> None:
        strategy = make_strategy(health_check_interval=10)
        await strategy.initialize()

        await strategy.close()
        await strategy.close()

        assert fake_pool.close_calls == 1
        assert strategy.state is AdapterState.CLOSED

    async def test_use_after_close(self, make_strategy) -> None:
        strategy = make_strategy()
        await strategy.initialize()
        await strategy.close()

        with pytest.raises(AdapterStateError, match="closed"):
            await strategy.query("SELECT 1")
        with pytest.raises(AdapterStateError):
            await strategy.initialize()

    async def test_close_without_initialize(self, make_strategy) -> None:
        strategy = make_strategy()
        await strategy.close()
        assert strategy.state is AdapterState.CLOSED

    async def test_pool_stats(self, strategy) -> None:
        assert strategy.pool_stats()["requests_num"] == 1
