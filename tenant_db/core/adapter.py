"""ConnectionAdapter - one data-access surface over interchangeable backends.

The adapter picks a backend strategy once, from ``config.kind``, and
forwards every call to it. Callers never branch on the backend: results
come back as QueryResult and failures as the TenantDBError hierarchy.

Usage:

    async with ConnectionAdapter({"kind": "embedded", "path": "app.db"}) as db:
        result = await db.query("SELECT 1 AS health")
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

from tenant_db.adapters.protocol import BackendStrategy
from tenant_db.core.config import AdapterConfig
from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.errors import ErrorHandler, ErrorPipeline
from tenant_db.core.exceptions import (
    AdapterError,
    AdapterStateError,
    ConfigurationError,
)
from tenant_db.core.result import QueryResult
from tenant_db.core.schema import SchemaBootstrap
from tenant_db.core.scripts import ScriptRegistry

_default_logger = logging.getLogger("tenant_db")

# Strategy module mapping: kind -> (module_path, class_name)
_STRATEGY_MAP: dict[BackendKind, tuple[str, str]] = {
    BackendKind.EMBEDDED: ("tenant_db.adapters.embedded", "EmbeddedFileStrategy"),
    BackendKind.NETWORKED: ("tenant_db.adapters.networked", "NetworkedPooledStrategy"),
    BackendKind.HTTP: ("tenant_db.adapters.http", "HttpStubStrategy"),
}


def _load_strategy(
    config: AdapterConfig, errors: ErrorPipeline, log: logging.Logger
) -> BackendStrategy:
    """Instantiate the strategy for ``config.kind``."""
    module_path, cls_name = _STRATEGY_MAP[config.kind]
    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Failed to load {config.kind.value} backend: {e}"
        ) from e
    return cls(config, errors=errors, log=log)


class ConnectionAdapter:
    """Unified async data access for embedded, networked and HTTP backends.

    Construction validates the config and selects the strategy; it does
    no I/O. Call :meth:`initialize` (or use ``async with``) before issuing
    statements.

    Args:
        config: An AdapterConfig or a mapping accepted by
            :meth:`AdapterConfig.load`.
        logger: Logger for adapter, strategy and pipeline records.
        strategy: Pre-built strategy, replacing the one selected by kind.
        errors: Error pipeline shared with an injected strategy.
    """

    def __init__(
        self,
        config: AdapterConfig | Mapping[str, Any],
        *,
        logger: logging.Logger | None = None,
        strategy: BackendStrategy | None = None,
        errors: ErrorPipeline | None = None,
    ) -> None:
        self._config = AdapterConfig.load(config)
        self._logger = logger or _default_logger
        self._errors = errors or ErrorPipeline(self._logger)
        self._strategy = strategy or _load_strategy(self._config, self._errors, self._logger)
        self._bootstrap = SchemaBootstrap(
            self._config.kind,
            ScriptRegistry(self._config.script_dir),
            self.execute,
            log=self._logger,
        )
        self._closed = False

    # --- Introspection ---

    @property
    def config(self) -> AdapterConfig:
        return self._config

    @property
    def kind(self) -> BackendKind:
        return self._config.kind

    @property
    def strategy(self) -> BackendStrategy:
        return self._strategy

    @property
    def state(self) -> AdapterState:
        if self._closed:
            return AdapterState.CLOSED
        return self._strategy.state

    @property
    def is_connected(self) -> bool:
        return self.state in (AdapterState.READY, AdapterState.DEGRADED)

    @property
    def last_error(self) -> AdapterError | None:
        """The most recent normalized failure, if any."""
        return self._errors.last_error

    def get_connection_info(self) -> dict[str, Any]:
        """Backend kind and connection target. Never includes the password."""
        return self._config.describe()

    # --- Error handlers ---

    def register_error_handler(self, name: str, handler: ErrorHandler) -> None:
        """Call ``handler(original_error, friendly_message)`` on pool-level failures.

        Registering under an existing name replaces the previous handler.
        """
        self._errors.register(name, handler)

    def unregister_error_handler(self, name: str) -> bool:
        return self._errors.unregister(name)

    # --- Lifecycle ---

    def _ensure_open(self, action: str) -> None:
        if self._closed:
            raise AdapterStateError(AdapterState.CLOSED.value, action)

    async def initialize(self) -> None:
        """Connect the backend. Safe to call again once connected."""
        self._ensure_open("initialize")
        self._logger.info(
            "Initializing %s database adapter",
            self._config.kind.value,
            extra={"connection": self.get_connection_info()},
        )
        await self._strategy.initialize()

    async def close(self) -> None:
        """Release every backend resource. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._strategy.close()

    async def __aenter__(self) -> ConnectionAdapter:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # --- Statements ---

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        """Execute one statement and return its rows and counters.

        Args:
            sql: Statement text with ``?``, ``$N`` or ``:name`` placeholders.
            params: Positional sequence or named mapping, or None.

        Raises:
            ConnectionError: The backend is unreachable.
            ConstraintViolation: An integrity constraint was violated.
            QueryError: Any other statement failure.
        """
        self._ensure_open("query")
        try:
            return await self._strategy.query(sql, params)
        except AdapterError as e:
            self._errors.remember(e)
            raise

    async def execute(self, sql: str) -> bool:
        """Execute a script of one or more statements without parameters."""
        self._ensure_open("execute")
        try:
            return await self._strategy.execute(sql)
        except AdapterError as e:
            self._errors.remember(e)
            raise

    async def health_check(self) -> bool:
        """True if the backend answers the probe. Never raises."""
        if self._closed:
            return False
        return await self._strategy.health_check()

    # --- Schema bootstrap ---

    async def apply_schema(self) -> bool:
        """Apply the backend's schema script. Failures propagate."""
        return await self._bootstrap.apply_schema()

    async def apply_migrations(self) -> bool:
        """Apply the migration script. Failures are logged and return False."""
        return await self._bootstrap.apply_migrations()

    async def apply_constraints(self) -> bool:
        return await self._bootstrap.apply_constraints()

    async def apply_indexes(self) -> bool:
        return await self._bootstrap.apply_indexes()

    async def bootstrap(self) -> dict[str, bool]:
        """Apply schema, migrations, constraints and indexes in order."""
        return await self._bootstrap.run_all()
