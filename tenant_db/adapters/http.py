"""HTTP backend placeholder.

Reserved for a future HTTP-fronted database. Every data operation fails
with NotImplementedBackendError; the health check trivially passes and
close does nothing.
"""

from __future__ import annotations

import logging
from typing import Any

from tenant_db.core.config import AdapterConfig
from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.errors import ErrorPipeline
from tenant_db.core.exceptions import NotImplementedBackendError
from tenant_db.core.result import QueryResult

logger = logging.getLogger(__name__)


class HttpStubStrategy:
    """Stub strategy for the ``http`` backend kind."""

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
        self._state = AdapterState.UNINITIALIZED

    @property
    def kind(self) -> BackendKind:
        return BackendKind.HTTP

    @property
    def state(self) -> AdapterState:
        return self._state

    def _unsupported(self, operation: str) -> NotImplementedBackendError:
        return self._errors.remember(NotImplementedBackendError("HTTP", operation))

    async def initialize(self) -> None:
        self._logger.info("Initializing HTTP-based database connection")
        raise self._unsupported("initialize")

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        raise self._unsupported("query")

    async def execute(self, sql: str) -> bool:
        raise self._unsupported("execute")

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._state = AdapterState.CLOSED
