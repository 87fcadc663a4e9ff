"""tenant-db - unified async data access over SQLite and PostgreSQL."""

from __future__ import annotations

from tenant_db.core.adapter import ConnectionAdapter
from tenant_db.core.config import AdapterConfig, PoolConfig
from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.errors import ErrorPipeline, is_retryable, normalize_error
from tenant_db.core.exceptions import (
    AdapterError,
    AdapterStateError,
    ConfigurationError,
    ConnectionError,  # noqa: A004
    ConstraintViolation,
    ErrorKind,
    NotImplementedBackendError,
    QueryError,
    ScriptNotFoundError,
    TenantDBError,
)
from tenant_db.core.result import QueryResult
from tenant_db.core.retry import RetryPolicy
from tenant_db.core.scripts import ScriptPurpose, ScriptRegistry

__all__ = [
    # Adapter
    "ConnectionAdapter",
    "QueryResult",
    # Config
    "AdapterConfig",
    "PoolConfig",
    # Enums
    "BackendKind",
    "AdapterState",
    "ErrorKind",
    "ScriptPurpose",
    # Errors
    "ErrorPipeline",
    "RetryPolicy",
    "ScriptRegistry",
    "is_retryable",
    "normalize_error",
    # Exceptions
    "TenantDBError",
    "AdapterError",
    "ConnectionError",
    "QueryError",
    "ConstraintViolation",
    "NotImplementedBackendError",
    "ConfigurationError",
    "ScriptNotFoundError",
    "AdapterStateError",
]
