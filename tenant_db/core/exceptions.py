"""tenant-db exception hierarchy.

Every error that reaches a caller is a TenantDBError. Backend driver
exceptions are kept on ``original`` and chained as ``__cause__``, never
raised bare.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Coarse error category carried by every normalized error."""

    CONNECTION = "connection"
    QUERY = "query"
    CONSTRAINT = "constraint"
    NOT_IMPLEMENTED = "not_implemented"
    CONFIGURATION = "configuration"
    STATE = "state"


class TenantDBError(Exception):
    """Base exception for all tenant-db errors."""

    kind: ErrorKind = ErrorKind.QUERY


# --- Normalized backend errors ---


class AdapterError(TenantDBError):
    """Structured error produced from a backend failure.

    Carries the friendly message, the native error code, the original
    exception, the failing statement and parameters, backend diagnostics
    when the driver exposes them, and the time the error was normalized.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "UNKNOWN",
        original: BaseException | None = None,
        sql: str | None = None,
        params: Any = None,
        retryable: bool = False,
        constraint: str | None = None,
        table: str | None = None,
        column: str | None = None,
        data_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.original = original
        self.sql = sql
        self.params = params
        self.retryable = retryable
        self.constraint = constraint
        self.table = table
        self.column = column
        self.data_type = data_type
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Diagnostic context suitable for structured logging."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "sql": self.sql,
            "params": self.params,
            "retryable": self.retryable,
            "constraint": self.constraint,
            "table": self.table,
            "column": self.column,
            "data_type": self.data_type,
            "timestamp": self.timestamp.isoformat(),
            "original": repr(self.original) if self.original is not None else None,
        }


class ConnectionError(AdapterError):  # noqa: A001
    """Raised when a backend connection cannot be established or kept."""

    kind = ErrorKind.CONNECTION


class QueryError(AdapterError):
    """Raised when a statement fails to execute."""

    kind = ErrorKind.QUERY


class ConstraintViolation(QueryError):
    """Raised on uniqueness, foreign-key, not-null or check violations."""

    kind = ErrorKind.CONSTRAINT


class NotImplementedBackendError(AdapterError):
    """Raised by backends that exist only as placeholders."""

    kind = ErrorKind.NOT_IMPLEMENTED

    def __init__(self, backend: str, operation: str) -> None:
        self.backend = backend
        self.operation = operation
        super().__init__(
            f"{backend} backend does not implement '{operation}'",
            code="NOT_IMPLEMENTED",
        )


# --- Configuration ---


class ConfigurationError(TenantDBError):
    """Raised for missing or invalid adapter configuration."""

    kind = ErrorKind.CONFIGURATION


class ScriptNotFoundError(ConfigurationError):
    """Raised when a bootstrap SQL script cannot be located."""

    def __init__(self, script_name: str, script_dir: str | None) -> None:
        self.script_name = script_name
        self.script_dir = script_dir
        where = script_dir if script_dir is not None else "<no script_dir configured>"
        super().__init__(f"SQL script not found: '{script_name}' in {where}")


# --- Lifecycle ---


class AdapterStateError(TenantDBError):
    """Raised when an operation is invalid for the adapter's lifecycle state."""

    kind = ErrorKind.STATE

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} adapter in state '{current_state}'")
