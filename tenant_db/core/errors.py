"""Error normalization and retry classification.

Every backend failure goes through this module before it reaches a
caller: a native code is extracted, the code is classified as retryable
or not, mapped to a friendly message, and wrapped once in the matching
AdapterError subclass. Pool-level failures additionally fan out to the
named handlers registered on an ErrorPipeline.
"""

from __future__ import annotations

import asyncio
import errno
import inspect
import logging
import socket
import sqlite3
from collections.abc import Callable
from typing import Any

from tenant_db.core.exceptions import (
    AdapterError,
    ConnectionError,  # noqa: A004
    ConstraintViolation,
    QueryError,
)

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException, str], Any]

UNKNOWN_CODE = "UNKNOWN"

RETRYABLE_TRANSPORT_CODES = frozenset(
    {
        "ECONNRESET",
        "ECONNREFUSED",
        "ETIMEDOUT",
        "ENOTFOUND",
        "EHOSTUNREACH",
        "ENETUNREACH",
        "EAI_AGAIN",
        "EADDRNOTAVAIL",
    }
)

RETRYABLE_SERVER_CODES = frozenset(
    {
        "53300",  # too_many_connections
        "53400",  # configuration_limit_exceeded
        "57P01",  # admin_shutdown
        "57P02",  # crash_shutdown
        "57P03",  # cannot_connect_now
        "58000",  # system_error
        "58030",  # io_error
        "XX000",  # internal_error
        "XX001",  # data_corrupted
        "XX002",  # index_corrupted
    }
)

# Re-declaring a table, index or column is reported as a uniqueness
# violation on the catalog.
DUPLICATE_OBJECT_CODES = frozenset({"42P07", "42710", "42701"})

FRIENDLY_MESSAGES: dict[str, str] = {
    "ECONNREFUSED": "Database connection refused. Please check if the database is running.",
    "ENOTFOUND": "Database host not found. Please check the hostname.",
    "EAI_AGAIN": "Database host could not be resolved. Please check DNS and network connectivity.",
    "ECONNRESET": "Database connection was reset.",
    "ETIMEDOUT": "Database connection timed out. Please check network connectivity.",
    "EHOSTUNREACH": "Database host is unreachable. Please check network connectivity.",
    "ENETUNREACH": "Database network is unreachable. Please check network connectivity.",
    "EADDRNOTAVAIL": "Database address is not available. Please check the host and port.",
    "28P01": "Database authentication failed. Please check username and password.",
    "28000": "Database authorization failed. Please check the user's permissions.",
    "3D000": "Database does not exist. Please check the database name.",
    "42P01": "Table does not exist. Please check the database schema.",
    "42703": "Column does not exist. Please check the database schema.",
    "42601": "SQL syntax error. Please check the statement.",
    "42P07": "Database object already exists.",
    "42710": "Database object already exists.",
    "42701": "Column already exists.",
    "23000": "Integrity constraint violation.",
    "23505": "Duplicate key violation. The record already exists.",
    "23503": "Foreign key violation. Referenced record does not exist.",
    "23502": "Not null violation. Required field is missing.",
    "23514": "Check constraint violation. Invalid data provided.",
    "53300": "Too many database connections. Please try again shortly.",
    "57P01": "Database server is shutting down.",
    "57P03": "Database server is not accepting connections yet.",
    "SQLITE_BUSY": "Database file is locked by another connection.",
    "SQLITE_CANTOPEN": "Database file could not be opened. Please check the path and permissions.",
}

# SQLite extended result names -> SQLSTATE equivalents
_SQLITE_ERRORNAMES: dict[str, str] = {
    "SQLITE_CONSTRAINT_UNIQUE": "23505",
    "SQLITE_CONSTRAINT_PRIMARYKEY": "23505",
    "SQLITE_CONSTRAINT_FOREIGNKEY": "23503",
    "SQLITE_CONSTRAINT_NOTNULL": "23502",
    "SQLITE_CONSTRAINT_CHECK": "23514",
    "SQLITE_CONSTRAINT": "23000",
}

# Message fragments for drivers that don't expose a structured code.
_SQLITE_MESSAGES: tuple[tuple[str, str], ...] = (
    ("unique constraint failed", "23505"),
    ("foreign key constraint failed", "23503"),
    ("not null constraint failed", "23502"),
    ("check constraint failed", "23514"),
    ("already exists", "42P07"),
    ("duplicate column name", "42701"),
    ("no such table", "42P01"),
    ("no such column", "42703"),
    ("syntax error", "42601"),
    ("database is locked", "SQLITE_BUSY"),
    ("unable to open database file", "SQLITE_CANTOPEN"),
)

_TRANSPORT_MESSAGES: tuple[tuple[str, str], ...] = (
    ("connection refused", "ECONNREFUSED"),
    ("connection reset", "ECONNRESET"),
    ("server closed the connection unexpectedly", "ECONNRESET"),
    ("temporary failure in name resolution", "EAI_AGAIN"),
    ("could not translate host name", "ENOTFOUND"),
    ("name or service not known", "ENOTFOUND"),
    ("nodename nor servname", "ENOTFOUND"),
    ("no route to host", "EHOSTUNREACH"),
    ("network is unreachable", "ENETUNREACH"),
    ("cannot assign requested address", "EADDRNOTAVAIL"),
    ("timeout expired", "ETIMEDOUT"),
    ("timed out", "ETIMEDOUT"),
    ("couldn't get a connection", "ETIMEDOUT"),
)

_GAI_CODES: dict[int, str] = {
    socket.EAI_AGAIN: "EAI_AGAIN",
    socket.EAI_NONAME: "ENOTFOUND",
}

_SQLITE_CONNECTION_CODES = frozenset({"SQLITE_CANTOPEN"})


def _match_message(text: str, table: tuple[tuple[str, str], ...]) -> str | None:
    lowered = text.lower()
    for fragment, code in table:
        if fragment in lowered:
            return code
    return None


def _sqlite_code(exc: sqlite3.Error) -> str:
    name = getattr(exc, "sqlite_errorname", None)
    if name in _SQLITE_ERRORNAMES:
        return _SQLITE_ERRORNAMES[name]
    matched = _match_message(str(exc), _SQLITE_MESSAGES)
    if matched is not None:
        return matched
    return name or UNKNOWN_CODE


def error_code(exc: BaseException) -> str:
    """Extract the native error code from a backend exception."""
    if isinstance(exc, AdapterError):
        return exc.code

    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate:
        return str(sqlstate)

    if isinstance(exc, sqlite3.Error):
        return _sqlite_code(exc)

    if isinstance(exc, socket.gaierror):
        return _GAI_CODES.get(exc.errno, "ENOTFOUND")
    if isinstance(exc, OSError) and exc.errno in errno.errorcode:
        return errno.errorcode[exc.errno]
    if isinstance(exc, ConnectionRefusedError):
        return "ECONNREFUSED"
    if isinstance(exc, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return "ETIMEDOUT"

    matched = _match_message(str(exc), _TRANSPORT_MESSAGES)
    return matched if matched is not None else UNKNOWN_CODE


def is_retryable_code(code: str) -> bool:
    return code in RETRYABLE_TRANSPORT_CODES or code in RETRYABLE_SERVER_CODES


def is_retryable(exc: BaseException) -> bool:
    """Return True if retrying the failed operation can succeed.

    Transport failures and transient server states are retryable.
    Constraint violations, syntax errors, authentication failures and
    missing relations fail fast.
    """
    if isinstance(exc, AdapterError):
        return exc.retryable
    return is_retryable_code(error_code(exc))


def friendly_message(exc: BaseException, code: str | None = None) -> str:
    """Translate a backend error into a human-readable explanation."""
    if code is None:
        code = error_code(exc)
    if code in FRIENDLY_MESSAGES:
        return FRIENDLY_MESSAGES[code]
    return f"Database error ({code}): {exc}"


def _error_class(code: str) -> type[AdapterError]:
    if (
        code in RETRYABLE_TRANSPORT_CODES
        or code in _SQLITE_CONNECTION_CODES
        or code == "3D000"
        or code.startswith(("08", "28", "53", "57P"))
    ):
        return ConnectionError
    if code.startswith("23") or code in DUPLICATE_OBJECT_CODES:
        return ConstraintViolation
    return QueryError


def _diagnostics(exc: BaseException) -> dict[str, str | None]:
    diag = getattr(exc, "diag", None)
    if diag is None:
        return {}
    return {
        "constraint": getattr(diag, "constraint_name", None),
        "table": getattr(diag, "table_name", None),
        "column": getattr(diag, "column_name", None),
        "data_type": getattr(diag, "datatype_name", None),
    }


def normalize_error(
    exc: BaseException,
    sql: str | None = None,
    params: Any = None,
    *,
    error_class: type[AdapterError] | None = None,
) -> AdapterError:
    """Wrap *exc* into the matching AdapterError with full diagnostic context.

    Errors that are already normalized are returned unchanged, so the
    enrichment happens exactly once per failure.
    """
    if isinstance(exc, AdapterError):
        return exc

    code = error_code(exc)
    cls = error_class or _error_class(code)
    return cls(
        friendly_message(exc, code),
        code=code,
        original=exc,
        sql=sql,
        params=params,
        retryable=is_retryable_code(code),
        **_diagnostics(exc),
    )


class ErrorPipeline:
    """Classifies pool-level errors and fans them out to named handlers.

    A handler that raises is logged and skipped; the remaining handlers
    still run and the pipeline itself never raises.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._handlers: dict[str, ErrorHandler] = {}
        self._logger = log or logger
        self._pending: set[asyncio.Task[Any]] = set()
        self.last_error: AdapterError | None = None

    def register(self, name: str, handler: ErrorHandler) -> None:
        """Register *handler* under *name*, replacing any previous one."""
        if not callable(handler):
            raise TypeError(f"Error handler '{name}' is not callable")
        self._handlers[name] = handler

    def unregister(self, name: str) -> bool:
        """Remove a handler. Returns False if *name* was not registered."""
        return self._handlers.pop(name, None) is not None

    @property
    def handler_names(self) -> list[str]:
        return list(self._handlers)

    def remember(self, error: AdapterError) -> AdapterError:
        """Record *error* as the most recent failure without dispatching it."""
        self.last_error = error
        return error

    def handle(self, exc: BaseException, *, source: str = "pool") -> AdapterError:
        """Normalize *exc*, log it and invoke every registered handler."""
        error = self.remember(normalize_error(exc))
        self._logger.error(
            "Database %s error [%s]: %s",
            source,
            error.code,
            error.message,
            extra={"db_error": error.to_dict(), "source": source},
        )
        original = error.original if error.original is not None else error
        for name, handler in list(self._handlers.items()):
            try:
                outcome = handler(original, error.message)
                if inspect.isawaitable(outcome):
                    self._track(name, outcome)
            except Exception:
                self._logger.exception("Error in error handler '%s'", name)
        return error

    def _track(self, name: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._pending.discard(finished)
            if finished.cancelled():
                return
            failure = finished.exception()
            if failure is not None:
                self._logger.error(
                    "Error in error handler '%s'", name, exc_info=failure
                )

        task.add_done_callback(_done)
