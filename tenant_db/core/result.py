"""Backend-agnostic query result."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a statement plus write metadata.

    For reads ``row_count == len(rows)``. For writes without a result set
    ``row_count`` is the number of affected rows.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    last_insert_id: int | None = None

    def first(self) -> dict[str, Any] | None:
        """First row, or None for an empty result."""
        return self.rows[0] if self.rows else None


def rows_to_dicts(
    description: Sequence[Any] | None,
    raw_rows: Sequence[Any],
) -> list[dict[str, Any]]:
    """Convert driver rows to plain dicts.

    Handles both tuple-like rows and mapping rows (psycopg ``dict_row``,
    ``sqlite3.Row``) from different backends.
    """
    if description is None or not raw_rows:
        return []

    first_row = raw_rows[0]
    if isinstance(first_row, Mapping):
        return [dict(row) for row in raw_rows]
    if hasattr(first_row, "keys"):
        # sqlite3.Row is not a Mapping but supports keys() and indexing
        return [{key: row[key] for key in row.keys()} for row in raw_rows]

    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in raw_rows]


def id_column_value(rows: list[dict[str, Any]]) -> int | None:
    """Read ``id`` from the first row, the conventional generated-key column.

    This is a best-effort convention, not a contract: tables whose key is
    named differently yield None.
    """
    if not rows:
        return None
    value = rows[0].get("id")
    if value is None:
        logger.debug("No 'id' column in first row; last_insert_id unavailable")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Non-integer 'id' column %r; last_insert_id unavailable", value)
        return None
