"""SQL parameter normalization for the networked backend.

Application SQL is written with SQLite-style placeholders: ``?`` for
positional parameters and ``:name`` for named ones. PostgreSQL-style
``$1`` markers are accepted as well. psycopg expects ``%s`` and
``%(name)s``, so statements are rewritten before execution. String
literals and ``::typecast`` syntax are left untouched.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

# Matches :name but not ::typecast and not inside words
_NAMED_PATTERN = re.compile(r"(?<![:\w]):([a-zA-Z_]\w*)")

# Matches ? or $N
_POSITIONAL_PATTERN = re.compile(r"\?|\$(\d+)")

# Matches single-quoted string literals (with escaped quotes handled)
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^'\\]|\\.)*'")

Params = dict[str, Any] | tuple[Any, ...] | None


def coerce_params(params: Any) -> Params:
    """Normalize *params* to a dict, tuple, or None.

    * ``None`` -> None.
    * Mappings -> ``dict`` (named binding).
    * ``list`` / ``tuple`` -> ``tuple`` (positional binding).
    * Any other scalar -> single-element tuple.
    """
    if params is None:
        return None
    if isinstance(params, Mapping):
        return dict(params)
    if isinstance(params, (tuple, list)):
        return tuple(params)
    return (params,)


def _split_literals(sql: str) -> list[tuple[bool, str]]:
    """Split *sql* into ``(is_literal, text)`` segments."""
    segments: list[tuple[bool, str]] = []
    last_end = 0
    for match in _STRING_LITERAL_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            segments.append((False, sql[last_end:start]))
        segments.append((True, match.group()))
        last_end = end
    if last_end < len(sql):
        segments.append((False, sql[last_end:]))
    return segments


@lru_cache(maxsize=256)
def _convert_named(sql: str) -> str:
    parts: list[str] = []
    for is_literal, text in _split_literals(sql):
        text = text.replace("%", "%%")
        parts.append(text if is_literal else _NAMED_PATTERN.sub(r"%(\1)s", text))
    return "".join(parts)


@lru_cache(maxsize=256)
def _convert_positional(sql: str) -> tuple[str, tuple[int, ...]]:
    """Return the converted SQL and the parameter index bound to each ``%s``."""
    parts: list[str] = []
    order: list[int] = []
    next_index = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal next_index
        if match.group(1) is not None:
            order.append(int(match.group(1)) - 1)
        else:
            order.append(next_index)
            next_index += 1
        return "%s"

    for is_literal, text in _split_literals(sql):
        text = text.replace("%", "%%")
        parts.append(text if is_literal else _POSITIONAL_PATTERN.sub(_replace, text))
    return "".join(parts), tuple(order)


def to_format_style(sql: str, params: Any = None) -> tuple[str, Params]:
    """Rewrite *sql* and *params* for a ``format`` paramstyle driver.

    Without parameters the statement is returned as-is, since the driver
    does not interpret placeholders or ``%`` in that case.

    Raises:
        ValueError: If the positional parameters don't match the markers,
            e.g. extra parameters or a ``$N`` past the supplied ones.
    """
    bound = coerce_params(params)
    if not bound:
        return sql, None
    if isinstance(bound, dict):
        return _convert_named(sql), bound

    converted, order = _convert_positional(sql)
    # $N markers may reuse an index, so count distinct positions
    expected = max(order) + 1 if order else 0
    if expected != len(bound):
        raise ValueError(
            f"Incorrect number of bindings supplied. The statement uses {expected}, "
            f"and there are {len(bound)} supplied."
        )
    if list(order) == list(range(len(bound))):
        return converted, bound
    return converted, tuple(bound[i] for i in order)
