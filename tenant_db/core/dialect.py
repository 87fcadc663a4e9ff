"""SQLite -> PostgreSQL query translation.

Application queries are written against SQLite. When the networked
backend runs with ``translate_dialect`` enabled, the handful of
SQLite-only constructs those queries use are rewritten here: catalog
lookups, ``strftime`` date parts, ``date``/``datetime`` arithmetic,
``printf``-built dates and ``GLOB`` digit checks.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from tenant_db.core.enums import BackendKind

SYSTEM_TABLES_SQL = (
    "SELECT table_name AS name, '' AS sql FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
)
SYSTEM_TABLE_COUNT_SQL = (
    "SELECT COUNT(*) AS count FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
)

_I = re.IGNORECASE

Replacement = str | Callable[[re.Match[str]], str]

# date(<year> || '-' || printf('%02d', <month>) || '-01' ...)
_BUILT_DATE = (
    r"\bdate\(([^)]+?)\s*\|\|\s*'-'\s*\|\|\s*printf\('%02d',\s*([^)]+?)\)\s*\|\|\s*'-01'"
)
_PG_BUILT_DATE = r"DATE(\1 || '-' || LPAD(CAST(\2 AS TEXT), 2, '0') || '-01')"


def _glob_digits(match: re.Match[str]) -> str:
    operator = "!~" if match.group(1) else "~"
    return f"{operator} '^[0-9]{{{match.group(2).count('[0-9]')}}}$'"


# Order matters: '%Y-%m' before bare '%Y', month-end dates before plain ones.
_RULES: tuple[tuple[re.Pattern[str], Replacement], ...] = (
    (
        re.compile(
            r"SELECT\s+name,\s*sql\s+FROM\s+sqlite_master\s+WHERE\s+type\s*=\s*'table'"
            r"\s+AND\s+name\s+NOT\s+LIKE\s+'sqlite_%'",
            _I,
        ),
        SYSTEM_TABLES_SQL,
    ),
    (
        re.compile(r"SELECT\s+sql\s+FROM\s+sqlite_master\s+WHERE\s+name\s*=\s*\?", _I),
        "SELECT '' AS sql",
    ),
    (
        re.compile(
            r"SELECT\s+COUNT\(\*\)\s+as\s+count\s+FROM\s+sqlite_master"
            r"\s+WHERE\s+type\s*=\s*[\"']table[\"']",
            _I,
        ),
        SYSTEM_TABLE_COUNT_SQL,
    ),
    (re.compile(r"strftime\('%Y-%m',\s*([^)]+)\)", _I), r"to_char(\1, 'YYYY-MM')"),
    (re.compile(r"strftime\('%Y',\s*([^)]+)\)", _I), r"EXTRACT(year FROM \1)"),
    (re.compile(r"strftime\('%m',\s*([^)]+)\)", _I), r"EXTRACT(month FROM \1)"),
    (
        re.compile(r"datetime\('now',\s*'-(\d+)\s*months'\)", _I),
        r"CURRENT_TIMESTAMP - INTERVAL '\1 months'",
    ),
    (
        re.compile(r"datetime\('now',\s*'-'\s*\|\|\s*\?\s*\|\|\s*'\s*months'\)", _I),
        "CURRENT_TIMESTAMP - INTERVAL '1 month' * ?",
    ),
    (
        re.compile(_BUILT_DATE + r",\s*'\+1 month',\s*'-1 day'\)", _I),
        _PG_BUILT_DATE + " + INTERVAL '1 month' - INTERVAL '1 day'",
    ),
    (re.compile(_BUILT_DATE + r"\)", _I), _PG_BUILT_DATE),
    (re.compile(r"\b(NOT\s+)?GLOB\s+'((?:\[0-9\])+)'", _I), _glob_digits),
    (re.compile(r"date\('now'\)", _I), "CURRENT_DATE"),
    (re.compile(r"datetime\('now'\)", _I), "CURRENT_TIMESTAMP"),
)


def convert_query(sql: str, kind: BackendKind = BackendKind.NETWORKED) -> str:
    """Rewrite SQLite-specific constructs in *sql* for *kind*.

    Non-networked backends get the statement back unchanged.
    """
    if kind is not BackendKind.NETWORKED:
        return sql
    for pattern, replacement in _RULES:
        sql = pattern.sub(replacement, sql)
    return sql
