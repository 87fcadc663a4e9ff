"""SQL script registry - loads bootstrap scripts from a directory.

Each backend kind has its own file per bootstrap purpose:

    schema       schema.sql       / init-postgres.sql
    migration    migration.sql    / migration-postgres.sql
    constraints  constraints.sql  / constraints-postgres.sql
    indexes      indexes.sql      / indexes-postgres.sql

Files are read on first use and cached, so constructing a registry
performs no I/O.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from tenant_db.core.enums import BackendKind
from tenant_db.core.exceptions import ConfigurationError, ScriptNotFoundError


class ScriptPurpose(Enum):
    """Bootstrap steps, in the order they run at startup."""

    SCHEMA = "schema"
    MIGRATION = "migration"
    CONSTRAINTS = "constraints"
    INDEXES = "indexes"


_EMBEDDED_SCRIPTS: dict[ScriptPurpose, str] = {
    ScriptPurpose.SCHEMA: "schema.sql",
    ScriptPurpose.MIGRATION: "migration.sql",
    ScriptPurpose.CONSTRAINTS: "constraints.sql",
    ScriptPurpose.INDEXES: "indexes.sql",
}

SCRIPT_NAMES: dict[BackendKind, dict[ScriptPurpose, str]] = {
    BackendKind.EMBEDDED: _EMBEDDED_SCRIPTS,
    BackendKind.HTTP: _EMBEDDED_SCRIPTS,
    BackendKind.NETWORKED: {
        ScriptPurpose.SCHEMA: "init-postgres.sql",
        ScriptPurpose.MIGRATION: "migration-postgres.sql",
        ScriptPurpose.CONSTRAINTS: "constraints-postgres.sql",
        ScriptPurpose.INDEXES: "indexes-postgres.sql",
    },
}


def script_name(kind: BackendKind, purpose: ScriptPurpose) -> str:
    """File name of the *purpose* script for *kind*."""
    return SCRIPT_NAMES[kind][purpose]


class ScriptRegistry:
    """Reads and caches SQL scripts from a directory.

    Args:
        root_dir: Directory holding the ``.sql`` files, or None when no
            scripts are configured (every lookup then fails).
    """

    def __init__(self, root_dir: Path | str | None) -> None:
        self._root_dir = Path(root_dir) if root_dir is not None else None
        self._scripts: dict[str, str] = {}

    @property
    def root_dir(self) -> Path | None:
        return self._root_dir

    def get(self, name: str) -> str:
        """Return the text of script *name* (e.g. ``"schema.sql"``).

        Raises:
            ScriptNotFoundError: If the directory or file does not exist.
            ConfigurationError: If the file is not valid UTF-8.
        """
        if name in self._scripts:
            return self._scripts[name]
        where = str(self._root_dir) if self._root_dir is not None else None
        if self._root_dir is None:
            raise ScriptNotFoundError(name, where)

        path = self._root_dir / name
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ScriptNotFoundError(name, where) from None
        except UnicodeDecodeError as e:
            raise ConfigurationError(f"SQL script '{name}' is not valid UTF-8: {e}") from e
        self._scripts[name] = text
        return text

    def for_purpose(self, kind: BackendKind, purpose: ScriptPurpose) -> str:
        """Return the *purpose* script for backend *kind*."""
        return self.get(script_name(kind, purpose))

    def has(self, name: str) -> bool:
        """Check if script *name* exists, without reading it."""
        if name in self._scripts:
            return True
        return self._root_dir is not None and (self._root_dir / name).is_file()

    @property
    def script_names(self) -> list[str]:
        """All ``.sql`` files in the directory, sorted alphabetically."""
        if self._root_dir is None or not self._root_dir.exists():
            return []
        return sorted(p.name for p in self._root_dir.glob("*.sql"))

    def __len__(self) -> int:
        return len(self.script_names)
