"""Schema bootstrap.

Loads the backend's schema, migration, constraint and index scripts and
executes each through the adapter. Only the schema step may fail
startup; the others are expected to be re-runnable, so their failures
("already exists" and the like) are logged and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from tenant_db.core.enums import BackendKind
from tenant_db.core.exceptions import AdapterError, ConfigurationError
from tenant_db.core.scripts import ScriptPurpose, ScriptRegistry, script_name

logger = logging.getLogger(__name__)


class SchemaBootstrap:
    """Applies bootstrap scripts for one backend kind."""

    def __init__(
        self,
        kind: BackendKind,
        scripts: ScriptRegistry,
        execute: Callable[[str], Awaitable[bool]],
        log: logging.Logger | None = None,
    ) -> None:
        self._kind = kind
        self._scripts = scripts
        self._execute = execute
        self._logger = log or logger

    async def apply_schema(self) -> bool:
        """Execute the schema script. Failures propagate."""
        sql = self._scripts.for_purpose(self._kind, ScriptPurpose.SCHEMA)
        await self._execute(sql)
        self._logger.info(
            "Database schema applied from %s",
            script_name(self._kind, ScriptPurpose.SCHEMA),
        )
        return True

    async def apply_migrations(self) -> bool:
        return await self._apply_optional(ScriptPurpose.MIGRATION)

    async def apply_constraints(self) -> bool:
        return await self._apply_optional(ScriptPurpose.CONSTRAINTS)

    async def apply_indexes(self) -> bool:
        return await self._apply_optional(ScriptPurpose.INDEXES)

    async def run_all(self) -> dict[str, bool]:
        """Apply schema, migrations, constraints and indexes in that order."""
        return {
            ScriptPurpose.SCHEMA.value: await self.apply_schema(),
            ScriptPurpose.MIGRATION.value: await self.apply_migrations(),
            ScriptPurpose.CONSTRAINTS.value: await self.apply_constraints(),
            ScriptPurpose.INDEXES.value: await self.apply_indexes(),
        }

    async def _apply_optional(self, purpose: ScriptPurpose) -> bool:
        name = script_name(self._kind, purpose)
        try:
            sql = self._scripts.for_purpose(self._kind, purpose)
            await self._execute(sql)
        except (AdapterError, ConfigurationError, OSError) as e:
            self._logger.warning(
                "Database %s skipped (%s): %s",
                purpose.value,
                name,
                e,
                extra={"script": name, "purpose": purpose.value},
            )
            return False
        self._logger.info("Database %s applied from %s", purpose.value, name)
        return True
