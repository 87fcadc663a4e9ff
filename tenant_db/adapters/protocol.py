"""Backend strategy protocol.

Every backend module MUST implement this protocol so that the
ConnectionAdapter can dispatch to any of them without branching on kind.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from tenant_db.core.enums import AdapterState, BackendKind
from tenant_db.core.result import QueryResult


@runtime_checkable
class BackendStrategy(Protocol):
    """Asynchronous backend strategy protocol."""

    @property
    def kind(self) -> BackendKind:
        """Backend kind this strategy serves."""
        ...

    @property
    def state(self) -> AdapterState:
        """Current lifecycle state."""
        ...

    async def initialize(self) -> None:
        """Open the backend connection or pool."""
        ...

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        """Execute a statement and return its rows."""
        ...

    async def execute(self, sql: str) -> bool:
        """Execute a script or statement without returning rows."""
        ...

    async def health_check(self) -> bool:
        """Run a trivial probe. Never raises."""
        ...

    async def close(self) -> None:
        """Release the backend connection or pool. Idempotent."""
        ...
