"""Backend and lifecycle enumerations."""

from __future__ import annotations

from enum import Enum
from typing import Any

# Legacy names used by older deployment configs.
_KIND_ALIASES: dict[str, str] = {
    "file": "embedded",
    "sqlite": "embedded",
    "postgresql": "networked",
    "postgres": "networked",
}


class BackendKind(Enum):
    """Supported backend strategies."""

    EMBEDDED = "embedded"
    NETWORKED = "networked"
    HTTP = "http"

    @classmethod
    def parse(cls, value: Any) -> BackendKind:
        """Resolve a config value to a kind. Unrecognized values mean embedded."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        name = _KIND_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.EMBEDDED


class AdapterState(Enum):
    """Connection lifecycle states."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"
