"""Backend strategies for the ConnectionAdapter."""

from __future__ import annotations

from tenant_db.adapters.protocol import BackendStrategy

__all__ = ["BackendStrategy"]
