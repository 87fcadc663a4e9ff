"""Adapter configuration.

AdapterConfig is an immutable Pydantic model supplied once when an
adapter is constructed. Field names are snake_case; the camelCase names
used by the application's JSON config (``retryDelay``, ``type``, ``name``)
are accepted as aliases.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic import field_validator, model_validator

from tenant_db.core.enums import BackendKind
from tenant_db.core.exceptions import ConfigurationError

DEFAULT_DATABASE_PATH = "tenant_manager.db"

# Environment variable -> config field
_ENV_FIELDS: dict[str, str] = {
    "DATABASE_HOST": "host",
    "DATABASE_PORT": "port",
    "DATABASE_NAME": "database",
    "DATABASE_USER": "user",
    "DATABASE_PASSWORD": "password",
    "DATABASE_SSL": "ssl",
    "DATABASE_SCRIPT_DIR": "script_dir",
    "HEALTH_CHECK_INTERVAL": "health_check_interval",
}


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class PoolConfig(BaseModel):
    """Connection pool sizing for the networked backend."""

    model_config = ConfigDict(frozen=True)

    max: int = Field(default=10, ge=1)
    min: int = Field(default=2, ge=0)
    idle: int = Field(default=30000, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> PoolConfig:
        if self.min > self.max:
            raise ValueError(f"pool.min ({self.min}) must not exceed pool.max ({self.max})")
        return self


class AdapterConfig(BaseModel):
    """Configuration for a ConnectionAdapter. All durations are milliseconds."""

    model_config = ConfigDict(frozen=True)

    kind: BackendKind = Field(validation_alias=_alias("kind", "type"))
    path: Path | None = None
    host: str | None = None
    port: int = 5432
    database: str | None = Field(default=None, validation_alias=_alias("database", "name"))
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    timeout: int = Field(default=30000, ge=0)
    statement_timeout: int = Field(
        default=30000, ge=0, validation_alias=_alias("statement_timeout", "statementTimeout")
    )
    query_timeout: int = Field(
        default=30000, ge=0, validation_alias=_alias("query_timeout", "queryTimeout")
    )
    retries: int = Field(default=3, ge=1)
    retry_delay: int = Field(
        default=1000, ge=0, validation_alias=_alias("retry_delay", "retryDelay")
    )
    max_connection_attempts: int = Field(
        default=5,
        ge=1,
        validation_alias=_alias("max_connection_attempts", "maxConnectionAttempts"),
    )
    health_check_interval: int = Field(
        default=30000,
        ge=0,
        validation_alias=_alias("health_check_interval", "healthCheckInterval"),
    )
    ssl: bool = False
    application_name: str = Field(
        default="tenant-manager",
        validation_alias=_alias("application_name", "applicationName"),
    )
    script_dir: Path | None = Field(
        default=None, validation_alias=_alias("script_dir", "scriptDir")
    )
    translate_dialect: bool = Field(
        default=False, validation_alias=_alias("translate_dialect", "translateDialect")
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: Any) -> BackendKind:
        if value is None or value == "":
            raise ValueError("kind is required")
        return BackendKind.parse(value)

    @model_validator(mode="after")
    def _check_target(self) -> AdapterConfig:
        if self.kind is BackendKind.EMBEDDED and self.path is None:
            raise ValueError("path is required for the embedded backend")
        if self.kind is BackendKind.NETWORKED and not self.host:
            raise ValueError("host is required for the networked backend")
        return self

    @classmethod
    def load(cls, data: AdapterConfig | Mapping[str, Any]) -> AdapterConfig:
        """Validate *data* into a config, raising ConfigurationError on failure."""
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Adapter config must be a mapping or AdapterConfig, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid adapter configuration: {e}") from e

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AdapterConfig:
        """Build a config from ``DATABASE_*`` environment variables.

        Without ``DATABASE_TYPE`` the embedded backend is used with
        ``DATABASE_PATH`` (default ``tenant_manager.db``).
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {
            "kind": env.get("DATABASE_TYPE") or BackendKind.EMBEDDED.value,
            "path": env.get("DATABASE_PATH") or DEFAULT_DATABASE_PATH,
        }
        for var, field in _ENV_FIELDS.items():
            value = env.get(var)
            if value:
                data[field] = value
        return cls.load(data)

    def describe(self) -> dict[str, Any]:
        """Connection target summary. Never includes the password."""
        database = self.database
        if database is None and self.path is not None:
            database = str(self.path)
        return {
            "kind": self.kind.value,
            "host": self.host,
            "port": self.port if self.kind is BackendKind.NETWORKED else None,
            "database": database,
            "user": self.user,
        }
