"""
Subgraph Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Run settings can be loaded from:
1. Environment variables (prefixed with SUBGRAPH_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Store connections are configured separately, one settings object per store,
from SOURCE_SQL_* / TARGET_SQL_* environment variables (or a .env file).

Example usage:
    from subgraph_sync.config import Settings, load_store_settings

    settings = Settings()
    source, target = load_store_settings()
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, ClassVar, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

from subgraph_sync.errors import StoreConfigError

DEVELOPMENT_ENV = "DEVELOPMENT"


class SyncOptions(BaseModel):
    """Options controlling a sample sync run."""

    entity_type: str = Field(
        default="User",
        min_length=1,
        description="Root entity type to sample",
    )
    limit: int = Field(
        default=2,
        ge=1,
        description="Number of root records to copy",
    )
    max_depth: int = Field(
        default=3,
        ge=0,
        description="Maximum relationship path length from a root",
    )
    order_by: str = Field(
        default="created_at",
        description="Column used to select the most recent roots",
    )
    concurrent_children: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Children of one collection replicated concurrently",
    )
    preserve_identifiers: bool = Field(
        default=True,
        description="Reuse source primary keys in the target store",
    )
    dry_run: bool = Field(
        default=False,
        description="Traverse and report without writing to the target",
    )
    sync_schema: bool = Field(
        default=True,
        description="Create missing target tables before copying",
    )
    models: str = Field(
        default="subgraph_sync.models.sample:Base",
        description="Declarative base holding the entity types (module:attr)",
    )
    reflect: bool = Field(
        default=False,
        description="Build entity types by reflecting the source database",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class StoreSettings(BaseSettings):
    """
    Connection settings for one relational store.

    Either ``url`` is given, or database name, user, password and host
    must all be present. ``env`` selects whether encrypted transport is
    required; it is disabled only in DEVELOPMENT.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    label: ClassVar[str] = "store"

    db: str | None = Field(default=None, description="Database name")
    user: str | None = Field(default=None, description="Database user")
    password: SecretStr | None = Field(default=None, description="Database password")
    host: str | None = Field(default=None, description="Database host")
    port: int = Field(default=5432, description="Database port")
    driver: str = Field(
        default="postgresql+asyncpg",
        description="SQLAlchemy async driver name",
    )
    url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL, overrides the individual fields",
    )
    env: str = Field(default="", description="Deployment environment name")
    echo_sql: bool = Field(default=False, description="Echo SQL statements to logs")

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, v: Any) -> SecretStr | None:
        """Handle password from various sources."""
        if v is None or isinstance(v, SecretStr):
            return v
        return SecretStr(str(v))

    @property
    def require_ssl(self) -> bool:
        return self.env.strip().upper() != DEVELOPMENT_ENV

    def missing_fields(self) -> list[str]:
        """Required settings that are absent. Empty when ``url`` is set."""
        if self.url:
            return []
        missing = []
        for name in ("db", "user", "password", "host"):
            if getattr(self, name) in (None, ""):
                missing.append(name)
        return missing

    def database_url(self) -> URL:
        """
        Construct the SQLAlchemy connection URL.

        Raises:
            StoreConfigError: if required settings are missing
        """
        missing = self.missing_fields()
        if missing:
            raise StoreConfigError(self.label, missing)
        if self.url:
            return make_url(self.url)
        return URL.create(
            drivername=self.driver,
            username=self.user,
            password=self.password.get_secret_value() if self.password else None,
            host=self.host,
            port=self.port,
            database=self.db,
        )

    def connect_args(self) -> dict[str, Any]:
        """Driver arguments selecting encrypted transport."""
        if not self.require_ssl:
            return {}
        driver = self.database_url().drivername
        if "asyncpg" in driver:
            return {"ssl": "require"}
        if "psycopg" in driver:
            return {"sslmode": "require"}
        return {}

    def describe(self) -> str:
        """Connection string with the password hidden."""
        try:
            return self.database_url().render_as_string(hide_password=True)
        except StoreConfigError:
            return f"<{self.label}: not configured>"


class SourceStoreSettings(StoreSettings):
    """Source store, SOURCE_SQL_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="SOURCE_SQL_")

    label: ClassVar[str] = "source"
    env: str = Field(
        default="",
        validation_alias=AliasChoices("SOURCE_ENV", "SOURCE_SQL_ENV"),
        description="Deployment environment name",
    )


class TargetStoreSettings(StoreSettings):
    """Target store, TARGET_SQL_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="TARGET_SQL_")

    label: ClassVar[str] = "target"
    env: str = Field(
        default="",
        validation_alias=AliasChoices("TARGET_ENV", "TARGET_SQL_ENV"),
        description="Deployment environment name",
    )


class Settings(BaseSettings):
    """
    Main settings class for Subgraph Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (SUBGRAPH_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        export SUBGRAPH_SYNC_SYNC__MAX_DEPTH=2
        settings = Settings()

        settings = Settings.from_file("config.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="SUBGRAPH_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    sync: SyncOptions = Field(default_factory=SyncOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> Self:
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            import tomllib

            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a config file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        if path.suffix in (".toml", ".tml"):
            lines = []
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n[{key}]")
                    for k, v in value.items():
                        lines.append(f"{k} = {json.dumps(v)}")
                else:
                    lines.append(f"{key} = {json.dumps(value)}")
            path.write_text("\n".join(lines))
        else:
            path.write_text(json.dumps(data, indent=2))


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and sync option overrides.

    Args:
        config_file: Optional path to config file
        **overrides: SyncOptions fields to override (highest priority);
            None values are ignored

    Returns:
        Configured Settings instance
    """
    settings = Settings.from_file(config_file) if config_file else Settings()
    changes = {k: v for k, v in overrides.items() if v is not None}
    if changes:
        sync = settings.sync.model_copy(update=changes)
        settings.sync = SyncOptions.model_validate(sync.model_dump())
    return settings


def load_store_settings() -> tuple[SourceStoreSettings, TargetStoreSettings]:
    """
    Load source and target connection settings from the environment.

    Raises:
        StoreConfigError: if either store lacks a required variable
    """
    stores: list[StoreSettings] = []
    for cls in (SourceStoreSettings, TargetStoreSettings):
        try:
            store = cls()
        except ValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise StoreConfigError(cls.label, fields) from e
        missing = store.missing_fields()
        if missing:
            raise StoreConfigError(store.label, missing)
        stores.append(store)
    source, target = stores
    return source, target  # type: ignore[return-value]
