"""
Couch Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with COUCH_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from couch_sync.config import Settings

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(
        store={"url": "http://localhost:5984", "username": "admin"},
        replication={"update_existing_docs": True},
    )
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BATCH_SIZE = 200
DEFAULT_TYPE_FIELD = "pt_type"


class StoreConfig(BaseModel):
    """Document store (CouchDB / Cloudant) connection settings."""

    url: str = Field(
        default="http://localhost:5984",
        description="Base URL of the CouchDB-compatible server",
    )
    username: str = Field(
        default="",
        description="Basic auth user name (empty = anonymous)",
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Basic auth password",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Read timeout for a single request",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request on rate limiting or transport errors",
    )

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, v: Any) -> SecretStr:
        """Handle password from various sources."""
        if isinstance(v, SecretStr):
            return v
        if isinstance(v, str):
            return SecretStr(v)
        return SecretStr("")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class CopyOptions(BaseModel):
    """Options controlling how tables are copied into the store."""

    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        le=10_000,
        description="Records per bulk write",
    )
    recreate_target_db: bool = Field(
        default=True,
        description="Destroy and recreate each target database before copying",
    )
    update_existing_docs: bool = Field(
        default=False,
        description="Reconcile with existing document revisions instead of conflicting",
    )
    type_field: str = Field(
        default=DEFAULT_TYPE_FIELD,
        min_length=1,
        description="Document attribute holding the owning table name",
    )

    # Table selection
    tables: list[str] = Field(
        default_factory=list,
        description="Specific tables to copy (empty = all tables)",
    )
    exclude_tables: list[str] = Field(
        default_factory=list,
        description="Tables to exclude from the run",
    )
    limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum records to fetch per table (for testing)",
    )

    @model_validator(mode="after")
    def resolve_copy_mode(self) -> Self:
        """Updating in place implies keeping the target unless asked otherwise."""
        if self.update_existing_docs and self.recreate_target_db:
            if "recreate_target_db" in self.model_fields_set:
                raise ValueError(
                    "recreate_target_db and update_existing_docs are mutually exclusive"
                )
            self.recreate_target_db = False
        return self


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


class Settings(BaseSettings):
    """
    Main settings class for Couch Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (COUCH_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        # From environment
        export COUCH_SYNC_STORE__URL="https://account.cloudant.com"
        export COUCH_SYNC_STORE__PASSWORD="secret"
        settings = Settings()

        # From config file
        settings = Settings.from_file("config.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="COUCH_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    pipes_file: Path = Field(
        default=Path(".couch-sync-pipes.json"),
        description="Path to the pipe configuration store",
    )

    # Nested configs
    store: StoreConfig = Field(default_factory=StoreConfig)
    replication: CopyOptions = Field(default_factory=CopyOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
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

        # Mask sensitive data
        if self.store.password.get_secret_value():
            data["store"]["password"] = "***REDACTED***"
        else:
            data["store"]["password"] = ""

        if path.suffix in (".toml", ".tml"):
            # Basic TOML serialization
            lines = []
            for key, value in data.items():
                if not isinstance(value, dict):
                    lines.append(f"{key} = {json.dumps(value)}")
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n[{key}]")
                    for k, v in value.items():
                        lines.append(f"{k} = {json.dumps(v)}")
            path.write_text("\n".join(lines))
        else:
            path.write_text(json.dumps(data, indent=2))

    def validate_store(self) -> list[str]:
        """Validate the store settings. Returns list of errors."""
        errors = []
        if not self.store.url.startswith(("http://", "https://")):
            errors.append("store.url must be an http(s) URL")
        if self.store.password.get_secret_value() and not self.store.username:
            errors.append("store.username is required when a password is set")
        return errors


# Convenience function for loading settings
def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
