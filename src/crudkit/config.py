"""
Application settings.

Parses the [crudkit] section from crudkit.toml and applies environment
overrides on top of it.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crudkit.errors import ConfigError

DEFAULT_CONFIG_FILE = "crudkit.toml"


class BackendKind(StrEnum):
    """Supported storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRES = "postgres"


class CrudSettings(BaseModel):
    """Complete crudkit configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: BackendKind = BackendKind.MEMORY
    database_path: str = ".crudkit/data.db"
    database_url: str | None = None
    page_size: int = Field(default=25, ge=1)
    log_dir: str | None = ".crudkit/logs"
    log_level: str = "INFO"
    standard_field_labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{value}'")
        return level

    def get_database_path(self, project_root: Path) -> Path:
        """Get absolute database path."""
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return project_root / path


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if env.get("DATABASE_URL"):
        overrides["database_url"] = env["DATABASE_URL"]
        overrides["backend"] = BackendKind.POSTGRES.value
    if env.get("CRUDKIT_BACKEND"):
        overrides["backend"] = env["CRUDKIT_BACKEND"].lower()
    if env.get("CRUDKIT_DATABASE_PATH"):
        overrides["database_path"] = env["CRUDKIT_DATABASE_PATH"]
    if env.get("CRUDKIT_LOG_LEVEL"):
        overrides["log_level"] = env["CRUDKIT_LOG_LEVEL"]
    return overrides


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CrudSettings:
    """
    Load settings from crudkit.toml and the environment.

    Args:
        path: Path to the TOML file (crudkit.toml in the working directory
            by default); a missing file yields defaults
        env: Environment to read overrides from (os.environ by default)

    Returns:
        CrudSettings with parsed values or defaults

    Raises:
        ConfigError: If the file is not valid TOML or a value is invalid
    """
    toml_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    data: dict[str, Any] = {}

    if toml_path.exists():
        try:
            with open(toml_path, "rb") as f:
                data = dict(tomllib.load(f).get("crudkit", {}))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data.update(_env_overrides(os.environ if env is None else env))

    try:
        settings = CrudSettings(**data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigError(f"Invalid crudkit settings: {problems}") from exc

    if settings.backend == BackendKind.POSTGRES and not settings.database_url:
        raise ConfigError("The postgres backend requires database_url (or DATABASE_URL)")
    return settings
