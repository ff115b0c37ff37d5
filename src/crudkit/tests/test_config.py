"""
Tests for settings loading.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from crudkit.config import BackendKind, CrudSettings, load_settings
from crudkit.errors import ConfigError


@pytest.fixture
def toml_file(tmp_path: Path) -> Path:
    path = tmp_path / "crudkit.toml"
    path.write_text(
        """
[crudkit]
backend = "sqlite"
database_path = "data/app.db"
page_size = 50
log_level = "debug"

[crudkit.standard_field_labels]
id = "Id"
created_at = "Created"
updated_at = "Updated"
""",
        encoding="utf-8",
    )
    return path


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "missing.toml", env={})

        assert settings == CrudSettings()
        assert settings.backend == BackendKind.MEMORY
        assert settings.page_size == 25

    def test_values_from_file(self, toml_file: Path) -> None:
        settings = load_settings(toml_file, env={})

        assert settings.backend == BackendKind.SQLITE
        assert settings.database_path == "data/app.db"
        assert settings.page_size == 50
        assert settings.log_level == "DEBUG"
        assert settings.standard_field_labels["created_at"] == "Created"

    def test_environment_overrides_file(self, toml_file: Path) -> None:
        settings = load_settings(
            toml_file,
            env={"CRUDKIT_DATABASE_PATH": "/tmp/other.db", "CRUDKIT_LOG_LEVEL": "warning"},
        )

        assert settings.database_path == "/tmp/other.db"
        assert settings.log_level == "WARNING"

    def test_database_url_selects_postgres(self, tmp_path: Path) -> None:
        settings = load_settings(
            tmp_path / "missing.toml", env={"DATABASE_URL": "postgresql://localhost/app"}
        )

        assert settings.backend == BackendKind.POSTGRES
        assert settings.database_url == "postgresql://localhost/app"

    def test_explicit_backend_beats_database_url(self, tmp_path: Path) -> None:
        settings = load_settings(
            tmp_path / "missing.toml",
            env={"DATABASE_URL": "postgresql://localhost/app", "CRUDKIT_BACKEND": "SQLITE"},
        )

        assert settings.backend == BackendKind.SQLITE

    def test_invalid_value_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "crudkit.toml"
        path.write_text("[crudkit]\npage_size = 0\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="page_size"):
            load_settings(path, env={})

    def test_unknown_key_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "crudkit.toml"
        path.write_text('[crudkit]\nbackend = "memory"\ncolour = "blue"\n', encoding="utf-8")

        with pytest.raises(ConfigError, match="colour"):
            load_settings(path, env={})

    def test_invalid_toml_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "crudkit.toml"
        path.write_text("[crudkit\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_settings(path, env={})

    def test_postgres_without_url_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="database_url"):
            load_settings(tmp_path / "missing.toml", env={"CRUDKIT_BACKEND": "postgres"})


class TestCrudSettings:
    def test_relative_database_path(self) -> None:
        settings = CrudSettings(database_path="data/app.db")

        assert settings.get_database_path(Path("/srv/app")) == Path("/srv/app/data/app.db")

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ValueError):
            CrudSettings(log_level="loud")
