"""Tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from subgraph_sync.config import (
    Settings,
    SourceStoreSettings,
    SyncOptions,
    TargetStoreSettings,
    load_settings,
    load_store_settings,
)
from subgraph_sync.errors import StoreConfigError

STORE_VARS = ("DB", "USER", "PASSWORD", "HOST", "PORT", "URL", "DRIVER", "ENV")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from store variables and any .env in the working directory."""
    monkeypatch.chdir(tmp_path)
    for prefix in ("SOURCE_SQL_", "TARGET_SQL_"):
        for name in STORE_VARS:
            monkeypatch.delenv(prefix + name, raising=False)
    monkeypatch.delenv("SOURCE_ENV", raising=False)
    monkeypatch.delenv("TARGET_ENV", raising=False)


def _set_store(monkeypatch: pytest.MonkeyPatch, prefix: str, **values: str) -> None:
    defaults = {"DB": "app", "USER": "admin", "PASSWORD": "s3cret", "HOST": "db.local"}
    for name, value in {**defaults, **values}.items():
        monkeypatch.setenv(f"{prefix}{name}", value)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Default run copies 2 User roots to depth 3."""
        settings = Settings()
        assert settings.sync.entity_type == "User"
        assert settings.sync.limit == 2
        assert settings.sync.max_depth == 3
        assert settings.sync.preserve_identifiers is True
        assert settings.sync.concurrent_children == 1

    def test_invalid_options(self) -> None:
        with pytest.raises(ValidationError):
            SyncOptions(limit=0)
        with pytest.raises(ValidationError):
            SyncOptions(max_depth=-1)

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUBGRAPH_SYNC_SYNC__MAX_DEPTH", "5")
        monkeypatch.setenv("SUBGRAPH_SYNC_LOGGING__LEVEL", "DEBUG")

        settings = Settings()
        assert settings.sync.max_depth == 5
        assert settings.logging.level == "DEBUG"

    def test_file_round_trip(self, tmp_path: Path) -> None:
        settings = Settings(sync=SyncOptions(entity_type="Order", limit=7, dry_run=True))
        for name in ("config.toml", "config.json"):
            path = tmp_path / name
            settings.to_file(path)

            loaded = Settings.from_file(path)
            assert loaded.sync.entity_type == "Order"
            assert loaded.sync.limit == 7
            assert loaded.sync.dry_run is True

    def test_from_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_file(tmp_path / "nope.toml")

    def test_from_file_unsupported(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("sync: {}")
        with pytest.raises(ValueError):
            Settings.from_file(path)


class TestLoadSettings:
    """Test load_settings()."""

    def test_overrides(self) -> None:
        settings = load_settings(entity_type="Role", limit=4, max_depth=None)
        assert settings.sync.entity_type == "Role"
        assert settings.sync.limit == 4
        assert settings.sync.max_depth == 3

    def test_overrides_are_validated(self) -> None:
        with pytest.raises(ValueError):
            load_settings(limit=0)

    def test_overrides_win_over_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text('[sync]\nentity_type = "Order"\nlimit = 9\n')

        settings = load_settings(path, limit=1)
        assert settings.sync.entity_type == "Order"
        assert settings.sync.limit == 1


class TestStoreSettings:
    """Test source/target store settings."""

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "SOURCE_SQL_", PORT="6543")

        store = SourceStoreSettings()
        assert store.db == "app"
        assert store.port == 6543
        assert store.password.get_secret_value() == "s3cret"
        assert store.missing_fields() == []

        url = store.database_url()
        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db.local"
        assert url.database == "app"

    def test_describe_hides_password(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "TARGET_SQL_")

        description = TargetStoreSettings().describe()
        assert "s3cret" not in description
        assert "db.local" in description

    def test_ssl_required_outside_development(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "SOURCE_SQL_")
        monkeypatch.setenv("SOURCE_ENV", "PRODUCTION")

        assert SourceStoreSettings().connect_args() == {"ssl": "require"}

    def test_ssl_disabled_in_development(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "SOURCE_SQL_")
        monkeypatch.setenv("SOURCE_ENV", "DEVELOPMENT")

        store = SourceStoreSettings()
        assert store.require_ssl is False
        assert store.connect_args() == {}

    def test_url_overrides_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TARGET_SQL_URL", "sqlite+aiosqlite:///copy.db")

        store = TargetStoreSettings()
        assert store.missing_fields() == []
        assert store.database_url().database == "copy.db"
        assert store.connect_args() == {}

    def test_missing_fields(self) -> None:
        store = SourceStoreSettings()
        assert store.missing_fields() == ["db", "user", "password", "host"]
        with pytest.raises(StoreConfigError) as exc_info:
            store.database_url()
        assert exc_info.value.store == "source"
        assert "<source: not configured>" == store.describe()

    def test_load_store_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "SOURCE_SQL_")
        _set_store(monkeypatch, "TARGET_SQL_", DB="copy")

        source, target = load_store_settings()
        assert source.label == "source"
        assert target.db == "copy"

    def test_load_store_settings_missing_target(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_store(monkeypatch, "SOURCE_SQL_")
        monkeypatch.setenv("TARGET_SQL_DB", "copy")

        with pytest.raises(StoreConfigError) as exc_info:
            load_store_settings()
        assert exc_info.value.store == "target"
        assert exc_info.value.missing == ["user", "password", "host"]
