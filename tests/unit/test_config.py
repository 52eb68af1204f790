"""
Unit tests for environment-driven configuration.
"""

import pytest

from campus.eav_server.api.config import Settings
from campus.eav_server.config import ObservabilityConfig, ServerConfig, StorageConfig


class TestServerConfig:
    """Tests for ServerConfig.from_env() and validate()."""

    def test_defaults(self, monkeypatch):
        for name in ("EAV_DATABASE_PATH", "EAV_SEED_ON_STARTUP", "LOG_FORMAT", "SQLITE_WAL_MODE"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.storage.database_path == "/var/lib/campus/campus.db"
        assert config.storage.wal_mode is True
        assert config.seed.seed_on_startup is False
        assert config.observability.log_format == "json"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EAV_DATABASE_PATH", str(tmp_path / "campus.db"))
        monkeypatch.setenv("EAV_SEED_ON_STARTUP", "TRUE")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.storage.database_path == str(tmp_path / "campus.db")
        assert config.storage.wal_mode is False
        assert config.storage.busy_timeout_ms == 250
        assert config.seed.seed_on_startup is True
        assert config.observability.log_format == "text"

    def test_invalid_log_format(self):
        config = ServerConfig(observability=ObservabilityConfig(log_format="xml"))
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_negative_busy_timeout(self):
        config = ServerConfig(storage=StorageConfig(busy_timeout_ms=-1))
        with pytest.raises(ValueError, match="SQLITE_BUSY_TIMEOUT_MS"):
            config.validate()

    def test_empty_database_path(self):
        config = ServerConfig(storage=StorageConfig(database_path=""))
        with pytest.raises(ValueError):
            config.validate()


class TestSettings:
    """Tests for the HTTP gateway settings."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CAMPUS_API_PORT", "9090")
        monkeypatch.setenv("CAMPUS_API_API_TOKEN", "secret")

        settings = Settings()

        assert settings.port == 9090
        assert settings.api_token == "secret"
        assert settings.default_page_size == 50
