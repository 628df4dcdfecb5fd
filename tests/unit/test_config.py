"""Unit tests for environment configuration."""

import pytest

from jindexer.config import ApiSettings, ConfigError, DatabaseSettings, IndexerSettings

ENV_VARS = [
    "JACKAL_RPC_URL", "JACKAL_API_URL", "JINDEXER_START_HEIGHT", "JINDEXER_END_HEIGHT",
    "JINDEXER_POLL_INTERVAL", "JINDEXER_FETCH_ATTEMPTS", "JINDEXER_RETRY_BASE_DELAY",
    "JINDEXER_RETRY_MAX_DELAY", "JINDEXER_REQUEST_TIMEOUT", "JINDEXER_DB_BACKEND",
    "JINDEXER_SQLITE_PATH", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASS",
    "JINDEXER_API_HOST", "JINDEXER_API_PORT", "JINDEXER_METRICS_INTERVAL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestIndexerSettings:

    def test_defaults(self):
        settings = IndexerSettings.from_env()

        assert settings.start_height == 0
        assert settings.end_height_or_none is None
        assert settings.poll_interval == 6.0
        assert settings.fetch_attempts == 1
        assert settings.database.backend == "postgres"
        assert settings.database.host == "postgres"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("JACKAL_RPC_URL", "http://localhost:26657")
        monkeypatch.setenv("JINDEXER_START_HEIGHT", "100")
        monkeypatch.setenv("JINDEXER_END_HEIGHT", "200")
        monkeypatch.setenv("JINDEXER_FETCH_ATTEMPTS", "3")

        settings = IndexerSettings.from_env()

        assert settings.rpc_url == "http://localhost:26657"
        assert settings.start_height == 100
        assert settings.end_height_or_none == 200
        assert settings.fetch_attempts == 3

    def test_blank_values_use_defaults(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_START_HEIGHT", "  ")
        monkeypatch.setenv("DB_HOST", "")

        settings = IndexerSettings.from_env()
        assert settings.start_height == 0
        assert settings.database.host == "postgres"

    def test_unparseable_height(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_START_HEIGHT", "tip")
        with pytest.raises(ConfigError):
            IndexerSettings.from_env()

    def test_negative_height(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_END_HEIGHT", "-5")
        with pytest.raises(ConfigError):
            IndexerSettings.from_env()

    def test_zero_attempts(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_FETCH_ATTEMPTS", "0")
        with pytest.raises(ConfigError):
            IndexerSettings.from_env()


class TestDatabaseSettings:

    def test_sqlite_backend(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_DB_BACKEND", "SQLite")
        monkeypatch.setenv("JINDEXER_SQLITE_PATH", "/tmp/proofs.db")

        settings = DatabaseSettings.from_env()
        assert settings.backend == "sqlite"
        assert settings.sqlite_path == "/tmp/proofs.db"

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_DB_BACKEND", "mysql")
        with pytest.raises(ConfigError):
            DatabaseSettings.from_env()

    def test_password_from_db_pass(self, monkeypatch):
        monkeypatch.setenv("DB_PASS", "s3cret")
        monkeypatch.setenv("DB_PORT", "6543")

        settings = DatabaseSettings.from_env()
        assert settings.password == "s3cret"
        assert settings.port == 6543


class TestApiSettings:

    def test_defaults(self):
        settings = ApiSettings.from_env()
        assert settings.port == 9797
        assert settings.metrics_interval == 30.0

    def test_bad_port(self, monkeypatch):
        monkeypatch.setenv("JINDEXER_API_PORT", "http")
        with pytest.raises(ConfigError):
            ApiSettings.from_env()
