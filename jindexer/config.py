"""
Process configuration.

All settings come from the environment (optionally seeded from a .env file).
Each process builds its settings once at startup via `from_env()`.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class ConfigError(Exception):
    """Raised when an environment variable cannot be parsed."""


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "")
    return raw.strip() if raw.strip() else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"failed to parse {name}={raw!r} as an integer")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"failed to parse {name}={raw!r} as a number")


@dataclass
class DatabaseSettings:
    """Where indexed blocks and proofs are persisted."""
    backend: str = "postgres"  # 'postgres' or 'sqlite'
    sqlite_path: str = "data/jindexer.db"

    host: str = "postgres"  # docker-compose service name
    port: int = 5432
    name: str = "postgres"
    user: str = "postgres"
    password: str = "postgres"

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        backend = _env_str("JINDEXER_DB_BACKEND", "postgres").lower()
        if backend not in ("postgres", "sqlite"):
            raise ConfigError(f"unsupported JINDEXER_DB_BACKEND={backend!r}")

        return cls(
            backend=backend,
            sqlite_path=_env_str("JINDEXER_SQLITE_PATH", "data/jindexer.db"),
            host=_env_str("DB_HOST", "postgres"),
            port=_env_int("DB_PORT", 5432),
            name=_env_str("DB_NAME", "postgres"),
            user=_env_str("DB_USER", "postgres"),
            password=_env_str("DB_PASS", "postgres"),
        )


@dataclass
class IndexerSettings:
    """Configuration for the indexer process."""
    # Chain endpoints
    rpc_url: str = "https://jackal-rpc.polkachu.com:443"
    api_url: str = "https://api.jackalprotocol.com"
    request_timeout: float = 30.0

    # Height range (0 = resolve start / follow the tip forever)
    start_height: int = 0
    end_height: int = 0

    # Chain lag polling
    poll_interval: float = 6.0

    # Chain I/O retry (1 attempt = skip the height on first failure)
    fetch_attempts: int = 1
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    database: DatabaseSettings = field(default_factory=DatabaseSettings)

    @classmethod
    def from_env(cls) -> "IndexerSettings":
        settings = cls(
            rpc_url=_env_str("JACKAL_RPC_URL", cls.rpc_url),
            api_url=_env_str("JACKAL_API_URL", cls.api_url),
            request_timeout=_env_float("JINDEXER_REQUEST_TIMEOUT", cls.request_timeout),
            start_height=_env_int("JINDEXER_START_HEIGHT", 0),
            end_height=_env_int("JINDEXER_END_HEIGHT", 0),
            poll_interval=_env_float("JINDEXER_POLL_INTERVAL", cls.poll_interval),
            fetch_attempts=_env_int("JINDEXER_FETCH_ATTEMPTS", cls.fetch_attempts),
            retry_base_delay=_env_float("JINDEXER_RETRY_BASE_DELAY", cls.retry_base_delay),
            retry_max_delay=_env_float("JINDEXER_RETRY_MAX_DELAY", cls.retry_max_delay),
            database=DatabaseSettings.from_env(),
        )
        if settings.start_height < 0 or settings.end_height < 0:
            raise ConfigError("start and end heights must not be negative")
        if settings.fetch_attempts < 1:
            raise ConfigError("JINDEXER_FETCH_ATTEMPTS must be at least 1")
        return settings

    @property
    def end_height_or_none(self) -> Optional[int]:
        return self.end_height or None


@dataclass
class ApiSettings:
    """Configuration for the read API process."""
    host: str = "0.0.0.0"
    port: int = 9797
    api_url: str = "https://api.jackalprotocol.com"
    request_timeout: float = 30.0
    metrics_interval: float = 30.0

    database: DatabaseSettings = field(default_factory=DatabaseSettings)

    @classmethod
    def from_env(cls) -> "ApiSettings":
        return cls(
            host=_env_str("JINDEXER_API_HOST", cls.host),
            port=_env_int("JINDEXER_API_PORT", cls.port),
            api_url=_env_str("JACKAL_API_URL", cls.api_url),
            request_timeout=_env_float("JINDEXER_REQUEST_TIMEOUT", cls.request_timeout),
            metrics_interval=_env_float("JINDEXER_METRICS_INTERVAL", cls.metrics_interval),
            database=DatabaseSettings.from_env(),
        )
