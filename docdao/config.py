# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Configuration providers and the typed DAO configuration."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .pagination import DEFAULT_CHUNK_SIZE

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


class ConfigProvider(ABC):
    """Abstract base class for configuration providers."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        raise NotImplementedError

    @abstractmethod
    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get a boolean configuration value."""
        raise NotImplementedError

    @abstractmethod
    def get_int(self, key: str, default: int = 0) -> int:
        """Get an integer configuration value."""
        raise NotImplementedError


def _parse_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return default


class EnvConfigProvider(ConfigProvider):
    """Configuration provider that reads from environment variables."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str, default: Any = None) -> Any:
        return self._environ.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._environ.get(key)
        if value is None:
            return default
        return _parse_bool(value, default)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._environ.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default


class StaticConfigProvider(ConfigProvider):
    """Configuration provider with static values (useful for tests)."""

    def __init__(self, config: dict[str, Any] | None = None):
        self._config = config if config is not None else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._config.get(key)
        if value is None:
            return default
        return _parse_bool(value, default)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._config.get(key)
        if value is None:
            return default
        if isinstance(value, int):
            return value
        try:
            return int(value)
        except (ValueError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        self._config[key] = value


@dataclass(frozen=True)
class DaoConfig:
    """Settings for the MongoDB client and the DAO itself.

    Client options mirror the driver keyword arguments; ``scan_*`` settings
    drive the chunked scanner and ``timestamp_*`` settings the insert-time
    ``_add_time_str`` stamp.
    """
    uri: str = "mongodb://127.0.0.1:27017"
    database: str = "default"
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 10000
    socket_timeout_ms: int = 45000
    max_pool_size: int = 10
    min_pool_size: int = 1
    retry_writes: bool = True
    retry_reads: bool = True
    write_concern: str | int = "majority"
    read_preference: str = "primary"
    heartbeat_frequency_ms: int = 10000
    max_idle_time_ms: int = 60000
    direct_connection: bool = True
    scan_chunk_size: int = DEFAULT_CHUNK_SIZE
    scan_concurrency: int = 8
    timezone: str = "Asia/Shanghai"
    timestamp_format: str = "%Y/%m/%d %H:%M:%S"

    def __post_init__(self):
        if not self.uri:
            raise ValueError("MongoDB URI is required.")
        if not self.database:
            raise ValueError("MongoDB database name is required.")
        if self.scan_chunk_size <= 0:
            raise ValueError(f"scan_chunk_size must be positive, got {self.scan_chunk_size}")
        if self.scan_concurrency <= 0:
            raise ValueError(f"scan_concurrency must be positive, got {self.scan_concurrency}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {self.timezone}") from e

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for the MongoDB client constructor."""
        return {
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "connectTimeoutMS": self.connect_timeout_ms,
            "socketTimeoutMS": self.socket_timeout_ms,
            "maxPoolSize": self.max_pool_size,
            "minPoolSize": self.min_pool_size,
            "retryWrites": self.retry_writes,
            "retryReads": self.retry_reads,
            "w": self.write_concern,
            "readPreference": self.read_preference,
            "heartbeatFrequencyMS": self.heartbeat_frequency_ms,
            "maxIdleTimeMS": self.max_idle_time_ms,
            "directConnection": self.direct_connection,
        }


def load_dao_config(provider: ConfigProvider | None = None) -> DaoConfig:
    """Load DaoConfig from a provider, falling back to field defaults.

    Args:
        provider: Source of settings. Defaults to the process environment.

    Returns:
        DaoConfig instance

    Raises:
        ValueError: If a loaded value is out of range
    """
    provider = provider or EnvConfigProvider()
    defaults = DaoConfig()

    # Write concern may be numeric ("1") or a tag ("majority")
    write_concern: Any = provider.get("MONGODB_WRITE_CONCERN", defaults.write_concern)
    if isinstance(write_concern, str) and write_concern.isdigit():
        write_concern = int(write_concern)

    return DaoConfig(
        uri=provider.get("MONGODB_URI", defaults.uri),
        database=provider.get("MONGODB_DB_NAME", defaults.database),
        server_selection_timeout_ms=provider.get_int(
            "MONGODB_SERVER_SELECTION_TIMEOUT_MS", defaults.server_selection_timeout_ms
        ),
        connect_timeout_ms=provider.get_int("MONGODB_CONNECT_TIMEOUT_MS", defaults.connect_timeout_ms),
        socket_timeout_ms=provider.get_int("MONGODB_SOCKET_TIMEOUT_MS", defaults.socket_timeout_ms),
        max_pool_size=provider.get_int("MONGODB_MAX_POOL_SIZE", defaults.max_pool_size),
        min_pool_size=provider.get_int("MONGODB_MIN_POOL_SIZE", defaults.min_pool_size),
        retry_writes=provider.get_bool("MONGODB_RETRY_WRITES", defaults.retry_writes),
        retry_reads=provider.get_bool("MONGODB_RETRY_READS", defaults.retry_reads),
        write_concern=write_concern,
        read_preference=provider.get("MONGODB_READ_PREFERENCE", defaults.read_preference),
        heartbeat_frequency_ms=provider.get_int(
            "MONGODB_HEARTBEAT_FREQUENCY_MS", defaults.heartbeat_frequency_ms
        ),
        max_idle_time_ms=provider.get_int("MONGODB_MAX_IDLE_TIME_MS", defaults.max_idle_time_ms),
        direct_connection=provider.get_bool("MONGODB_DIRECT_CONNECTION", defaults.direct_connection),
        scan_chunk_size=provider.get_int("DAO_SCAN_CHUNK_SIZE", defaults.scan_chunk_size),
        scan_concurrency=provider.get_int("DAO_SCAN_CONCURRENCY", defaults.scan_concurrency),
        timezone=provider.get("DAO_TIMEZONE", defaults.timezone),
        timestamp_format=provider.get("DAO_TIMESTAMP_FORMAT", defaults.timestamp_format),
    )
