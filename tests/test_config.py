# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for configuration providers and DaoConfig."""

from zoneinfo import ZoneInfo

import pytest

from docdao import DaoConfig, EnvConfigProvider, StaticConfigProvider, load_dao_config


class TestProviders:
    """Tests for config providers."""

    def test_env_provider(self):
        """Test reading typed values from an environment mapping."""
        provider = EnvConfigProvider({"A": "x", "FLAG": "yes", "N": "42", "BAD": "nope"})

        assert provider.get("A") == "x"
        assert provider.get("MISSING", "d") == "d"
        assert provider.get_bool("FLAG") is True
        assert provider.get_bool("MISSING", True) is True
        assert provider.get_int("N") == 42
        assert provider.get_int("BAD", 7) == 7

    def test_static_provider(self):
        """Test the dict-backed provider."""
        provider = StaticConfigProvider({"N": 3, "FLAG": "false"})
        provider.set("S", "v")

        assert provider.get_int("N") == 3
        assert provider.get_bool("FLAG", True) is False
        assert provider.get("S") == "v"


class TestDaoConfig:
    """Tests for DaoConfig loading and validation."""

    def test_defaults(self):
        """Test the default connection and scan settings."""
        config = load_dao_config(StaticConfigProvider())

        assert config.uri == "mongodb://127.0.0.1:27017"
        assert config.database == "default"
        assert config.scan_chunk_size == 1000
        assert config.scan_concurrency == 8
        assert config.tzinfo == ZoneInfo("Asia/Shanghai")

    def test_client_options(self):
        """Test the driver keyword arguments."""
        options = DaoConfig().client_options()

        assert options == {
            "serverSelectionTimeoutMS": 5000,
            "connectTimeoutMS": 10000,
            "socketTimeoutMS": 45000,
            "maxPoolSize": 10,
            "minPoolSize": 1,
            "retryWrites": True,
            "retryReads": True,
            "w": "majority",
            "readPreference": "primary",
            "heartbeatFrequencyMS": 10000,
            "maxIdleTimeMS": 60000,
            "directConnection": True,
        }

    def test_load_overrides(self):
        """Test loading values from environment-style strings."""
        config = load_dao_config(EnvConfigProvider({
            "MONGODB_URI": "mongodb://db:27017",
            "MONGODB_DB_NAME": "shop",
            "MONGODB_MAX_POOL_SIZE": "50",
            "MONGODB_DIRECT_CONNECTION": "false",
            "MONGODB_WRITE_CONCERN": "1",
            "DAO_SCAN_CHUNK_SIZE": "500",
            "DAO_SCAN_CONCURRENCY": "4",
            "DAO_TIMEZONE": "UTC",
        }))

        assert config.uri == "mongodb://db:27017"
        assert config.database == "shop"
        assert config.max_pool_size == 50
        assert config.direct_connection is False
        assert config.write_concern == 1
        assert config.scan_chunk_size == 500
        assert config.scan_concurrency == 4
        assert config.timezone == "UTC"

    @pytest.mark.parametrize("overrides,message", [
        ({"DAO_SCAN_CHUNK_SIZE": "0"}, "scan_chunk_size"),
        ({"DAO_SCAN_CONCURRENCY": "-1"}, "scan_concurrency"),
        ({"DAO_TIMEZONE": "Mars/Olympus"}, "Unknown timezone"),
        ({"MONGODB_DB_NAME": ""}, "database name"),
    ])
    def test_invalid_values(self, overrides, message):
        """Test that out-of-range values raise ValueError at load time."""
        with pytest.raises(ValueError, match=message):
            load_dao_config(EnvConfigProvider(overrides))
