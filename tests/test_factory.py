# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for create_dao."""

import os
from unittest.mock import patch

import pytest

from docdao import Dao, DaoConfig, InMemoryDatabase, SilentLogger, StaticConfigProvider, StdoutLogger, create_dao


class TestCreateDao:
    """Tests for the DAO factory."""

    def test_with_explicit_config(self):
        """Test that explicit config and logger are used."""
        config = DaoConfig(scan_chunk_size=50, timezone="UTC")
        logger = SilentLogger()

        dao = create_dao(InMemoryDatabase(), config=config, logger=logger)

        assert isinstance(dao, Dao)
        assert dao.config is config
        assert dao._logger is logger

    def test_config_from_provider(self):
        """Test loading config from a provider."""
        dao = create_dao(
            InMemoryDatabase(),
            provider=StaticConfigProvider({"DAO_SCAN_CONCURRENCY": 3}),
            logger=SilentLogger(),
        )

        assert dao.config.scan_concurrency == 3

    def test_default_logger_from_env(self):
        """Test the default logger honors LOG_TYPE."""
        with patch.dict(os.environ, {"LOG_TYPE": "stdout"}, clear=True):
            dao = create_dao(InMemoryDatabase())

        assert isinstance(dao._logger, StdoutLogger)

    def test_requires_database(self):
        """Test that a database handle is required."""
        with pytest.raises(ValueError, match="database handle is required"):
            Dao(None)
