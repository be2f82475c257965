# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Shared fixtures for docdao tests."""

import pytest

from docdao import Dao, DaoConfig, InMemoryDatabase, SilentLogger


@pytest.fixture
def database():
    """Empty in-memory database."""
    return InMemoryDatabase()


@pytest.fixture
def logger():
    """Logger that records entries for assertions."""
    return SilentLogger()


@pytest.fixture
def config():
    """DAO settings with the default scan chunk and concurrency, in UTC."""
    return DaoConfig(scan_chunk_size=1000, scan_concurrency=8, timezone="UTC")


@pytest.fixture
def dao(database, logger, config):
    """DAO bound to the in-memory database."""
    return Dao(database, logger=logger, config=config)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: requires a reachable MongoDB server")
