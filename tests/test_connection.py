# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for MongoConnection."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from docdao import DaoConfig, DaoConnectionError, MongoConnection


def _mock_client(command=None):
    client = MagicMock()
    client.admin.command = command or AsyncMock(side_effect=[{"ok": 1}, {"version": "7.0.4"}])
    return client


class TestMongoConnection:
    """Tests for connecting and disconnecting."""

    def test_requires_uri_and_database(self):
        """Test constructor validation."""
        with pytest.raises(ValueError, match="URI is required"):
            MongoConnection(uri="", database="db")
        with pytest.raises(ValueError, match="database is required"):
            MongoConnection(uri="mongodb://localhost", database=None)

    def test_from_config_passes_client_options(self):
        """Test that client options come from DaoConfig."""
        connection = MongoConnection.from_config(DaoConfig(uri="mongodb://db:27017", database="shop"))

        assert connection.uri == "mongodb://db:27017"
        assert connection.database_name == "shop"
        assert connection.client_options["maxPoolSize"] == 10
        assert connection.client_options["directConnection"] is True

    @pytest.mark.asyncio
    async def test_connect_pings_and_selects_database(self):
        """Test a successful connect."""
        client = _mock_client()
        with patch("motor.motor_asyncio.AsyncIOMotorClient", return_value=client) as factory:
            connection = MongoConnection(uri="mongodb://localhost:27017", database="shop", maxPoolSize=5)
            await connection.connect()

        factory.assert_called_once_with("mongodb://localhost:27017", maxPoolSize=5)
        client.admin.command.assert_any_await("ping")
        assert connection.server_version == "7.0.4"
        assert connection.connected
        assert connection.database is client.__getitem__.return_value

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test that a failed ping raises DaoConnectionError and closes the client."""
        client = _mock_client(AsyncMock(side_effect=ServerSelectionTimeoutError("no servers")))
        with patch("motor.motor_asyncio.AsyncIOMotorClient", return_value=client):
            connection = MongoConnection(uri="mongodb://localhost:27017", database="shop")
            with pytest.raises(DaoConnectionError, match="shop"):
                await connection.connect()

        client.close.assert_called_once()
        assert not connection.connected

    @pytest.mark.asyncio
    async def test_database_before_connect(self):
        """Test that the handle is unavailable until connected."""
        connection = MongoConnection(uri="mongodb://localhost:27017", database="shop")

        with pytest.raises(DaoConnectionError, match="Not connected"):
            connection.database

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self):
        """Test async with connects and closes."""
        client = _mock_client()
        with patch("motor.motor_asyncio.AsyncIOMotorClient", return_value=client):
            async with MongoConnection(uri="mongodb://localhost:27017", database="shop") as connection:
                assert connection.connected

        client.close.assert_called_once()
        assert not connection.connected
