# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""MongoDB connection holder.

The application owns the connection: it connects once at startup, hands
``connection.database`` to :class:`~docdao.dao.Dao`, and disconnects on
shutdown.
"""

import logging
from typing import Any

from .config import DaoConfig
from .errors import DaoConnectionError

logger = logging.getLogger(__name__)


class MongoConnection:
    """Async MongoDB client wrapper built from DaoConfig."""

    @classmethod
    def from_config(cls, config: DaoConfig) -> "MongoConnection":
        """Create a MongoConnection from configuration."""
        return cls(uri=config.uri, database=config.database, **config.client_options())

    def __init__(self, uri: str | None = None, database: str | None = None, **client_options: Any):
        """Initialize the connection holder.

        Args:
            uri: MongoDB connection string (required)
            database: Database name (required)
            **client_options: Additional motor client options

        Raises:
            ValueError: If uri or database is not provided
        """
        if not uri:
            raise ValueError("MongoDB URI is required. Provide a mongodb:// connection string.")
        if not database:
            raise ValueError("MongoDB database is required. Provide the database name to use.")

        self.uri = uri
        self.database_name = database
        self.client_options = client_options
        self.client = None
        self._database = None
        self.server_version: str | None = None

    async def connect(self) -> None:
        """Create the client, ping the server and select the database.

        Raises:
            DaoConnectionError: If the client cannot be created or the ping fails
        """
        try:
            from motor.motor_asyncio import AsyncIOMotorClient
            from pymongo.errors import PyMongoError
        except ImportError as e:
            logger.error("MongoConnection: motor not installed")
            raise DaoConnectionError("motor not installed") from e

        try:
            self.client = AsyncIOMotorClient(self.uri, **self.client_options)
            await self.client.admin.command("ping")
            build_info = await self.client.admin.command("buildInfo")
            self.server_version = build_info.get("version")
            self._database = self.client[self.database_name]
            logger.info(
                "MongoConnection: connected to %s (server %s)", self.database_name, self.server_version
            )
        except PyMongoError as e:
            logger.error("MongoConnection: connection failed - %s", e, exc_info=True)
            self._close_client()
            raise DaoConnectionError(f"Failed to connect to MongoDB database {self.database_name}") from e

    def _close_client(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None
        self._database = None

    async def disconnect(self) -> None:
        """Close the client if connected."""
        if self.client is not None:
            self._close_client()
            logger.info("MongoConnection: disconnected")

    @property
    def connected(self) -> bool:
        return self._database is not None

    @property
    def database(self) -> Any:
        """Selected database handle.

        Raises:
            DaoConnectionError: If connect() has not completed
        """
        if self._database is None:
            raise DaoConnectionError("Not connected to MongoDB")
        return self._database

    async def __aenter__(self) -> "MongoConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
