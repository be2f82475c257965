# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Factory functions for loggers and DAO instances."""

import os
from typing import Any

from .config import ConfigProvider, DaoConfig, load_dao_config
from .dao import Dao
from .logger import Logger
from .silent_logger import SilentLogger
from .stdout_logger import StdoutLogger


def _default(value: str | None, env_var: str, fallback: str) -> str:
    """Pick an explicit value, then the environment variable, then the fallback."""
    return value or os.getenv(env_var) or fallback


def create_logger(
    logger_type: str | None = None,
    level: str | None = None,
    name: str | None = None,
) -> Logger:
    """Create a logger instance.

    Args:
        logger_type: "stdout" or "silent". Defaults to LOG_TYPE env or "stdout".
        level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL env or "INFO".
        name: Logger name. Defaults to LOG_NAME env or "docdao".

    Returns:
        Logger instance

    Raises:
        ValueError: If logger_type is not recognized
    """
    logger_type = _default(logger_type, "LOG_TYPE", "stdout").lower()
    level = _default(level, "LOG_LEVEL", "INFO").upper()
    name = _default(name, "LOG_NAME", "docdao")

    if logger_type == "stdout":
        return StdoutLogger(level=level, name=name)
    elif logger_type == "silent":
        return SilentLogger(level=level, name=name)
    else:
        raise ValueError(f"Unknown logger_type: {logger_type}. Must be one of: stdout, silent")


def create_dao(
    database: Any,
    config: DaoConfig | None = None,
    logger: Logger | None = None,
    provider: ConfigProvider | None = None,
) -> Dao:
    """Create a Dao bound to an already-connected database handle.

    Args:
        database: Database handle (e.g. ``MongoConnection.database``)
        config: DAO settings. Loaded from ``provider`` (default: environment)
            when not given.
        logger: Structured logger. Defaults to create_logger().
        provider: Configuration source used when config is None

    Returns:
        Dao instance
    """
    if config is None:
        config = load_dao_config(provider)
    return Dao(database, logger=logger or create_logger(), config=config)
