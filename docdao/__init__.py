# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""docdao: generic async data-access layer over MongoDB.

Declarative where / sort / projection descriptors, emulated joins, bounded
concurrent chunked scans and a uniform result envelope for every operation.
"""

__version__ = "0.1.0"

from .config import ConfigProvider, DaoConfig, EnvConfigProvider, StaticConfigProvider, load_dao_config
from .connection import MongoConnection
from .dao import Dao
from .errors import (
    DaoConnectionError,
    DaoError,
    DaoFailure,
    DaoResult,
    DaoStoreError,
    DaoValidationError,
    ErrorKind,
)
from .factory import create_dao, create_logger
from .inmemory_database import InMemoryDatabase
from .logger import Logger
from .models import (
    UNBOUNDED,
    BulkWriteSummary,
    Direction,
    ForeignJoinSpec,
    PageRequest,
    PageResult,
    SortField,
)
from .query import MATCH_ALL, Condition, FieldExpr, command
from .silent_logger import SilentLogger
from .stdout_logger import StdoutLogger

__all__ = [
    # Version
    "__version__",
    # DAO
    "Dao",
    "create_dao",
    "MongoConnection",
    "InMemoryDatabase",
    # Descriptors and results
    "Condition",
    "FieldExpr",
    "command",
    "MATCH_ALL",
    "SortField",
    "Direction",
    "ForeignJoinSpec",
    "PageRequest",
    "PageResult",
    "BulkWriteSummary",
    "UNBOUNDED",
    "DaoResult",
    "DaoFailure",
    "ErrorKind",
    # Configuration
    "ConfigProvider",
    "EnvConfigProvider",
    "StaticConfigProvider",
    "DaoConfig",
    "load_dao_config",
    # Logging
    "Logger",
    "StdoutLogger",
    "SilentLogger",
    "create_logger",
    # Exceptions
    "DaoError",
    "DaoValidationError",
    "DaoStoreError",
    "DaoConnectionError",
]
