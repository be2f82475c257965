# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Error taxonomy and result envelope for DAO operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class DaoError(Exception):
    """Base exception for DAO errors."""
    pass


class DaoValidationError(DaoError):
    """Exception raised when a query descriptor is rejected before reaching the store."""
    pass


class DaoStoreError(DaoError):
    """Exception raised when the underlying document store fails."""
    pass


class DaoConnectionError(DaoStoreError):
    """Exception raised when connection to the document store fails."""
    pass


class ErrorKind(str, Enum):
    """Kind of failure carried by a DaoResult."""

    VALIDATION = "validation"
    STORE = "store"


@dataclass(frozen=True)
class DaoFailure:
    """Structured description of a failed DAO operation.

    Attributes:
        kind: Failure category
        operation: Name of the DAO operation that failed (e.g. "delete")
        collection: Collection the operation targeted
        message: Human readable reason
    """
    kind: ErrorKind
    operation: str
    collection: str
    message: str

    def to_exception(self) -> DaoError:
        """Build the exception matching this failure kind."""
        text = f"{self.operation} on {self.collection} failed: {self.message}"
        if self.kind is ErrorKind.VALIDATION:
            return DaoValidationError(text)
        return DaoStoreError(text)


@dataclass(frozen=True)
class DaoResult(Generic[T]):
    """Outcome of a DAO operation.

    DAO operations never raise. On failure ``value`` holds the operation's
    sentinel (``None``, ``-1`` or an empty page) and ``failure`` describes
    what went wrong.
    """
    value: T
    failure: DaoFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.failure.kind if self.failure else None

    def unwrap(self) -> T:
        """Return the value, raising the typed exception if the operation failed.

        Raises:
            DaoValidationError: If the descriptor was rejected
            DaoStoreError: If the store call failed
        """
        if self.failure is not None:
            raise self.failure.to_exception()
        return self.value

    @classmethod
    def success(cls, value: Any) -> "DaoResult[Any]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        sentinel: Any,
        kind: ErrorKind,
        operation: str,
        collection: str,
        message: str,
    ) -> "DaoResult[Any]":
        return cls(
            value=sentinel,
            failure=DaoFailure(kind=kind, operation=operation, collection=collection, message=message),
        )
