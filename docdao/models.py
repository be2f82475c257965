# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Descriptor and result types exchanged with DAO callers."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import DaoValidationError

# Page size meaning "every matching row"
UNBOUNDED = -1

DEFAULT_PAGE_SIZE = 10

LOCAL_KEY_TYPES = ("string", "objectId")


class Direction(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"

    @property
    def native(self) -> int:
        return 1 if self is Direction.ASC else -1


@dataclass(frozen=True)
class SortField:
    """One entry of a sort specification; earlier entries take priority."""
    name: str
    direction: Direction = Direction.ASC

    @classmethod
    def asc(cls, name: str) -> "SortField":
        return cls(name, Direction.ASC)

    @classmethod
    def desc(cls, name: str) -> "SortField":
        return cls(name, Direction.DESC)


@dataclass(frozen=True)
class ForeignJoinSpec:
    """Describes one emulated join against another collection.

    Attributes:
        target_collection: Collection to join with
        local_key: Field of the main row holding the join value
        foreign_key: Field of the target collection compared with the local key
        alias: Field under which joined rows are attached
        limit: Maximum joined rows per main row. 1 collapses the list to a
            single document or None; 0 or None keeps every match.
        where: Filter applied to the joined rows
        sort: Sort applied to the joined rows
        fields: Projection applied to the joined rows
        local_key_type: Optional conversion of the local key before matching
            ("string" or "objectId")
    """
    target_collection: str
    local_key: str
    foreign_key: str
    alias: str
    limit: int | None = None
    where: Any = None
    sort: Any = None
    fields: Mapping[str, Any] | None = None
    local_key_type: str | None = None

    @property
    def collapses(self) -> bool:
        return self.limit == 1

    def validate(self) -> None:
        """Check the join description.

        Raises:
            DaoValidationError: If a required attribute is missing or invalid
        """
        for name in ("target_collection", "local_key", "foreign_key", "alias"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise DaoValidationError(f"join {name} must be a non-empty string")
        if self.limit is not None and (not isinstance(self.limit, int) or self.limit < 0):
            raise DaoValidationError(f"join limit must be a non-negative integer, got {self.limit!r}")
        if self.local_key_type is not None and self.local_key_type not in LOCAL_KEY_TYPES:
            raise DaoValidationError(
                f"join local_key_type must be one of {LOCAL_KEY_TYPES}, got {self.local_key_type!r}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForeignJoinSpec":
        """Build a join from the camelCase descriptor handlers send over the wire.

        Recognized keys: dbName, localKey, foreignKey, as, limit, whereJson,
        sortArr, fieldJson, localKeyType.
        """
        return cls(
            target_collection=data.get("dbName", ""),
            local_key=data.get("localKey", ""),
            foreign_key=data.get("foreignKey", ""),
            alias=data.get("as", ""),
            limit=data.get("limit"),
            where=data.get("whereJson"),
            sort=data.get("sortArr"),
            fields=data.get("fieldJson"),
            local_key_type=data.get("localKeyType"),
        )


@dataclass(frozen=True)
class PageRequest:
    """Requested page. ``page_size == UNBOUNDED`` asks for every matching row."""
    page_index: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    want_total: bool = False

    @property
    def unbounded(self) -> bool:
        return self.page_size == UNBOUNDED

    @property
    def offset(self) -> int:
        if self.unbounded:
            return 0
        return (self.page_index - 1) * self.page_size

    def normalized(self) -> "PageRequest":
        """Validate the request and expand the unbounded sentinel.

        An unbounded request always starts at page 1 and always counts.

        Raises:
            DaoValidationError: If page_index or page_size is out of range
        """
        if isinstance(self.page_index, bool) or not isinstance(self.page_index, int) or self.page_index < 1:
            raise DaoValidationError(f"page_index must be >= 1, got {self.page_index!r}")
        if isinstance(self.page_size, bool) or not isinstance(self.page_size, int) \
                or self.page_size == 0 or self.page_size < UNBOUNDED:
            raise DaoValidationError(f"page_size must be positive or {UNBOUNDED}, got {self.page_size!r}")
        if self.unbounded:
            return PageRequest(page_index=1, page_size=UNBOUNDED, want_total=True)
        return PageRequest(self.page_index, self.page_size, bool(self.want_total))


@dataclass
class PageResult:
    """Uniform envelope returned by paginated reads."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    total: int = 0
    page_index: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def to_dict(self) -> dict[str, Any]:
        """Render the envelope handed back to HTTP handlers."""
        return {
            "rows": self.rows,
            "hasMore": self.has_more,
            "total": self.total,
            "code": 0,
            "pageIndex": self.page_index,
            "pageSize": self.page_size,
        }


@dataclass(frozen=True)
class BulkWriteSummary:
    """Counters reported by an unordered bulk upsert."""
    matched_count: int = 0
    modified_count: int = 0
    upserted_count: int = 0
    upserted_ids: dict[int, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: Any) -> "BulkWriteSummary":
        """Copy the counters out of a driver BulkWriteResult."""
        return cls(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_count=result.upserted_count,
            upserted_ids=dict(result.upserted_ids or {}),
        )
