# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Query builder.

Turns declarative where / sort / projection descriptors into native MongoDB
filter documents, sort specifications and projection documents.

A where descriptor is one of:

- a mapping of field name to either a plain value (equality), a raw
  operator mapping (``{"$gte": 1}``) or a :class:`FieldExpr`;
- a sequence of :class:`Condition` objects, merged per field.

Example:
    >>> from docdao.query import build_filter, command
    >>> build_filter({"age": command.gte(18).lt(65), "city": "NYC"})
    {'age': {'$gte': 18, '$lt': 65}, 'city': 'NYC'}
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import DaoValidationError
from .models import Direction, SortField

FIELD_OPERATORS = frozenset({
    "$eq", "$ne", "$gt", "$gte", "$lt", "$lte",
    "$in", "$nin", "$exists", "$regex", "$options",
    "$not", "$all", "$size", "$elemMatch", "$type", "$mod",
})

LOGICAL_OPERATORS = frozenset({"$and", "$or", "$nor"})

TOP_LEVEL_OPERATORS = LOGICAL_OPERATORS | {"$expr"}

# Always-true predicate used where an empty filter must not reach the store.
MATCH_ALL: dict[str, Any] = {"_id": {"$ne": "___"}}

_DIRECTIONS = {
    None: Direction.ASC,
    "": Direction.ASC,
    1: Direction.ASC,
    "asc": Direction.ASC,
    "ascending": Direction.ASC,
    -1: Direction.DESC,
    "desc": Direction.DESC,
    "descending": Direction.DESC,
}


def _operator_name(op: str) -> str:
    name = op if op.startswith("$") else f"${op}"
    if name not in FIELD_OPERATORS:
        raise DaoValidationError(f"unknown query operator: {op!r}")
    return name


class FieldExpr:
    """Chainable operator expression for a single field.

    Instances are immutable; every call returns a new expression, so the
    module-level :data:`command` can be shared freely.
    """

    def __init__(self, ops: Mapping[str, Any] | None = None):
        self._ops: dict[str, Any] = dict(ops or {})

    def _with(self, op: str, value: Any) -> "FieldExpr":
        ops = dict(self._ops)
        ops[op] = value
        return FieldExpr(ops)

    def eq(self, value: Any) -> "FieldExpr":
        return self._with("$eq", value)

    def neq(self, value: Any) -> "FieldExpr":
        return self._with("$ne", value)

    def gt(self, value: Any) -> "FieldExpr":
        return self._with("$gt", value)

    def gte(self, value: Any) -> "FieldExpr":
        return self._with("$gte", value)

    def lt(self, value: Any) -> "FieldExpr":
        return self._with("$lt", value)

    def lte(self, value: Any) -> "FieldExpr":
        return self._with("$lte", value)

    def in_(self, values: Sequence[Any]) -> "FieldExpr":
        return self._with("$in", list(values))

    def nin(self, values: Sequence[Any]) -> "FieldExpr":
        return self._with("$nin", list(values))

    def exists(self, flag: bool = True) -> "FieldExpr":
        return self._with("$exists", bool(flag))

    def regex(self, pattern: str, options: str | None = None) -> "FieldExpr":
        expr = self._with("$regex", pattern)
        if options:
            expr = expr._with("$options", options)
        return expr

    def size(self, length: int) -> "FieldExpr":
        return self._with("$size", length)

    def all(self, values: Sequence[Any]) -> "FieldExpr":
        return self._with("$all", list(values))

    def to_mongo(self) -> dict[str, Any]:
        if not self._ops:
            raise DaoValidationError("empty field expression")
        return dict(self._ops)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FieldExpr) and other._ops == self._ops

    def __repr__(self) -> str:
        return f"FieldExpr({self._ops!r})"


command = FieldExpr()


@dataclass(frozen=True)
class Condition:
    """Tagged predicate: ``field <op> value``. ``op`` may omit the ``$`` prefix."""
    field: str
    op: str
    value: Any


def is_empty_where(where: Any) -> bool:
    """Return True when a where descriptor carries no constraint."""
    if where is None:
        return True
    if isinstance(where, Mapping | list | tuple):
        return len(where) == 0
    return False


def _render_operators(field_name: str, ops: Mapping[str, Any]) -> dict[str, Any]:
    rendered: dict[str, Any] = {}
    for op, value in ops.items():
        name = _operator_name(op)
        if name == "$not":
            value = _render_field_value(field_name, value)
        rendered[name] = value
    return rendered


def _render_field_value(field_name: str, value: Any) -> Any:
    if isinstance(value, FieldExpr):
        return value.to_mongo()
    if isinstance(value, Condition):
        raise DaoValidationError(f"Condition is not allowed as the value of field {field_name!r}")
    if isinstance(value, Mapping) and value:
        dollar = [key for key in value if isinstance(key, str) and key.startswith("$")]
        if dollar and len(dollar) != len(value):
            raise DaoValidationError(
                f"field {field_name!r} mixes operators and plain keys: {sorted(map(str, value))}"
            )
        if dollar:
            return _render_operators(field_name, value)
    return value


def _render_conditions(conditions: Sequence[Any]) -> dict[str, Any]:
    rendered: dict[str, Any] = {}
    for condition in conditions:
        if not isinstance(condition, Condition):
            raise DaoValidationError(
                f"where sequences must contain Condition items, got {type(condition).__name__}"
            )
        if not isinstance(condition.field, str) or not condition.field:
            raise DaoValidationError("condition field must be a non-empty string")
        existing = rendered.setdefault(condition.field, {})
        existing[_operator_name(condition.op)] = condition.value
    return rendered


def build_filter(where: Any) -> dict[str, Any]:
    """Render a where descriptor into a MongoDB filter document.

    Args:
        where: Mapping, sequence of Condition, or None

    Returns:
        Filter document; ``{}`` when there is no constraint

    Raises:
        DaoValidationError: If the descriptor is malformed
    """
    if is_empty_where(where):
        return {}
    if isinstance(where, list | tuple):
        return _render_conditions(where)
    if not isinstance(where, Mapping):
        raise DaoValidationError(f"where must be a mapping or a list of conditions, got {type(where).__name__}")

    rendered: dict[str, Any] = {}
    for key, value in where.items():
        if not isinstance(key, str) or not key:
            raise DaoValidationError(f"where keys must be non-empty strings, got {key!r}")
        if key.startswith("$"):
            if key not in TOP_LEVEL_OPERATORS:
                raise DaoValidationError(f"unsupported top-level operator: {key!r}")
            if key in LOGICAL_OPERATORS:
                if not isinstance(value, list | tuple) or not value:
                    raise DaoValidationError(f"{key} expects a non-empty list of where clauses")
                clauses = [build_filter(clause) for clause in value]
                # An empty clause matches every document
                if any(not clause for clause in clauses):
                    raise DaoValidationError(f"{key} clauses must not be empty")
                rendered[key] = clauses
            else:
                rendered[key] = value
            continue
        rendered[key] = _render_field_value(key, value)
    return rendered


def match_all_if_empty(filter_doc: Mapping[str, Any]) -> dict[str, Any]:
    """Replace an empty filter with the always-true predicate."""
    if not filter_doc:
        return dict(MATCH_ALL)
    return dict(filter_doc)


def _direction(value: Any) -> Direction:
    if isinstance(value, Direction):
        return value
    key = value.lower() if isinstance(value, str) else value
    try:
        return _DIRECTIONS[key]
    except (KeyError, TypeError) as e:
        raise DaoValidationError(f"unknown sort direction: {value!r}") from e


def _is_named_entry(item: Mapping[str, Any]) -> bool:
    # {"name": "price", "type": "desc"} as opposed to {"name": -1}
    if not isinstance(item.get("name"), str) or not set(item) <= {"name", "type"}:
        return False
    return "type" in item or item["name"].lower() not in _DIRECTIONS


def _sort_entries(sort: Any) -> list[tuple[str, Direction]]:
    if isinstance(sort, Mapping):
        return [(name, _direction(value)) for name, value in sort.items()]

    entries: list[tuple[str, Direction]] = []
    for item in sort:
        if isinstance(item, SortField):
            entries.append((item.name, _direction(item.direction)))
        elif isinstance(item, Mapping) and _is_named_entry(item):
            entries.append((item["name"], _direction(item.get("type"))))
        elif isinstance(item, Mapping):
            entries.extend(_sort_entries(item))
        elif isinstance(item, tuple) and len(item) == 2:
            entries.append((item[0], _direction(item[1])))
        else:
            raise DaoValidationError(f"unsupported sort entry: {item!r}")
    return entries


def build_sort(sort: Any) -> list[tuple[str, int]] | None:
    """Render a sort descriptor into ``[(field, 1 | -1), ...]``.

    Accepts SortField items, ``{"name", "type"}`` dicts, single-key
    ``{field: direction}`` dicts, ``(field, direction)`` tuples, or one
    mapping of several fields. Order is preserved; a repeated field keeps its
    first position and its last direction.

    Returns:
        Sort pairs, or None when there is nothing to sort on

    Raises:
        DaoValidationError: If an entry or direction is not recognized
    """
    if not sort:
        return None
    if isinstance(sort, str):
        raise DaoValidationError("sort must be a sequence, not a string")

    ordered: dict[str, int] = {}
    for name, direction in _sort_entries(sort):
        if not isinstance(name, str) or not name:
            raise DaoValidationError(f"sort field names must be non-empty strings, got {name!r}")
        ordered[name] = direction.native
    return list(ordered.items())


def sort_document(pairs: list[tuple[str, int]]) -> dict[str, int]:
    """Turn sort pairs into the mapping used by a ``$sort`` stage."""
    return dict(pairs)


def build_projection(fields: Any) -> dict[str, Any] | None:
    """Render a field projection; passed through unchanged when present.

    Raises:
        DaoValidationError: If fields is not a mapping of field names
    """
    if not fields:
        return None
    if not isinstance(fields, Mapping):
        raise DaoValidationError(f"fields must be a mapping, got {type(fields).__name__}")
    for key in fields:
        if not isinstance(key, str) or not key:
            raise DaoValidationError(f"projection keys must be non-empty strings, got {key!r}")
    return dict(fields)
