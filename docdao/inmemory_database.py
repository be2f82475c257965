# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""In-memory database for testing and local development.

Implements the subset of the motor collection API the DAO relies on
(``find``/cursor, ``count_documents``, ``insert_one``, ``insert_many``,
``update_many``, ``delete_many``, ``aggregate``, ``bulk_write``) together
with the query operators and pipeline stages the DAO emits.

**Note**: This implementation is meant for small datasets. ``$lookup`` is
O(N*M) in the sizes of the joined collections.
"""

import asyncio
import copy
import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import BulkWriteError, DuplicateKeyError, OperationFailure
from pymongo.results import (
    BulkWriteResult,
    DeleteResult,
    InsertManyResult,
    InsertOneResult,
    UpdateResult,
)

logger = logging.getLogger(__name__)

_MISSING = object()


# ----------------------------------------------------------------------
# Value helpers
# ----------------------------------------------------------------------

def _resolve(doc: Any, path: str) -> Any:
    """Look up a dotted path; returns _MISSING when any segment is absent."""
    current = doc
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            if int(part) >= len(current):
                return _MISSING
            current = current[int(part)]
        elif isinstance(current, list):
            # Path through an array of sub-documents yields the array of their values
            values = [item[part] for item in current if isinstance(item, dict) and part in item]
            if not values:
                return _MISSING
            current = values
        else:
            return _MISSING
    return current


def _type_rank(value: Any) -> int:
    # MongoDB BSON comparison order
    if value is _MISSING or value is None:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, int | float):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, dict):
        return 4
    if isinstance(value, list):
        return 5
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, datetime):
        return 9
    return 10


def _sort_key(value: Any) -> tuple:
    rank = _type_rank(value)
    if rank == 1:
        return (rank, 0)
    if rank in (4, 5):
        return (rank, repr(value))
    return (rank, value)


def _compare(left: Any, right: Any) -> int | None:
    """Three-way comparison within one BSON type; None when types differ."""
    if left is _MISSING or right is _MISSING:
        return None
    if _type_rank(left) != _type_rank(right):
        return None
    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        return None
    return 0


def _candidates(value: Any) -> list:
    """Values a query condition is tested against (array fields match per element)."""
    if isinstance(value, list):
        return [value, *value]
    return [value]


def _equals(value: Any, target: Any) -> bool:
    if target is None:
        return value is _MISSING or value is None or (isinstance(value, list) and None in value)
    return any(candidate == target for candidate in _candidates(value) if candidate is not _MISSING)


# ----------------------------------------------------------------------
# Query matching
# ----------------------------------------------------------------------

def _match_operator(value: Any, op: str, operand: Any, options: str = "") -> bool:
    if op == "$eq":
        return _equals(value, operand)
    if op == "$ne":
        return not _equals(value, operand)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        for candidate in _candidates(value):
            result = _compare(candidate, operand)
            if result is None:
                continue
            if (op == "$gt" and result > 0) or (op == "$gte" and result >= 0) \
                    or (op == "$lt" and result < 0) or (op == "$lte" and result <= 0):
                return True
        return False
    if op == "$in":
        return any(_equals(value, item) for item in operand)
    if op == "$nin":
        return not any(_equals(value, item) for item in operand)
    if op == "$exists":
        return (value is not _MISSING) == bool(operand)
    if op == "$regex":
        flags = 0
        if "i" in options:
            flags |= re.IGNORECASE
        if "m" in options:
            flags |= re.MULTILINE
        pattern = re.compile(operand, flags) if isinstance(operand, str) else operand
        return any(isinstance(c, str) and pattern.search(c) for c in _candidates(value))
    if op == "$not":
        return not _match_condition(value, operand)
    if op == "$size":
        return isinstance(value, list) and len(value) == operand
    if op == "$all":
        return isinstance(value, list) and all(_equals(value, item) for item in operand)
    if op == "$elemMatch":
        return isinstance(value, list) and any(
            matches(item, operand) if isinstance(item, dict) else _match_condition(item, operand)
            for item in value
        )
    raise OperationFailure(f"unknown operator: {op}")


def _match_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(key.startswith("$") for key in condition):
        options = condition.get("$options", "")
        return all(
            _match_operator(value, op, operand, options)
            for op, operand in condition.items()
            if op != "$options"
        )
    if isinstance(condition, re.Pattern):
        return _match_operator(value, "$regex", condition)
    return _equals(value, condition)


def matches(doc: Dict[str, Any], filter_doc: Dict[str, Any], variables: Optional[Dict[str, Any]] = None) -> bool:
    """Return True when doc satisfies a MongoDB filter document."""
    for key, condition in (filter_doc or {}).items():
        if key == "$and":
            if not all(matches(doc, clause, variables) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches(doc, clause, variables) for clause in condition):
                return False
        elif key == "$nor":
            if any(matches(doc, clause, variables) for clause in condition):
                return False
        elif key == "$expr":
            if not evaluate(condition, doc, variables):
                return False
        elif not _match_condition(_resolve(doc, key), condition):
            return False
    return True


# ----------------------------------------------------------------------
# Aggregation expressions
# ----------------------------------------------------------------------

def _to_object_id(value: Any) -> Any:
    if value is None or isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (TypeError, InvalidId) as e:
        raise OperationFailure(f"Failed to parse objectId '{value}' in $convert") from e


def _convert(args: Dict[str, Any], doc: Dict[str, Any], variables: Optional[Dict[str, Any]]) -> Any:
    """$convert to "string" or "objectId", honoring onError and onNull."""
    value = evaluate(args.get("input"), doc, variables)
    if value is None:
        return evaluate(args.get("onNull"), doc, variables)
    target = args.get("to")
    try:
        if target == "string":
            return str(value)
        if target == "objectId":
            return _to_object_id(value)
    except OperationFailure:
        if "onError" in args:
            return evaluate(args["onError"], doc, variables)
        raise
    raise OperationFailure(f"Unsupported $convert target: {target!r}")


def evaluate(expression: Any, doc: Dict[str, Any], variables: Optional[Dict[str, Any]] = None) -> Any:
    """Evaluate an aggregation expression against doc."""
    variables = variables or {}
    if isinstance(expression, str) and expression.startswith("$$"):
        name, _, rest = expression[2:].partition(".")
        if name not in variables:
            raise OperationFailure(f"Use of undefined variable: {name}")
        value = variables[name]
        if rest:
            value = _resolve(value, rest)
        return None if value is _MISSING else value
    if isinstance(expression, str) and expression.startswith("$"):
        value = _resolve(doc, expression[1:])
        return None if value is _MISSING else value
    if isinstance(expression, list):
        return [evaluate(item, doc, variables) for item in expression]
    if not isinstance(expression, dict):
        return expression
    if len(expression) != 1 or not next(iter(expression)).startswith("$"):
        return {key: evaluate(value, doc, variables) for key, value in expression.items()}

    op, args = next(iter(expression.items()))

    if op == "$literal":
        return args
    if op == "$convert":
        return _convert(args, doc, variables)
    if op in ("$toString", "$toObjectId"):
        value = evaluate(args, doc, variables)
        if value is None:
            return None
        return str(value) if op == "$toString" else _to_object_id(value)

    values = [evaluate(arg, doc, variables) for arg in (args if isinstance(args, list) else [args])]
    if op == "$and":
        return all(values)
    if op == "$or":
        return any(values)
    if op == "$not":
        return not values[0]
    if op == "$in":
        return values[0] in (values[1] or [])
    if op in ("$eq", "$ne", "$gt", "$gte", "$lt", "$lte"):
        left, right = values
        if op == "$eq":
            return left == right
        if op == "$ne":
            return left != right
        order = _sort_key(left) > _sort_key(right), _sort_key(left) < _sort_key(right)
        return {
            "$gt": order[0],
            "$gte": not order[1],
            "$lt": order[1],
            "$lte": not order[0],
        }[op]
    raise OperationFailure(f"Unrecognized expression '{op}'")


# ----------------------------------------------------------------------
# Projection / sort helpers
# ----------------------------------------------------------------------

def project(doc: Dict[str, Any], projection: Optional[Dict[str, Any]], variables=None) -> Dict[str, Any]:
    """Apply an inclusion, exclusion or computed-field projection."""
    if not projection:
        return doc

    spec = dict(projection)
    include_id = bool(spec.pop("_id", True))
    computed = {key: value for key, value in spec.items() if isinstance(value, str | dict)}
    flags = {key: value for key, value in spec.items() if key not in computed}
    includes = [key for key, value in flags.items() if value]
    excludes = [key for key, value in flags.items() if not value]

    if (includes or computed) and excludes:
        raise OperationFailure(
            f"Cannot do exclusion on field {excludes[0]} in inclusion projection"
        )

    if includes or computed:
        result: Dict[str, Any] = {}
        if include_id and "_id" in doc:
            result["_id"] = doc["_id"]
        for key in includes:
            value = _resolve(doc, key)
            if value is not _MISSING:
                result[key] = value
        for key, expression in computed.items():
            result[key] = evaluate(expression, doc, variables)
        return result

    result = {key: value for key, value in doc.items() if key not in excludes}
    if not include_id:
        result.pop("_id", None)
    return result


def sort_documents(documents: List[Dict[str, Any]], sort_spec: List[tuple]) -> List[Dict[str, Any]]:
    """Stable multi-key sort; earlier keys take priority."""
    ordered = list(documents)
    for field_name, direction in reversed(sort_spec):
        ordered.sort(key=lambda doc: _sort_key(_resolve(doc, field_name)), reverse=direction < 0)
    return ordered


def _normalize_sort(key_or_list: Any, direction: Any = None) -> List[tuple]:
    if isinstance(key_or_list, str):
        return [(key_or_list, direction if direction is not None else 1)]
    if isinstance(key_or_list, dict):
        return list(key_or_list.items())
    return [tuple(item) for item in key_or_list]


# ----------------------------------------------------------------------
# Cursors
# ----------------------------------------------------------------------

class InMemoryCursor:
    """Find cursor supporting sort / skip / limit / to_list."""

    def __init__(self, collection: "InMemoryCollection", filter_doc: Dict[str, Any], projection: Any):
        self._collection = collection
        self._filter = filter_doc or {}
        self._projection = projection
        self._sort: List[tuple] = []
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list: Any, direction: Any = None) -> "InMemoryCursor":
        self._sort = _normalize_sort(key_or_list, direction)
        return self

    def skip(self, count: int) -> "InMemoryCursor":
        if count < 0:
            raise ValueError("skip must be >= 0")
        self._skip = count
        return self

    def limit(self, count: int) -> "InMemoryCursor":
        if not isinstance(count, int):
            raise TypeError("limit must be an integer")
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        await self._collection.database._yield()
        documents = [doc for doc in self._collection.documents() if matches(doc, self._filter)]
        if self._sort:
            documents = sort_documents(documents, self._sort)
        documents = documents[self._skip:]
        limit = abs(self._limit)
        if length is not None and (limit == 0 or length < limit):
            limit = length
        if limit:
            documents = documents[:limit]
        return [project(copy.deepcopy(doc), self._projection) for doc in documents]


class InMemoryCommandCursor:
    """Aggregation cursor; the pipeline runs when results are requested."""

    def __init__(self, collection: "InMemoryCollection", pipeline: List[Dict[str, Any]]):
        self._collection = collection
        self._pipeline = pipeline

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        await self._collection.database._yield()
        results = self._collection.database.run_pipeline(
            self._collection.documents(), self._pipeline
        )
        return results if length is None else results[:length]


# ----------------------------------------------------------------------
# Collection / database
# ----------------------------------------------------------------------

def _apply_update(doc: Dict[str, Any], update: Dict[str, Any]) -> bool:
    """Apply $set / $unset / $inc in place; returns True if doc changed."""
    before = copy.deepcopy(doc)
    for op, fields in update.items():
        if op == "$set":
            for key, value in fields.items():
                doc[key] = copy.deepcopy(value)
        elif op == "$unset":
            for key in fields:
                doc.pop(key, None)
        elif op == "$inc":
            for key, value in fields.items():
                doc[key] = doc.get(key, 0) + value
        else:
            raise OperationFailure(f"Unknown modifier: {op}")
    return doc != before


class InMemoryCollection:
    """One named collection of the in-memory database."""

    def __init__(self, database: "InMemoryDatabase", name: str):
        self.database = database
        self.name = name
        self._docs: Dict[Any, Dict[str, Any]] = {}

    def documents(self) -> List[Dict[str, Any]]:
        return list(self._docs.values())

    def _insert(self, doc: Dict[str, Any]) -> Any:
        doc_copy = copy.deepcopy(doc)
        doc_id = doc_copy.setdefault("_id", ObjectId())
        if doc_id in self._docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} dup key: {doc_id}")
        self._docs[doc_id] = doc_copy
        return doc_id

    def find(self, filter: Optional[Dict[str, Any]] = None, projection: Any = None) -> InMemoryCursor:
        return InMemoryCursor(self, filter or {}, projection)

    async def count_documents(self, filter: Dict[str, Any]) -> int:
        await self.database._yield()
        return sum(1 for doc in self._docs.values() if matches(doc, filter))

    async def insert_one(self, document: Dict[str, Any]) -> InsertOneResult:
        await self.database._yield()
        doc_id = self._insert(document)
        logger.debug("InMemoryDatabase: inserted document %s into %s", doc_id, self.name)
        return InsertOneResult(doc_id, True)

    async def insert_many(self, documents: List[Dict[str, Any]], ordered: bool = True) -> InsertManyResult:
        await self.database._yield()
        inserted: List[Any] = []
        write_errors = []
        for index, document in enumerate(documents):
            try:
                inserted.append(self._insert(document))
            except DuplicateKeyError as e:
                write_errors.append({"index": index, "code": 11000, "errmsg": str(e)})
                if ordered:
                    break
        if write_errors:
            raise BulkWriteError({
                "writeErrors": write_errors,
                "nInserted": len(inserted),
                "nUpserted": 0, "nMatched": 0, "nModified": 0, "nRemoved": 0,
                "upserted": [], "writeConcernErrors": [],
            })
        logger.debug("InMemoryDatabase: inserted %d documents into %s", len(inserted), self.name)
        return InsertManyResult(inserted, True)

    def _update(self, filter_doc: Dict[str, Any], update: Dict[str, Any], many: bool, upsert: bool) -> dict:
        matched = modified = 0
        upserted_id = None
        for doc in self._docs.values():
            if not matches(doc, filter_doc):
                continue
            matched += 1
            if _apply_update(doc, update):
                modified += 1
            if not many:
                break
        if matched == 0 and upsert:
            seed = {key: value for key, value in filter_doc.items()
                    if not key.startswith("$") and not isinstance(value, dict)}
            _apply_update(seed, update)
            upserted_id = self._insert(seed)
        return {"n": matched if upserted_id is None else 1, "nModified": modified, "upserted": upserted_id}

    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> UpdateResult:
        await self.database._yield()
        raw = self._update(filter, update, many=True, upsert=upsert)
        if raw["upserted"] is None:
            del raw["upserted"]
        return UpdateResult(raw, True)

    async def delete_many(self, filter: Dict[str, Any]) -> DeleteResult:
        await self.database._yield()
        doomed = [doc_id for doc_id, doc in self._docs.items() if matches(doc, filter)]
        for doc_id in doomed:
            del self._docs[doc_id]
        logger.debug("InMemoryDatabase: deleted %d documents from %s", len(doomed), self.name)
        return DeleteResult({"n": len(doomed)}, True)

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> InMemoryCommandCursor:
        return InMemoryCommandCursor(self, pipeline)

    async def bulk_write(self, requests: List[Any], ordered: bool = True) -> BulkWriteResult:
        """Apply UpdateOne / InsertOne requests built with pymongo.operations."""
        await self.database._yield()
        result = {
            "nInserted": 0, "nUpserted": 0, "nMatched": 0, "nModified": 0, "nRemoved": 0,
            "upserted": [], "writeErrors": [], "writeConcernErrors": [],
        }
        for index, request in enumerate(requests):
            kind = type(request).__name__
            try:
                if kind == "UpdateOne":
                    raw = self._update(request._filter, request._doc, many=False, upsert=bool(request._upsert))
                    if raw["upserted"] is not None:
                        result["nUpserted"] += 1
                        result["upserted"].append({"index": index, "_id": raw["upserted"]})
                    else:
                        result["nMatched"] += raw["n"]
                        result["nModified"] += raw["nModified"]
                elif kind == "InsertOne":
                    self._insert(request._doc)
                    result["nInserted"] += 1
                else:
                    raise OperationFailure(f"unsupported bulk operation: {kind}")
            except (DuplicateKeyError, OperationFailure) as e:
                result["writeErrors"].append({"index": index, "code": getattr(e, "code", None), "errmsg": str(e)})
                if ordered:
                    break
        if result["writeErrors"]:
            raise BulkWriteError(result)
        return BulkWriteResult(result, True)


class InMemoryDatabase:
    """Dictionary-backed stand-in for a motor database handle."""

    def __init__(self, latency: float = 0.0):
        """Initialize the in-memory database.

        Args:
            latency: Seconds every store call sleeps, to simulate network I/O
        """
        self.latency = latency
        self.collections: Dict[str, InMemoryCollection] = {}

    async def _yield(self) -> None:
        await asyncio.sleep(self.latency)

    def __getitem__(self, name: str) -> InMemoryCollection:
        return self.get_collection(name)

    def get_collection(self, name: str) -> InMemoryCollection:
        if name not in self.collections:
            self.collections[name] = InMemoryCollection(self, name)
        return self.collections[name]

    def load(self, name: str, documents: List[Dict[str, Any]]) -> List[Any]:
        """Synchronously seed a collection (useful for tests); returns the ids."""
        collection = self.get_collection(name)
        return [collection._insert(doc) for doc in documents]

    def clear_all(self) -> None:
        """Drop every collection."""
        self.collections.clear()
        logger.debug("InMemoryDatabase: cleared all collections")

    # ------------------------------------------------------------------
    # Pipeline execution
    # ------------------------------------------------------------------

    def run_pipeline(
        self,
        documents: List[Dict[str, Any]],
        pipeline: List[Dict[str, Any]],
        variables: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Run an aggregation pipeline over documents.

        Supported stages: $match, $sort, $skip, $limit, $project, $lookup,
        $group, $count. Unknown stages are logged and skipped.
        """
        results = [copy.deepcopy(doc) for doc in documents]
        for stage in pipeline:
            stage_name, spec = next(iter(stage.items()))
            if stage_name == "$match":
                results = [doc for doc in results if matches(doc, spec, variables)]
            elif stage_name == "$sort":
                results = sort_documents(results, list(spec.items()))
            elif stage_name == "$skip":
                results = results[spec:]
            elif stage_name == "$limit":
                results = results[:spec]
            elif stage_name == "$project":
                results = [project(doc, spec, variables) for doc in results]
            elif stage_name == "$lookup":
                results = [self._lookup(doc, spec) for doc in results]
            elif stage_name == "$group":
                results = self._group(results, spec, variables)
            elif stage_name == "$count":
                results = [{spec: len(results)}] if results else []
            else:
                logger.warning("InMemoryDatabase: aggregation stage '%s' not implemented, skipping", stage_name)
        return results

    def _lookup(self, doc: Dict[str, Any], spec: Dict[str, Any]) -> Dict[str, Any]:
        foreign = self.collections.get(spec["from"])
        foreign_docs = foreign.documents() if foreign else []

        if "pipeline" in spec:
            variables = {name: evaluate(expression, doc) for name, expression in spec.get("let", {}).items()}
            joined = self.run_pipeline(foreign_docs, spec["pipeline"], variables)
        else:
            local_value = _resolve(doc, spec["localField"])
            local_value = None if local_value is _MISSING else local_value
            joined = [copy.deepcopy(other) for other in foreign_docs
                      if _equals(_resolve(other, spec["foreignField"]), local_value)]

        enriched = dict(doc)
        enriched[spec["as"]] = joined
        return enriched

    def _group(self, documents: List[Dict[str, Any]], spec: Dict[str, Any], variables) -> List[Dict[str, Any]]:
        groups: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
        keys: Dict[Any, Any] = {}
        for doc in documents:
            key = evaluate(spec["_id"], doc, variables)
            hashable = repr(key)
            keys[hashable] = key
            groups[hashable].append(doc)

        results = []
        for hashable, members in groups.items():
            row: Dict[str, Any] = {"_id": keys[hashable]}
            for name, accumulator in spec.items():
                if name == "_id":
                    continue
                op, expression = next(iter(accumulator.items()))
                values = [evaluate(expression, doc, variables) for doc in members]
                numbers = [v for v in values if isinstance(v, int | float) and not isinstance(v, bool)]
                present = [v for v in values if v is not None]
                if op == "$sum":
                    row[name] = sum(numbers)
                elif op == "$avg":
                    row[name] = sum(numbers) / len(numbers) if numbers else None
                elif op == "$max":
                    row[name] = max(present, key=_sort_key) if present else None
                elif op == "$min":
                    row[name] = min(present, key=_sort_key) if present else None
                else:
                    raise OperationFailure(f"Unknown group operator '{op}'")
            results.append(row)
        return results
