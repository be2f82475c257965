# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Generic data-access object over a MongoDB database.

Every public operation is a coroutine returning a :class:`DaoResult`. Errors
never cross the boundary: rejected descriptors and store failures are logged
and reported through ``DaoResult.failure`` while ``DaoResult.value`` holds the
operation's sentinel (``None``, ``-1`` or an empty page).

Example:
    >>> dao = Dao(connection.database)
    >>> result = await dao.select("orders", where={"status": "paid"},
    ...                           sort=[SortField.desc("_add_time")], want_total=True)
    >>> if result.ok:
    ...     page = result.value
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import UpdateOne
from pymongo.errors import BulkWriteError

from .config import DaoConfig
from .errors import DaoResult, DaoStoreError, DaoValidationError, ErrorKind
from .logger import Logger
from .models import UNBOUNDED, BulkWriteSummary, ForeignJoinSpec, PageRequest, PageResult
from .pagination import Window, has_more_after, page_window, scan_windows
from .pipeline import collapse_joins, count_pipeline, group_pipeline, join_pipeline
from .query import build_filter, build_projection, build_sort, is_empty_where, match_all_if_empty

ADD_TIME = "_add_time"
ADD_TIME_STR = "_add_time_str"


class Dao:
    """Data-access object bound to one database handle.

    The handle (a motor ``AsyncIOMotorDatabase`` or anything exposing the same
    collection API) is owned by the caller; the DAO never opens or closes
    connections.
    """

    def __init__(self, database: Any, logger: Logger | None = None, config: DaoConfig | None = None):
        """Initialize the DAO.

        Args:
            database: Database handle; ``database[name]`` must return a collection
            logger: Structured logger. Defaults to a stdout logger configured
                from LOG_* environment variables.
            config: DAO settings (scan chunking, timestamp format)
        """
        if database is None:
            raise ValueError("database handle is required")
        if logger is None:
            from .factory import create_logger
            logger = create_logger()

        self.database = database
        self.config = config or DaoConfig()
        self._logger = logger
        self._tz = self.config.tzinfo

    def _collection(self, name: str) -> Any:
        if not isinstance(name, str) or not name:
            raise DaoValidationError("collection name must be a non-empty string")
        return self.database[name]

    def _timestamps(self) -> tuple[int, str]:
        now = datetime.now(self._tz)
        return int(now.timestamp() * 1000), now.strftime(self.config.timestamp_format)

    async def _run(
        self,
        operation: str,
        collection: str,
        sentinel: Any,
        call: Callable[[], Awaitable[Any]],
    ) -> DaoResult[Any]:
        try:
            value = await call()
        except DaoValidationError as e:
            self._logger.warning(
                f"Dao.{operation} rejected", operation=operation, collection=collection, reason=str(e)
            )
            return DaoResult.fail(sentinel, ErrorKind.VALIDATION, operation, collection, str(e))
        except Exception as e:
            self._logger.exception(
                f"Dao.{operation} failed", operation=operation, collection=collection, error=str(e)
            )
            return DaoResult.fail(sentinel, ErrorKind.STORE, operation, collection, str(e))
        return DaoResult.success(value)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(
        self, collection: str, document: Mapping[str, Any], suppress_timestamp: bool = False
    ) -> DaoResult[str | None]:
        """Insert one document.

        ``_add_time`` (epoch ms) and ``_add_time_str`` are stamped unless
        suppress_timestamp is set or the document already carries ``_add_time``.

        Returns:
            Result whose value is the inserted ``_id`` as a string, or None
        """
        async def run() -> str:
            if not isinstance(document, Mapping):
                raise DaoValidationError("document must be a mapping")
            doc = dict(document)
            if not suppress_timestamp and not doc.get(ADD_TIME):
                doc[ADD_TIME], doc[ADD_TIME_STR] = self._timestamps()
            result = await self._collection(collection).insert_one(doc)
            return str(result.inserted_id)

        return await self._run("add", collection, None, run)

    async def adds(
        self, collection: str, documents: Sequence[Mapping[str, Any]], suppress_timestamp: bool = False
    ) -> DaoResult[int | None]:
        """Insert many documents in one unordered batch.

        The whole batch shares one timestamp pair. A supplied ``_id`` is
        stored as its string form.

        Returns:
            Result whose value is the inserted count, or None
        """
        async def run() -> int:
            if isinstance(documents, Mapping) or not isinstance(documents, Sequence):
                raise DaoValidationError("documents must be a list of mappings")
            if not documents:
                return 0
            add_time, add_time_str = self._timestamps()
            batch = []
            for document in documents:
                if not isinstance(document, Mapping):
                    raise DaoValidationError("documents must be a list of mappings")
                doc = dict(document)
                if not suppress_timestamp and not doc.get(ADD_TIME):
                    doc[ADD_TIME] = add_time
                    doc[ADD_TIME_STR] = add_time_str
                if doc.get("_id"):
                    doc["_id"] = str(doc["_id"])
                batch.append(doc)
            result = await self._collection(collection).insert_many(batch, ordered=False)
            return len(result.inserted_ids)

        return await self._run("adds", collection, None, run)

    async def delete(self, collection: str, where: Any) -> DaoResult[int]:
        """Delete every document matching where.

        An empty where is rejected before reaching the store.

        Returns:
            Result whose value is the deleted count, or -1
        """
        async def run() -> int:
            if is_empty_where(where):
                raise DaoValidationError("where must not be empty")
            result = await self._collection(collection).delete_many(build_filter(where))
            return result.deleted_count

        return await self._run("delete", collection, -1, run)

    async def update(self, collection: str, where: Any, patch: Mapping[str, Any]) -> DaoResult[int]:
        """Merge ``patch`` into every document matching where (``$set``).

        Returns:
            Result whose value is the modified count, or -1
        """
        async def run() -> int:
            if is_empty_where(where):
                raise DaoValidationError("where must not be empty")
            if not isinstance(patch, Mapping) or not patch:
                raise DaoValidationError("patch must be a non-empty mapping")
            result = await self._collection(collection).update_many(build_filter(where), {"$set": dict(patch)})
            return result.modified_count

        return await self._run("update", collection, -1, run)

    async def update_many(
        self,
        collection: str,
        documents: Sequence[Mapping[str, Any]],
        match_field: str = "_id",
        upsert: bool = False,
    ) -> DaoResult[BulkWriteSummary | None]:
        """Patch (or upsert) each document, matched on ``match_field``.

        Runs as one unordered bulk write; entries applied before a failure
        are not rolled back. ``_id`` is never part of the patch.

        Returns:
            Result whose value is a BulkWriteSummary, or None
        """
        async def run() -> BulkWriteSummary:
            if not isinstance(match_field, str) or not match_field:
                raise DaoValidationError("match_field must be a non-empty string")
            if isinstance(documents, Mapping) or not isinstance(documents, Sequence):
                raise DaoValidationError("documents must be a list of mappings")
            if not documents:
                return BulkWriteSummary()

            operations = []
            for index, document in enumerate(documents):
                if not isinstance(document, Mapping) or match_field not in document:
                    raise DaoValidationError(f"document {index} has no {match_field!r} value")
                patch = {key: value for key, value in document.items() if key != "_id"}
                operations.append(
                    UpdateOne({match_field: document[match_field]}, {"$set": patch}, upsert=upsert)
                )

            try:
                result = await self._collection(collection).bulk_write(operations, ordered=False)
            except BulkWriteError as e:
                write_errors = e.details.get("writeErrors", [])
                raise DaoStoreError(
                    f"bulk write finished with {len(write_errors)} failed entries"
                ) from e
            return BulkWriteSummary.from_result(result)

        return await self._run("update_many", collection, None, run)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def count(self, collection: str, where: Any = None) -> DaoResult[int | None]:
        """Count documents matching where (all documents when where is empty)."""
        async def run() -> int:
            return await self._collection(collection).count_documents(build_filter(where))

        return await self._run("count", collection, None, run)

    async def _group(self, operation: str, accumulator: str, collection: str, field_name: str, where: Any):
        async def run() -> Any:
            if not isinstance(field_name, str) or not field_name:
                raise DaoValidationError("field_name is required")
            filter_doc = match_all_if_empty(build_filter(where))
            cursor = self._collection(collection).aggregate(group_pipeline(filter_doc, accumulator, field_name))
            rows = await cursor.to_list(length=1)
            return (rows[0].get("num") if rows else None) or 0

        return await self._run(operation, collection, None, run)

    async def sum(self, collection: str, field_name: str, where: Any = None) -> DaoResult[Any]:
        """Sum of field_name over matching documents; 0 when nothing matches."""
        return await self._group("sum", "$sum", collection, field_name, where)

    async def avg(self, collection: str, field_name: str, where: Any = None) -> DaoResult[Any]:
        """Average of field_name over matching documents; 0 when nothing matches."""
        return await self._group("avg", "$avg", collection, field_name, where)

    async def max(self, collection: str, field_name: str, where: Any = None) -> DaoResult[Any]:
        """Largest field_name value among matching documents; 0 when nothing matches."""
        return await self._group("max", "$max", collection, field_name, where)

    async def min(self, collection: str, field_name: str, where: Any = None) -> DaoResult[Any]:
        """Smallest field_name value among matching documents; 0 when nothing matches."""
        return await self._group("min", "$min", collection, field_name, where)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _find(self, collection: str, filter_doc: dict, sort: Any, fields: Any) -> Any:
        sort_pairs = build_sort(sort)
        cursor = self._collection(collection).find(filter_doc, build_projection(fields))
        if sort_pairs:
            cursor = cursor.sort(sort_pairs)
        return cursor

    async def select(
        self,
        collection: str,
        where: Any = None,
        sort: Any = None,
        fields: Any = None,
        page_index: int = 1,
        page_size: int = 10,
        want_total: bool = False,
    ) -> DaoResult[PageResult | None]:
        """Fetch one page of matching documents.

        ``page_size=-1`` requests every matching row and is served by
        :meth:`select_all`.

        Returns:
            Result whose value is a PageResult, or None
        """
        if page_size == UNBOUNDED:
            return await self.select_all(collection, where, sort, fields, page_index, page_size)

        async def run() -> PageResult:
            request = PageRequest(page_index, page_size, want_total).normalized()
            filter_doc = build_filter(where)
            window = page_window(request)
            cursor = self._find(collection, filter_doc, sort, fields).skip(window.skip).limit(window.limit)

            total = 0
            if request.want_total:
                total = await self._collection(collection).count_documents(filter_doc)
            rows = await cursor.to_list(length=None)
            return PageResult(
                rows=rows,
                has_more=has_more_after(total, request),
                total=total,
                page_index=request.page_index,
                page_size=request.page_size,
            )

        return await self._run("select", collection, None, run)

    async def selects(
        self,
        collection: str,
        where: Any = None,
        sort: Any = None,
        fields: Any = None,
        page_index: int = 1,
        page_size: int = 10,
        want_total: bool = False,
        joins: Sequence[ForeignJoinSpec] = (),
        post_where: Any = None,
        post_sort: Any = None,
    ) -> DaoResult[PageResult | None]:
        """Fetch one page of documents joined with other collections.

        The page window is applied before the joins, so each join only looks
        up rows for the current page. ``post_where``/``post_sort`` run after
        the joins and may shrink the page; ``total`` and ``has_more`` then
        describe the main collection only.

        Returns:
            Result whose value is a PageResult, or None
        """
        async def run() -> PageResult:
            request = PageRequest(page_index, page_size, want_total).normalized()
            join_list = list(joins or ())
            pipeline = join_pipeline(
                where, sort, fields, page_window(request), join_list, post_where, post_sort
            )
            coll = self._collection(collection)

            total = 0
            if request.want_total:
                counted = await coll.aggregate(count_pipeline(where, sort)).to_list(length=1)
                total = counted[0]["total"] if counted else 0
            rows = await coll.aggregate(pipeline).to_list(length=None)
            return PageResult(
                rows=collapse_joins(rows, join_list),
                has_more=has_more_after(total, request),
                total=total,
                page_index=request.page_index,
                page_size=request.page_size,
            )

        return await self._run("selects", collection, None, run)

    async def find_by_where(
        self, collection: str, where: Any, sort: Any = None, fields: Any = None
    ) -> DaoResult[dict[str, Any] | None]:
        """First document matching a non-empty where, or None."""
        async def run() -> dict[str, Any] | None:
            if is_empty_where(where):
                raise DaoValidationError("where must not be empty")
            rows = await self._find(collection, build_filter(where), sort, fields).limit(1).to_list(length=1)
            return rows[0] if rows else None

        return await self._run("find_by_where", collection, None, run)

    async def find_list_by_where(
        self, collection: str, where: Any, sort: Any = None, fields: Any = None
    ) -> DaoResult[list[dict[str, Any]] | None]:
        """Every document matching a non-empty where; None when nothing matches."""
        async def run() -> list[dict[str, Any]] | None:
            if is_empty_where(where):
                raise DaoValidationError("where must not be empty")
            rows = await self._find(collection, build_filter(where), sort, fields).to_list(length=None)
            return rows or None

        return await self._run("find_list_by_where", collection, None, run)

    async def find_by_id(
        self, collection: str, id: Any, fields: Any = None
    ) -> DaoResult[dict[str, Any] | None]:
        """Document whose ``_id`` equals id.

        A string id is matched both as an ObjectId (when it parses as one)
        and as the raw string, since ``adds`` stores supplied ids as strings.
        """
        async def run() -> dict[str, Any] | None:
            if id is None or id == "":
                raise DaoValidationError("id is required")
            candidates = [id]
            if isinstance(id, str):
                try:
                    candidates.insert(0, ObjectId(id))
                except (TypeError, InvalidId):
                    pass
            filter_doc = {"_id": candidates[0]} if len(candidates) == 1 else {"_id": {"$in": candidates}}
            rows = await self._find(collection, filter_doc, None, fields).limit(1).to_list(length=1)
            return rows[0] if rows else None

        return await self._run("find_by_id", collection, None, run)

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> DaoResult[list | None]:
        """Run a caller-supplied aggregation pipeline."""
        async def run() -> list:
            if isinstance(pipeline, Mapping) or not isinstance(pipeline, Sequence):
                raise DaoValidationError("pipeline must be a list of stages")
            return await self._collection(collection).aggregate(list(pipeline)).to_list(length=None)

        return await self._run("aggregate", collection, None, run)

    # ------------------------------------------------------------------
    # Chunked scan
    # ------------------------------------------------------------------

    async def select_all(
        self,
        collection: str,
        where: Any = None,
        sort: Any = None,
        fields: Any = None,
        page_index: int = 1,
        page_size: int = 10,
        want_total: bool = False,
    ) -> DaoResult[PageResult]:
        """Fetch a page of any size by splitting it into bounded chunks.

        ``page_size=-1`` returns every matching row and always counts. The
        page is cut into windows of at most ``config.scan_chunk_size`` rows,
        fetched concurrently with at most ``config.scan_concurrency`` in
        flight, and reassembled in window order. If any chunk fails the rows
        are dropped and the result reports a store failure.

        An empty where is replaced by the always-true predicate. Without a
        count, ``total`` is the number of rows returned.

        Returns:
            Result whose value is a PageResult (empty rows on failure)
        """
        empty = PageResult(rows=[], has_more=False, total=0, page_index=page_index, page_size=page_size)

        async def run() -> PageResult:
            request = PageRequest(page_index, page_size, want_total).normalized()
            filter_doc = match_all_if_empty(build_filter(where))
            sort_pairs = build_sort(sort)
            projection = build_projection(fields)
            coll = self._collection(collection)

            total: int | None = None
            has_more = False
            if request.want_total:
                total = await coll.count_documents(filter_doc)
                has_more = has_more_after(total, request)

            windows = scan_windows(request, total, self.config.scan_chunk_size)
            semaphore = asyncio.Semaphore(self.config.scan_concurrency)

            async def fetch(window: Window) -> list[dict[str, Any]]:
                async with semaphore:
                    cursor = coll.find(filter_doc, projection)
                    if sort_pairs:
                        cursor = cursor.sort(sort_pairs)
                    return await cursor.skip(window.skip).limit(window.limit).to_list(length=None)

            tasks = [asyncio.ensure_future(fetch(window)) for window in windows]
            try:
                chunks = await asyncio.gather(*tasks)
            except Exception:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            rows = [row for chunk in chunks for row in chunk]
            self._logger.debug(
                "Dao.select_all fetched",
                collection=collection,
                chunks=len(windows),
                rows=len(rows),
            )
            return PageResult(
                rows=rows,
                has_more=has_more,
                total=total if total is not None else len(rows),
                page_index=request.page_index,
                page_size=request.page_size,
            )

        return await self._run("select_all", collection, empty, run)

