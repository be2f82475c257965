# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Aggregation pipeline rendering for joins and aggregate helpers."""

from collections.abc import Mapping, Sequence
from typing import Any

from .models import ForeignJoinSpec
from .pagination import Window
from .query import build_filter, build_projection, build_sort, sort_document

# Variable bound by every $lookup sub-pipeline to the main row's local key.
JOIN_VARIABLE = "join_key"

ACCUMULATORS = ("$sum", "$avg", "$max", "$min")


def _local_key_expression(join: ForeignJoinSpec) -> Any:
    path = f"${join.local_key}"
    if join.local_key_type == "string":
        return {"$toString": path}
    if join.local_key_type == "objectId":
        # A key that is not 24-hex joins nothing instead of failing the page
        return {"$convert": {"input": path, "to": "objectId", "onError": None, "onNull": None}}
    return path


def _filter_and_sort_stages(where: Any, sort: Any) -> list[dict[str, Any]]:
    stages: list[dict[str, Any]] = []
    filter_doc = build_filter(where)
    if filter_doc:
        stages.append({"$match": filter_doc})
    sort_pairs = build_sort(sort)
    if sort_pairs:
        stages.append({"$sort": sort_document(sort_pairs)})
    return stages


def lookup_stage(join: ForeignJoinSpec) -> dict[str, Any]:
    """Render one join as a pipeline-form ``$lookup`` stage.

    The sub-pipeline correlates on the foreign key, then applies the join's
    own filter, sort, projection and row limit in that order.

    Raises:
        DaoValidationError: If the join or one of its descriptors is invalid
    """
    join.validate()
    sub_pipeline: list[dict[str, Any]] = [
        {"$match": {"$expr": {"$eq": [f"${join.foreign_key}", f"$${JOIN_VARIABLE}"]}}}
    ]
    sub_pipeline.extend(_filter_and_sort_stages(join.where, join.sort))
    projection = build_projection(join.fields)
    if projection:
        sub_pipeline.append({"$project": projection})
    if join.limit:
        sub_pipeline.append({"$limit": join.limit})

    return {
        "$lookup": {
            "from": join.target_collection,
            "let": {JOIN_VARIABLE: _local_key_expression(join)},
            "pipeline": sub_pipeline,
            "as": join.alias,
        }
    }


def join_pipeline(
    where: Any,
    sort: Any,
    fields: Any,
    window: Window,
    joins: Sequence[ForeignJoinSpec] = (),
    post_where: Any = None,
    post_sort: Any = None,
) -> list[dict[str, Any]]:
    """Build the pipeline for a paginated join query.

    Stage order: match, sort, skip/limit, one lookup per join, post-join
    match, post-join sort, projection. The page window is applied before the
    lookups, so joins and post-join filters only see the current page.

    Raises:
        DaoValidationError: If any descriptor is invalid
    """
    pipeline = _filter_and_sort_stages(where, sort)
    if window.limit is not None:
        pipeline.append({"$skip": window.skip})
        pipeline.append({"$limit": window.limit})
    pipeline.extend(lookup_stage(join) for join in joins)
    pipeline.extend(_filter_and_sort_stages(post_where, post_sort))
    projection = build_projection(fields)
    if projection:
        pipeline.append({"$project": projection})
    return pipeline


def count_pipeline(where: Any, sort: Any = None) -> list[dict[str, Any]]:
    """Count the rows a join query pages over (main filter and sort only)."""
    pipeline = _filter_and_sort_stages(where, sort)
    pipeline.append({"$count": "total"})
    return pipeline


def group_pipeline(filter_doc: Mapping[str, Any], accumulator: str, field_name: str) -> list[dict[str, Any]]:
    """Single-row aggregate of one field over the documents matching filter_doc.

    Raises:
        ValueError: If accumulator is not one of ACCUMULATORS
    """
    if accumulator not in ACCUMULATORS:
        raise ValueError(f"Unknown accumulator: {accumulator}")
    return [
        {"$match": dict(filter_doc)},
        {"$group": {"_id": None, "num": {accumulator: f"${field_name}"}}},
    ]


def collapse_joins(rows: list[dict[str, Any]], joins: Sequence[ForeignJoinSpec]) -> list[dict[str, Any]]:
    """Replace the joined list of every single-row join with its first element or None.

    Rows are modified in place and returned.
    """
    collapsing = [join.alias for join in joins if join.collapses]
    if not collapsing:
        return rows
    for row in rows:
        for alias in collapsing:
            joined = row.get(alias)
            if isinstance(joined, list):
                row[alias] = joined[0] if joined else None
    return rows
