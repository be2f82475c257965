# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Pagination windows and chunk partitioning for scans."""

from dataclasses import dataclass

from .models import PageRequest

# Largest number of rows requested from the store in one fetch.
DEFAULT_CHUNK_SIZE = 1000


@dataclass(frozen=True)
class Window:
    """A contiguous ``[skip, skip + limit)`` slice of a sorted result set.

    ``limit`` is None only for an unbounded page.
    """
    skip: int
    limit: int | None

    @property
    def stop(self) -> int | None:
        return None if self.limit is None else self.skip + self.limit


def page_window(request: PageRequest) -> Window:
    """Return the skip/limit window covered by a normalized page request."""
    if request.unbounded:
        return Window(skip=0, limit=None)
    return Window(skip=request.offset, limit=request.page_size)


def has_more_after(total: int, request: PageRequest) -> bool:
    """True when rows exist beyond the requested page."""
    if request.unbounded:
        return False
    return total > request.page_index * request.page_size


def partition(start: int, stop: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Window]:
    """Split ``[start, stop)`` into contiguous windows of at most chunk_size rows.

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [
        Window(skip=offset, limit=min(chunk_size, stop - offset))
        for offset in range(start, stop, chunk_size)
    ]


def scan_windows(
    request: PageRequest,
    total: int | None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> list[Window]:
    """Chunk the rows a page request covers.

    The page window is clamped to ``total`` when a count is known, so no
    fetch is issued past the last matching row. An unbounded request needs
    the count.

    Raises:
        ValueError: If an unbounded request has no total
    """
    start = request.offset
    if request.unbounded:
        if total is None:
            raise ValueError("an unbounded scan requires a total count")
        stop = total
    else:
        stop = start + request.page_size
        if total is not None:
            stop = min(stop, total)
    if stop <= start:
        return []
    return partition(start, stop, chunk_size)
