"""Batched range iteration over the children stored under one hash key."""

from __future__ import annotations

from typing import Any, Iterator

from dynassoc.storage import ItemStore, TableSchema


class BatchedRangeIterator:
    """Lazy, restartable sequence of raw records under one hash key.

    Every call to ``iter()`` starts a fresh query from ``range_gte``; nothing is
    cached between runs. Records arrive in ascending range-key order, fetched
    ``batch_size`` at a time, so at most one page is held in memory. Store read
    failures propagate out of the iteration unchanged.
    """

    def __init__(
        self,
        store: ItemStore,
        table: TableSchema,
        hash_value: str,
        *,
        range_gte: str = "0",
        batch_size: int = 1000,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.store = store
        self.table = table
        self.hash_value = hash_value
        self.range_gte = range_gte
        self.batch_size = batch_size

    def pages(self) -> Iterator[list[dict[str, Any]]]:
        return self.store.query(
            self.table,
            self.hash_value,
            range_gte=self.range_gte,
            batch_size=self.batch_size,
        )

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for page in self.pages():
            yield from page

    def __repr__(self) -> str:
        return (
            f"BatchedRangeIterator(table={self.table.name!r}, hash_value={self.hash_value!r}, "
            f"range_gte={self.range_gte!r}, batch_size={self.batch_size})"
        )
