"""Shared test fixtures for dynassoc tests."""

from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest

from dynassoc import Database, Entity, Field, HasMany
from dynassoc.errors import StoreReadFailure, StoreWriteFailure
from dynassoc.storage import SQLiteStore, TableSchema

# --- Test Entity types ---


class Blog(Entity, table="blogs"):
    id: Field[str] = Field(hash_key=True)
    title: Field[str]
    posts = HasMany("Post")


class Post(Entity, table="posts"):
    blog_id: Field[str] = Field(hash_key=True)
    slug: Field[str] = Field(range_key=True)
    title: Field[str]
    views: Field[int] = 0
    comments = HasMany("Comment")


class Comment(Entity, table="comments"):
    post_id: Field[str] = Field(hash_key=True)
    id: Field[str] = Field(range_key=True)
    body: Field[str]


class Tag(Entity, table="tags"):
    name: Field[str] = Field(hash_key=True)


# --- Recording store ---


class RecordingStore:
    """Wraps an ItemStore, recording every call and optionally failing some of them."""

    def __init__(self, inner: SQLiteStore) -> None:
        self.inner = inner
        self.queries: list[tuple[str, str, str, int]] = []
        self.pages_served = 0
        self.gets: list[tuple[str, dict[str, Any]]] = []
        self.puts: list[tuple[str, dict[str, Any]]] = []
        self.deletes: list[tuple[str, dict[str, Any]]] = []
        self.fail_query: Callable[[TableSchema, str], bool] | None = None
        self.fail_put: Callable[[TableSchema, dict[str, Any]], bool] | None = None
        self.fail_delete: Callable[[TableSchema, dict[str, Any]], bool] | None = None
        self.fail_page: Callable[[TableSchema, str, int], bool] | None = None

    def reset_calls(self) -> None:
        self.queries.clear()
        self.gets.clear()
        self.puts.clear()
        self.deletes.clear()
        self.pages_served = 0

    @property
    def io_calls(self) -> int:
        return len(self.queries) + len(self.gets) + len(self.puts) + len(self.deletes)

    def query(
        self,
        table: TableSchema,
        hash_value: str,
        *,
        range_gte: str,
        batch_size: int,
    ) -> Iterator[list[dict[str, Any]]]:
        self.queries.append((table.name, hash_value, range_gte, batch_size))
        if self.fail_query is not None and self.fail_query(table, hash_value):
            raise StoreReadFailure("query", "injected failure")
        pages = self.inner.query(table, hash_value, range_gte=range_gte, batch_size=batch_size)
        for number, page in enumerate(pages, start=1):
            if self.fail_page is not None and self.fail_page(table, hash_value, number):
                raise StoreReadFailure("query", f"injected failure on page {number}")
            self.pages_served += 1
            yield page

    def get_item(self, table: TableSchema, key: dict[str, Any]) -> dict[str, Any] | None:
        self.gets.append((table.name, key))
        return self.inner.get_item(table, key)

    def put_item(self, table: TableSchema, item: dict[str, Any]) -> None:
        self.puts.append((table.name, table.key_of(item)))
        if self.fail_put is not None and self.fail_put(table, item):
            raise StoreWriteFailure("put_item", "injected failure")
        self.inner.put_item(table, item)

    def delete_item(self, table: TableSchema, key: dict[str, Any]) -> None:
        self.deletes.append((table.name, key))
        if self.fail_delete is not None and self.fail_delete(table, key):
            raise StoreWriteFailure("delete_item", "injected failure")
        self.inner.delete_item(table, key)

    def ensure_table(self, table: TableSchema) -> None:
        self.inner.ensure_table(table)

    def close(self) -> None:
        self.inner.close()

    def count(self, entity_type: type[Entity], hash_value: str | None = None) -> int:
        return self.inner.count_items(entity_type.__table_schema__, hash_value)


# --- Fixtures ---


@pytest.fixture
def store():
    """A recording store over an in-memory SQLite database."""
    return RecordingStore(SQLiteStore(":memory:"))


@pytest.fixture
def db(store):
    """A Database with all test entity types registered."""
    d = Database(store=store, entity_types=[Blog, Post, Comment, Tag])
    yield d
    d.close()


@pytest.fixture
def small_batch_db(store):
    """A Database whose range queries fetch two records per page."""
    from dynassoc import DynassocConfig

    d = Database(store=store, config=DynassocConfig(batch_size=2), entity_types=[Blog, Post, Comment, Tag])
    yield d
    d.close()


@pytest.fixture
def blog_with_posts(db, store):
    """A persisted blog with three persisted posts, and the store's call log cleared."""
    blog = Blog(title="Field Notes")
    blog.save()
    for slug in ("a-first", "b-second", "c-third"):
        Post(blog_id=blog.id, slug=slug, title=slug.split("-")[1].title()).save()
    found = Blog.find(blog.id)
    store.reset_calls()
    return found
