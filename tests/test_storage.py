"""Tests for the storage layer: URI parsing and the SQLite item store."""

from __future__ import annotations

import pytest

from dynassoc.errors import StorageBackendError, StoreReadFailure, StoreWriteFailure
from dynassoc.storage import (
    ItemStore,
    SQLiteStore,
    StorageTarget,
    TableSchema,
    open_store,
    parse_storage_target,
)

CHILDREN = TableSchema("children", "parent_id", "rk")
PARENTS = TableSchema("parents", "id")


@pytest.fixture
def sqlite_store(tmp_path):
    s = SQLiteStore(str(tmp_path / "items.db"))
    yield s
    s.close()


def _seed(store, parent_id, range_keys):
    for rk in range_keys:
        store.put_item(CHILDREN, {"parent_id": parent_id, "rk": rk, "n": rk})


class TestParseStorageTarget:
    def test_default_path(self):
        target = parse_storage_target()
        assert target == StorageTarget(backend="sqlite", uri="sqlite:///dynassoc.db", db_path="dynassoc.db")

    def test_plain_path(self):
        target = parse_storage_target(db_path="data/app.db")
        assert target.backend == "sqlite"
        assert target.db_path == "data/app.db"

    def test_sqlite_absolute_uri(self):
        target = parse_storage_target(storage_uri="sqlite:////var/lib/app.db")
        assert target.db_path == "/var/lib/app.db"

    def test_sqlite_memory_uri(self):
        target = parse_storage_target(storage_uri="sqlite:///:memory:")
        assert target.db_path == ":memory:"

    def test_conflicting_path_and_uri(self):
        with pytest.raises(StorageBackendError, match="Conflicting"):
            parse_storage_target(db_path="a.db", storage_uri="sqlite:////tmp/b.db")

    def test_dynamodb_uri(self):
        target = parse_storage_target(storage_uri="dynamodb://staging")
        assert target.backend == "dynamodb"
        assert target.table_prefix == "staging"

    def test_dynamodb_uri_without_prefix(self):
        assert parse_storage_target(storage_uri="dynamodb://").table_prefix == ""

    def test_dynamodb_prefix_with_slash_rejected(self):
        with pytest.raises(StorageBackendError, match="Invalid table prefix 'app/dev'"):
            parse_storage_target(storage_uri="dynamodb://app/dev")

    def test_dynamodb_prefix_allowed_characters(self):
        assert parse_storage_target(storage_uri="dynamodb://app.dev-1_").table_prefix == "app.dev-1_"

    def test_dynamodb_rejects_db_path(self):
        with pytest.raises(StorageBackendError):
            parse_storage_target(db_path="x.db", storage_uri="dynamodb://")

    def test_unsupported_scheme(self):
        with pytest.raises(StorageBackendError, match="Unsupported storage URI scheme 'redis'"):
            parse_storage_target(storage_uri="redis://localhost")


class TestTableSchema:
    def test_key_of(self):
        item = {"parent_id": "p", "rk": "r", "other": 1}
        assert CHILDREN.key_of(item) == {"parent_id": "p", "rk": "r"}
        assert PARENTS.key_of({"id": "x", "name": "n"}) == {"id": "x"}

    def test_with_prefix(self):
        assert CHILDREN.with_prefix("dev_").name == "dev_children"
        assert CHILDREN.with_prefix("") is CHILDREN


class TestSQLiteStore:
    def test_satisfies_protocol(self, sqlite_store):
        assert isinstance(sqlite_store, ItemStore)

    def test_put_get_roundtrip(self, sqlite_store):
        sqlite_store.put_item(PARENTS, {"id": "x", "name": "X", "tags": ["a"], "score": 1.5})
        assert sqlite_store.get_item(PARENTS, {"id": "x"}) == {
            "id": "x",
            "name": "X",
            "tags": ["a"],
            "score": 1.5,
        }

    def test_get_missing(self, sqlite_store):
        assert sqlite_store.get_item(PARENTS, {"id": "missing"}) is None

    def test_put_is_upsert(self, sqlite_store):
        sqlite_store.put_item(PARENTS, {"id": "x", "name": "old"})
        sqlite_store.put_item(PARENTS, {"id": "x", "name": "new"})
        assert sqlite_store.get_item(PARENTS, {"id": "x"})["name"] == "new"
        assert sqlite_store.count_items(PARENTS) == 1

    def test_delete_is_idempotent(self, sqlite_store):
        sqlite_store.put_item(PARENTS, {"id": "x"})
        sqlite_store.delete_item(PARENTS, {"id": "x"})
        sqlite_store.delete_item(PARENTS, {"id": "x"})
        assert sqlite_store.get_item(PARENTS, {"id": "x"}) is None

    def test_missing_key_attribute(self, sqlite_store):
        with pytest.raises(StorageBackendError, match="missing range key"):
            sqlite_store.put_item(CHILDREN, {"parent_id": "p"})

    def test_query_pages_in_range_order(self, sqlite_store):
        _seed(sqlite_store, "p1", ["5", "1", "3", "2", "4"])
        pages = list(sqlite_store.query(CHILDREN, "p1", range_gte="0", batch_size=2))
        assert [[i["rk"] for i in page] for page in pages] == [["1", "2"], ["3", "4"], ["5"]]

    def test_query_exact_multiple_of_batch(self, sqlite_store):
        _seed(sqlite_store, "p1", ["1", "2", "3", "4"])
        pages = list(sqlite_store.query(CHILDREN, "p1", range_gte="0", batch_size=2))
        assert [len(p) for p in pages] == [2, 2]

    def test_query_respects_lower_bound(self, sqlite_store):
        _seed(sqlite_store, "p1", ["a", "b", "c"])
        pages = list(sqlite_store.query(CHILDREN, "p1", range_gte="b", batch_size=10))
        assert [i["rk"] for i in pages[0]] == ["b", "c"]

    def test_query_isolated_by_hash_and_table(self, sqlite_store):
        _seed(sqlite_store, "p1", ["1"])
        _seed(sqlite_store, "p2", ["2"])
        sqlite_store.put_item(TableSchema("other", "parent_id", "rk"), {"parent_id": "p1", "rk": "9"})
        pages = list(sqlite_store.query(CHILDREN, "p1", range_gte="0", batch_size=10))
        assert [i["rk"] for page in pages for i in page] == ["1"]

    def test_query_empty(self, sqlite_store):
        assert list(sqlite_store.query(CHILDREN, "nobody", range_gte="0", batch_size=10)) == []

    def test_deleting_between_pages_does_not_skip(self, sqlite_store):
        _seed(sqlite_store, "p1", ["1", "2", "3", "4", "5"])
        seen = []
        for page in sqlite_store.query(CHILDREN, "p1", range_gte="0", batch_size=2):
            for item in page:
                seen.append(item["rk"])
                sqlite_store.delete_item(CHILDREN, item)
        assert seen == ["1", "2", "3", "4", "5"]
        assert sqlite_store.count_items(CHILDREN, "p1") == 0

    def test_read_failure_after_close(self, tmp_path):
        s = SQLiteStore(str(tmp_path / "closed.db"))
        s.close()
        with pytest.raises(StoreReadFailure):
            s.get_item(PARENTS, {"id": "x"})
        with pytest.raises(StoreReadFailure):
            list(s.query(CHILDREN, "p", range_gte="0", batch_size=1))

    def test_write_failure_after_close(self, tmp_path):
        s = SQLiteStore(str(tmp_path / "closed.db"))
        s.close()
        with pytest.raises(StoreWriteFailure):
            s.put_item(PARENTS, {"id": "x"})
        with pytest.raises(StoreWriteFailure):
            s.delete_item(PARENTS, {"id": "x"})


class TestOpenStore:
    def test_open_sqlite_by_path(self, tmp_path):
        s = open_store(str(tmp_path / "a.db"))
        assert isinstance(s, SQLiteStore)
        s.close()

    def test_open_sqlite_memory_uri(self):
        s = open_store(storage_uri="sqlite:///:memory:")
        assert isinstance(s, SQLiteStore)
        assert s.db_path == ":memory:"
        s.close()
