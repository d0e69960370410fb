"""Storage backends: store contract, URI parsing, and the SQLite item store."""

from __future__ import annotations

import json
import os
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Iterator, Protocol, runtime_checkable
from urllib.parse import urlparse

from loguru import logger

from dynassoc.config import DynassocConfig
from dynassoc.errors import StorageBackendError, StoreReadFailure, StoreWriteFailure

# Characters DynamoDB accepts in table names.
_TABLE_PREFIX_RE = re.compile(r"[A-Za-z0-9_.-]*")


@dataclass(frozen=True)
class TableSchema:
    """Key layout of one hash/range-keyed table."""

    name: str
    hash_key: str
    range_key: str | None = None

    def key_of(self, item: dict[str, Any]) -> dict[str, Any]:
        """Extract the composite key attributes from a full item."""
        key = {self.hash_key: item.get(self.hash_key)}
        if self.range_key is not None:
            key[self.range_key] = item.get(self.range_key)
        return key

    def with_prefix(self, prefix: str) -> TableSchema:
        if not prefix:
            return self
        return TableSchema(f"{prefix}{self.name}", self.hash_key, self.range_key)


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from path and URI forms."""

    backend: str
    uri: str
    db_path: str | None = None
    table_prefix: str | None = None


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve backend target from a plain db_path or a storage URI."""
    if storage_uri is None and db_path is None:
        db_path = "dynassoc.db"

    if storage_uri is None and db_path is not None:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{db_path}", db_path=db_path)

    assert storage_uri is not None
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        if sqlite_path == "/:memory:":
            sqlite_path = ":memory:"
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
            raise StorageBackendError(
                "parse_storage_uri",
                f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
            )
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "dynamodb":
        if db_path is not None:
            raise StorageBackendError(
                "parse_storage_uri",
                "db_path cannot be provided for dynamodb storage targets",
            )
        prefix = f"{parsed.netloc}{parsed.path}".strip("/")
        if not _TABLE_PREFIX_RE.fullmatch(prefix):
            raise StorageBackendError(
                "parse_storage_uri",
                f"Invalid table prefix '{prefix}' in '{storage_uri}': "
                f"only letters, digits, '_', '-' and '.' are allowed",
            )
        return StorageTarget(backend="dynamodb", uri=storage_uri, table_prefix=prefix)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


@runtime_checkable
class ItemStore(Protocol):
    """Backend-agnostic contract for a hash/range-keyed sorted item store."""

    def query(
        self,
        table: TableSchema,
        hash_value: str,
        *,
        range_gte: str,
        batch_size: int,
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield pages of at most batch_size items, ascending by range key."""
        ...

    def get_item(self, table: TableSchema, key: dict[str, Any]) -> dict[str, Any] | None: ...

    def put_item(self, table: TableSchema, item: dict[str, Any]) -> None: ...

    def delete_item(self, table: TableSchema, key: dict[str, Any]) -> None: ...

    def ensure_table(self, table: TableSchema) -> None: ...

    def close(self) -> None: ...


def _key_values(table: TableSchema, key: dict[str, Any]) -> tuple[str, str]:
    hash_value = key.get(table.hash_key)
    if hash_value is None:
        raise StorageBackendError("key", f"missing hash key '{table.hash_key}' for {table.name}")
    range_value = ""
    if table.range_key is not None:
        range_value = key.get(table.range_key)
        if range_value is None:
            raise StorageBackendError(
                "key", f"missing range key '{table.range_key}' for {table.name}"
            )
    return str(hash_value), str(range_value)


class SQLiteStore:
    """SQLite-backed item store emulating a hash/range-keyed table space."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(db_path)
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise StorageBackendError("open_store", f"Failed to open '{db_path}': {e}") from e

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS items (
                table_name TEXT NOT NULL,
                hash_value TEXT NOT NULL,
                range_value TEXT NOT NULL,
                item_json TEXT NOT NULL,
                PRIMARY KEY (table_name, hash_value, range_value)
            );
        """)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def ensure_table(self, table: TableSchema) -> None:
        # All tables share the items table.
        return None

    def query(
        self,
        table: TableSchema,
        hash_value: str,
        *,
        range_gte: str,
        batch_size: int,
    ) -> Iterator[list[dict[str, Any]]]:
        last_range: str | None = None
        while True:
            if last_range is None:
                sql = (
                    "SELECT range_value, item_json FROM items "
                    "WHERE table_name = ? AND hash_value = ? AND range_value >= ? "
                    "ORDER BY range_value LIMIT ?"
                )
                params: list[Any] = [table.name, str(hash_value), range_gte, batch_size]
            else:
                sql = (
                    "SELECT range_value, item_json FROM items "
                    "WHERE table_name = ? AND hash_value = ? AND range_value > ? "
                    "ORDER BY range_value LIMIT ?"
                )
                params = [table.name, str(hash_value), last_range, batch_size]
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreReadFailure("query", f"{table.name}/{hash_value}: {e}") from e
            logger.debug(f"sqlite query {table.name}/{hash_value}: page of {len(rows)}")
            if not rows:
                return
            yield [json.loads(r[1]) for r in rows]
            if len(rows) < batch_size:
                return
            last_range = rows[-1][0]

    def get_item(self, table: TableSchema, key: dict[str, Any]) -> dict[str, Any] | None:
        hash_value, range_value = _key_values(table, key)
        try:
            row = self._conn.execute(
                "SELECT item_json FROM items "
                "WHERE table_name = ? AND hash_value = ? AND range_value = ?",
                (table.name, hash_value, range_value),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadFailure("get_item", f"{table.name} {key}: {e}") from e
        if row is None:
            return None
        return json.loads(row[0])

    def put_item(self, table: TableSchema, item: dict[str, Any]) -> None:
        hash_value, range_value = _key_values(table, item)
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO items (table_name, hash_value, range_value, item_json) "
                "VALUES (?, ?, ?, ?)",
                (table.name, hash_value, range_value, json.dumps(item, sort_keys=True)),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteFailure("put_item", f"{table.name} {table.key_of(item)}: {e}") from e

    def delete_item(self, table: TableSchema, key: dict[str, Any]) -> None:
        hash_value, range_value = _key_values(table, key)
        try:
            self._conn.execute(
                "DELETE FROM items WHERE table_name = ? AND hash_value = ? AND range_value = ?",
                (table.name, hash_value, range_value),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteFailure("delete_item", f"{table.name} {key}: {e}") from e

    def count_items(self, table: TableSchema, hash_value: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM items WHERE table_name = ?"
        params: list[Any] = [table.name]
        if hash_value is not None:
            sql += " AND hash_value = ?"
            params.append(str(hash_value))
        try:
            return int(self._conn.execute(sql, params).fetchone()[0])
        except sqlite3.Error as e:
            raise StoreReadFailure("count_items", f"{table.name}: {e}") from e


def open_store(
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    config: DynassocConfig | None = None,
) -> ItemStore:
    """Open a backend store from a plain path or a URI-style storage binding."""
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    if target.backend == "sqlite":
        assert target.db_path is not None
        return SQLiteStore(target.db_path)
    if target.backend == "dynamodb":
        from dynassoc.storage_dynamodb import DynamoDBStore

        return DynamoDBStore(config=config or DynassocConfig())
    raise StorageBackendError("open_store", f"Unsupported backend '{target.backend}'")
