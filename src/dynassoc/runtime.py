"""Database runtime: store binding and entity type registration."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from loguru import logger

from dynassoc.config import DynassocConfig
from dynassoc.errors import InvalidStateError
from dynassoc.storage import ItemStore, TableSchema, open_store, parse_storage_target
from dynassoc.types import Entity


class Database:
    """Binds entity types to one item store."""

    def __init__(
        self,
        storage_uri: str | None = None,
        config: DynassocConfig | None = None,
        *,
        db_path: str | None = None,
        store: ItemStore | None = None,
        entity_types: list[type[Entity]] | None = None,
    ) -> None:
        self._config = config or DynassocConfig()
        if store is not None:
            self._storage_uri: str | None = None
            self._store = store
            self._table_prefix = self._config.table_prefix
        else:
            target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
            self._storage_uri = target.uri
            self._store = open_store(db_path=db_path, storage_uri=storage_uri, config=self._config)
            self._table_prefix = target.table_prefix or self._config.table_prefix
        self._entity_types: dict[str, type[Entity]] = {}

        if entity_types:
            self.register(*entity_types)

    @property
    def config(self) -> DynassocConfig:
        return self._config

    @property
    def store(self) -> ItemStore:
        return self._store

    @property
    def storage_uri(self) -> str | None:
        return self._storage_uri

    @property
    def entity_types(self) -> Mapping[str, type[Entity]]:
        return MappingProxyType(self._entity_types)

    def register(self, *entity_types: type[Entity]) -> None:
        """Bind entity types to this database so they can save, find, and destroy."""
        for cls in entity_types:
            if not (isinstance(cls, type) and issubclass(cls, Entity)) or cls is Entity:
                raise TypeError(f"Expected an Entity subclass, got {cls!r}")
            existing = self._entity_types.get(cls.__entity_name__)
            if existing is not None and existing is not cls:
                raise InvalidStateError(
                    f"Entity name '{cls.__entity_name__}' is already registered to {existing!r}"
                )
            self._entity_types[cls.__entity_name__] = cls
            cls.__database__ = self
            logger.debug(f"Registered {cls.__entity_name__} -> table {self.table_for(cls).name}")

    def validate(self) -> None:
        """Resolve every declared relation; raises InvalidStateError on the first bad one."""
        for cls in self._entity_types.values():
            for relation in cls.__relations__.values():
                child = relation._require_manager().resolve_child(cls)
                if child.__database__ is not self:
                    raise InvalidStateError(
                        f"Relation '{cls.__entity_name__}.{relation.name}' child type "
                        f"{child.__entity_name__} is not registered with this Database"
                    )

    def table_for(self, entity_type: type[Entity]) -> TableSchema:
        return entity_type.__table_schema__.with_prefix(self._table_prefix)

    def create_tables(self) -> None:
        self.validate()
        for cls in self._entity_types.values():
            self._store.ensure_table(self.table_for(cls))

    def close(self) -> None:
        self._store.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: Any) -> None:
        self.close()
