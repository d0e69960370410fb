"""Entity and Field types for dynassoc."""

from __future__ import annotations

import inspect
import sys
import time
import threading
import uuid
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Optional, TypeVar, get_args

from pydantic import BaseModel, create_model

from dynassoc.associations import AssociationManager, AssociationSlot, HasMany
from dynassoc.errors import InvalidStateError, RecordNotFoundError
from dynassoc.storage import TableSchema

if TYPE_CHECKING:
    from dynassoc.runtime import Database

T = TypeVar("T")

_SENTINEL = object()


class Field(Generic[T]):
    """Attribute descriptor for Entity schemas."""

    def __init__(
        self,
        default: Any = _SENTINEL,
        *,
        default_factory: Any | None = None,
        hash_key: bool = False,
        range_key: bool = False,
    ) -> None:
        if hash_key and range_key:
            raise ValueError("A field cannot be both hash_key and range_key")
        self.default = default
        self.default_factory = default_factory
        self.hash_key = hash_key
        self.range_key = range_key
        self.name: str = ""
        self.annotation: Any = None

    @property
    def is_key(self) -> bool:
        return self.hash_key or self.range_key

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj.__dict__.get(self.name, _SENTINEL)

    def __set__(self, obj: Any, value: Any) -> None:
        obj.__dict__[self.name] = value

    def has_default(self) -> bool:
        return self.default is not _SENTINEL or self.default_factory is not None

    def get_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _SENTINEL:
            return self.default
        raise ValueError(f"Field '{self.name}' has no default")


def _resolve_annotation(ann: Any, module_name: str) -> Any:
    """Resolve string annotations and extract the inner type from Field[T]."""
    if isinstance(ann, str):
        module = sys.modules.get(module_name, None)
        ns = vars(module) if module else {}
        try:
            ann = eval(ann, ns)  # noqa: S307
        except Exception:
            return Any

    origin = getattr(ann, "__origin__", None)
    if origin is Field:
        args = get_args(ann)
        return args[0] if args else Any
    return ann


def _collect_fields(cls: type) -> dict[str, Field[Any]]:
    """Collect Field descriptors from class annotations, base classes first."""
    fields: dict[str, Field[Any]] = {}
    for base in reversed(cls.__mro__[1:]):
        fields.update(getattr(base, "_field_definitions", {}))

    annotations = inspect.get_annotations(cls)
    for name, ann in annotations.items():
        origin = getattr(ann, "__origin__", None)
        is_field_ann = origin is Field
        if isinstance(ann, str) and "Field" in ann:
            is_field_ann = True
        if not is_field_ann:
            continue

        val = cls.__dict__.get(name, _SENTINEL)
        field_desc: Field[Any]
        if isinstance(val, Field):
            field_desc = val
        elif val is None:
            # `note: Field[str | None] = None` shorthand
            field_desc = Field(default=None)
        elif val is _SENTINEL:
            field_desc = Field()
        else:
            field_desc = Field(default=val)

        field_desc.name = name
        field_desc.annotation = _resolve_annotation(ann, cls.__module__)
        fields[name] = field_desc

        if not isinstance(cls.__dict__.get(name), Field):
            setattr(cls, name, field_desc)

    return fields


def _collect_relations(cls: type) -> Mapping[str, HasMany[Any]]:
    relations: dict[str, HasMany[Any]] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, HasMany):
                relations[name] = value
    return MappingProxyType(relations)


def _build_pydantic_model(model_name: str, fields: dict[str, Field[Any]]) -> type[BaseModel]:
    """Build a Pydantic model from Field definitions."""
    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        ann = f.annotation if f.annotation is not None else Any
        if f.is_key:
            # Keys are assigned on first save.
            pydantic_fields[name] = (Optional[str], None)
        elif f.default_factory is not None:
            from pydantic import Field as PydanticField

            pydantic_fields[name] = (ann, PydanticField(default_factory=f.default_factory))
        elif f.default is not _SENTINEL:
            pydantic_fields[name] = (ann, f.default)
        else:
            pydantic_fields[name] = (ann, ...)

    return create_model(model_name, **pydantic_fields)  # type: ignore[call-overload]


_last_range_ns = 0
_range_key_lock = threading.Lock()


def _new_range_key() -> str:
    # Zero-padded, strictly increasing timestamp first: keys sort in creation order
    # and never sort below "0".
    global _last_range_ns
    with _range_key_lock:
        ns = max(time.time_ns(), _last_range_ns + 1)
        _last_range_ns = ns
    return f"{ns:020d}{uuid.uuid4().hex[:8]}"


class Entity:
    """Base class for typed entities stored in a hash/range-keyed table."""

    __entity_name__: ClassVar[str]
    __entity_fields__: ClassVar[tuple[str, ...]]
    __table_schema__: ClassVar[TableSchema]
    __relations__: ClassVar[Mapping[str, HasMany[Any]]]
    __database__: ClassVar[Database | None] = None
    _pydantic_model: ClassVar[type[BaseModel]]
    _field_definitions: ClassVar[dict[str, Field[Any]]]

    def __init_subclass__(cls, table: str | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        cls.__entity_name__ = cls.__name__

        fields = _collect_fields(cls)
        cls._field_definitions = fields
        cls.__entity_fields__ = tuple(fields.keys())

        hash_fields = [n for n, f in fields.items() if f.hash_key]
        if len(hash_fields) != 1:
            raise TypeError(
                f"Entity '{cls.__entity_name__}' must define exactly one Field(hash_key=True), "
                f"found {hash_fields}"
            )
        range_fields = [n for n, f in fields.items() if f.range_key]
        if len(range_fields) > 1:
            raise TypeError(
                f"Entity '{cls.__entity_name__}' has multiple range keys: {range_fields}"
            )
        for name in hash_fields + range_fields:
            ann = fields[name].annotation
            if ann is not str and ann is not Any and ann != Optional[str]:
                raise TypeError(
                    f"Entity '{cls.__entity_name__}' key field '{name}' must be of type str, "
                    f"got {fields[name].annotation}"
                )

        cls.__table_schema__ = TableSchema(
            name=table or cls.__name__,
            hash_key=hash_fields[0],
            range_key=range_fields[0] if range_fields else None,
        )

        relations = _collect_relations(cls)
        overlap = set(relations) & set(fields)
        if overlap:
            raise TypeError(
                f"Entity '{cls.__entity_name__}' declares {sorted(overlap)} as both field and relation"
            )
        cls.__relations__ = relations

        cls._pydantic_model = _build_pydantic_model(f"_{cls.__entity_name__}Model", fields)

    def __init__(self, **data: Any) -> None:
        related = {name: data.pop(name) for name in list(data) if name in self.__relations__}
        validated = self._pydantic_model(**data)
        for name in self.__entity_fields__:
            setattr(self, name, getattr(validated, name))
        self._new_record = True
        self._destroyed = False
        self._association_slots: dict[str, AssociationSlot] = {}
        for name, value in related.items():
            setattr(self, name, value)

    # --- Binding ---

    @classmethod
    def database(cls) -> Database:
        db = cls.__database__
        if db is None:
            raise InvalidStateError(
                f"Entity '{cls.__entity_name__}' is not registered with a Database"
            )
        return db

    @classmethod
    def from_record(cls: type[E], record: dict[str, Any]) -> E:
        """Hydrate an instance from a raw store record and mark it persisted."""
        data = {k: v for k, v in record.items() if k in cls.__entity_fields__}
        obj = cls(**data)
        obj._new_record = False
        return obj

    @classmethod
    def find(cls: type[E], hash_value: str, range_value: str | None = None) -> E:
        schema = cls.__table_schema__
        key: dict[str, Any] = {schema.hash_key: hash_value}
        if schema.range_key is not None:
            if range_value is None:
                raise ValueError(f"{cls.__entity_name__}.find requires a range key value")
            key[schema.range_key] = range_value
        db = cls.database()
        record = db.store.get_item(db.table_for(cls), key)
        if record is None:
            raise RecordNotFoundError(cls.__entity_name__, key)
        return cls.from_record(record)

    # --- Status ---

    @property
    def new_record(self) -> bool:
        return self._new_record

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def persisted(self) -> bool:
        return not (self._new_record or self._destroyed)

    @property
    def hash_value(self) -> str | None:
        return getattr(self, self.__table_schema__.hash_key)

    @property
    def range_value(self) -> str | None:
        range_key = self.__table_schema__.range_key
        if range_key is None:
            return None
        return getattr(self, range_key)

    @property
    def identity(self) -> str | None:
        """Value stored in each child's hash key: ``hash`` or ``hash#range``."""
        if self.hash_value is None:
            return None
        if self.__table_schema__.range_key is None:
            return self.hash_value
        if self.range_value is None:
            return None
        return f"{self.hash_value}#{self.range_value}"

    @property
    def key(self) -> dict[str, Any]:
        return self.__table_schema__.key_of(self.model_dump())

    def model_dump(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__entity_fields__}

    @classmethod
    def model_validate(cls, data: dict[str, Any]) -> Any:
        return cls(**data)

    # --- Persistence ---

    def _assign_keys(self) -> None:
        schema = self.__table_schema__
        if schema.range_key is None:
            if self.hash_value is None:
                setattr(self, schema.hash_key, str(uuid.uuid4()))
            return
        if self.hash_value is None:
            raise InvalidStateError(
                f"{self.__entity_name__} has no '{schema.hash_key}'; "
                f"attach it to a parent before saving"
            )
        if self.range_value is None:
            setattr(self, schema.range_key, _new_range_key())

    def save(self) -> None:
        """Upsert this entity, then write back every loaded has-many relation."""
        if self._destroyed:
            raise InvalidStateError(f"Cannot save a destroyed {self.__entity_name__}")
        db = self.database()
        self._pydantic_model(**self.model_dump())
        self._assign_keys()
        db.store.put_item(db.table_for(type(self)), self.model_dump())
        self._new_record = False
        self._after_persist()

    def destroy(self) -> None:
        """Destroy all children of every relation, then delete this entity's row."""
        if self._new_record:
            self._destroyed = True
            return
        db = self.database()
        self._before_destroy()
        db.store.delete_item(db.table_for(type(self)), self.key)
        self._destroyed = True

    def reload(self: E) -> E:
        """Re-read attributes from the store and reset every relation to unloaded."""
        if self._new_record:
            raise InvalidStateError(f"Cannot reload an unsaved {self.__entity_name__}")
        db = self.database()
        key = self.key
        record = db.store.get_item(db.table_for(type(self)), key)
        if record is None:
            raise RecordNotFoundError(self.__entity_name__, key)
        data = {k: v for k, v in record.items() if k in self.__entity_fields__}
        validated = self._pydantic_model(**data)
        for name in self.__entity_fields__:
            setattr(self, name, getattr(validated, name))
        self._after_reload()
        return self

    # --- Hook points ---

    def _after_persist(self) -> None:
        for relation in self.__relations__.values():
            relation._require_manager().write_back(self)

    def _before_destroy(self) -> None:
        for relation in self.__relations__.values():
            relation._require_manager().cascade_destroy(self)

    def _after_reload(self) -> None:
        for relation in self.__relations__.values():
            relation._require_manager().on_reload(self)

    # --- Named relation access ---

    def association(self, name: str) -> AssociationManager[Any, Any]:
        relation = self.__relations__.get(name)
        if relation is None:
            raise InvalidStateError(f"{self.__entity_name__} has no relation '{name}'")
        return relation._require_manager()

    def load_association(self, name: str, force_reload: bool = False) -> list[Any]:
        return self.association(name).load(self, force_reload=force_reload)

    def association_present(self, name: str) -> bool:
        return self.association(name).is_present(self)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={getattr(self, k)!r}" for k in self.__entity_fields__)
        return f"{self.__class__.__name__}({fields})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.model_dump() == other.model_dump()

    # Mutable, and equality compares field values.
    __hash__ = None  # type: ignore[assignment]


E = TypeVar("E", bound=Entity)
