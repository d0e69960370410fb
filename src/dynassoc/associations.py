"""Has-many associations: per-parent slots, lazy loading, write-back, and cascade destroy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar, overload

from loguru import logger

from dynassoc.errors import AssociationTypeMismatch, InvalidStateError
from dynassoc.iteration import BatchedRangeIterator

if TYPE_CHECKING:
    from dynassoc.types import Entity

P = TypeVar("P", bound="Entity")
C = TypeVar("C", bound="Entity")


class SlotState(Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"


@dataclass
class AssociationSlot:
    """Per-parent, per-relation cache of the child sequence."""

    state: SlotState = SlotState.UNLOADED
    children: list[Any] = field(default_factory=list)

    @property
    def loaded(self) -> bool:
        return self.state is SlotState.LOADED

    def set_loaded(self, children: list[Any]) -> None:
        self.state = SlotState.LOADED
        self.children = children

    def reset(self) -> None:
        self.state = SlotState.UNLOADED
        self.children = []


@dataclass(frozen=True)
class RelationSpec:
    """Immutable description of one has-many relation, fixed when the parent class is defined."""

    name: str
    parent_type: type
    child: type | str


class AssociationManager(Generic[P, C]):
    """Keeps one relation's in-memory children in sync with the store.

    A parent's slot for the relation starts UNLOADED. ``load`` materializes the
    whole child set once and caches it; ``assign`` replaces it without I/O.
    ``write_back`` runs after the parent row is saved: it saves every in-memory
    child, then re-queries the store and destroys each persisted child whose
    composite key is no longer in memory. Saves happen before deletes, and a
    failure aborts the rest without undoing completed steps, so a failed
    write-back leaves the parent row saved and the children partially
    reconciled. ``cascade_destroy`` deletes every persisted child regardless of
    slot state.

    All loaded children are re-saved on every write-back; there is no per-child
    dirty tracking.
    """

    def __init__(self, spec: RelationSpec) -> None:
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def child_type(self, parent: P) -> type[C]:
        return self.resolve_child(type(parent))

    def resolve_child(self, parent_type: type[P]) -> type[C]:
        """Resolve the declared child class for this relation."""
        from dynassoc.types import Entity

        child = self.spec.child
        if isinstance(child, str):
            db = parent_type.database()
            resolved = db.entity_types.get(child)
            if resolved is None:
                raise InvalidStateError(
                    f"Relation '{self.name}' on {self.spec.parent_type.__name__} refers to "
                    f"unregistered entity type '{child}'"
                )
            child = resolved
        if not (isinstance(child, type) and issubclass(child, Entity)):
            raise InvalidStateError(
                f"Relation '{self.name}' child type {child!r} is not an Entity subclass"
            )
        if child.__table_schema__.range_key is None:
            raise InvalidStateError(
                f"Relation '{self.name}' child type {child.__name__} must declare "
                f"Field(range_key=True)"
            )
        return child  # type: ignore[return-value]

    def slot(self, parent: P) -> AssociationSlot:
        return parent._association_slots.setdefault(self.name, AssociationSlot())

    def iterate(self, parent: P, *, batch_size: int | None = None) -> BatchedRangeIterator:
        """Batched range query over the parent's persisted children."""
        if parent.new_record:
            raise InvalidStateError(
                f"Cannot query relation '{self.name}' of an unsaved {type(parent).__name__}"
            )
        child_type = self.child_type(parent)
        db = child_type.database()
        return BatchedRangeIterator(
            db.store,
            db.table_for(child_type),
            parent.identity,
            range_gte=db.config.range_lower_bound,
            batch_size=batch_size or db.config.batch_size,
        )

    def load(self, parent: P, force_reload: bool = False) -> list[C]:
        slot = self.slot(parent)
        if slot.loaded and not force_reload:
            return slot.children

        child_type = self.child_type(parent)
        if parent.new_record:
            children: list[C] = []
        else:
            children = [child_type.from_record(record) for record in self.iterate(parent)]
            logger.debug(
                f"Loaded {len(children)} {child_type.__name__} for "
                f"{type(parent).__name__}.{self.name} ({parent.identity})"
            )
        slot.set_loaded(children)
        return children

    def assign(self, parent: P, value: Any) -> None:
        child_type = self.child_type(parent)
        if value is None:
            children: list[C] = []
        elif isinstance(value, (list, tuple)):
            self._check_elements(value, child_type)
            children = value if isinstance(value, list) else list(value)
        else:
            raise AssociationTypeMismatch(
                self.name,
                f"expected a list of {child_type.__name__} or None, got {type(value).__name__}",
            )
        self.slot(parent).set_loaded(children)

    def is_present(self, parent: P) -> bool:
        return len(self.load(parent)) > 0

    def write_back(self, parent: P) -> None:
        slot = parent._association_slots.get(self.name)
        if slot is None or not slot.loaded:
            return

        child_type = self.child_type(parent)
        new_children = slot.children
        parent_id = parent.identity
        # The cached list is handed out by reference, so re-check it before any I/O.
        self._check_elements(new_children, child_type)
        for child in new_children:
            self._check_owner(parent_id, child)
        for child in new_children:
            if child.hash_value is None:
                setattr(child, child.__table_schema__.hash_key, parent_id)

        removed = 0
        try:
            for child in new_children:
                child.save()
            kept = {(child.hash_value, child.range_value) for child in new_children}

            table = child_type.__table_schema__
            for record in self.iterate(parent):
                key = (record.get(table.hash_key), record.get(table.range_key))
                if key in kept:
                    continue
                child_type.from_record(record).destroy()
                removed += 1
        except Exception:
            logger.warning(
                f"Write-back of {type(parent).__name__}.{self.name} ({parent_id}) aborted; "
                f"children may be partially reconciled"
            )
            raise
        logger.debug(
            f"Wrote back {type(parent).__name__}.{self.name} ({parent_id}): "
            f"saved {len(new_children)}, removed {removed}"
        )

    def _check_elements(self, children: list[Any] | tuple[Any, ...], child_type: type[C]) -> None:
        for i, child in enumerate(children):
            if not isinstance(child, child_type):
                raise AssociationTypeMismatch(
                    self.name,
                    f"element {i} is a {type(child).__name__}, not a {child_type.__name__}",
                )

    def _check_owner(self, parent_id: str, child: C) -> None:
        current = child.hash_value
        if current is not None and current != parent_id:
            raise InvalidStateError(
                f"{type(child).__name__} {child.key} belongs to '{current}', "
                f"cannot write it back under '{parent_id}'"
            )

    def cascade_destroy(self, parent: P) -> None:
        if parent.new_record:
            return
        child_type = self.child_type(parent)
        destroyed = 0
        try:
            for record in self.iterate(parent):
                child_type.from_record(record).destroy()
                destroyed += 1
        except Exception:
            logger.warning(
                f"Cascade destroy of {type(parent).__name__}.{self.name} "
                f"({parent.identity}) aborted after {destroyed} children"
            )
            raise
        logger.debug(
            f"Cascade destroyed {destroyed} {child_type.__name__} of "
            f"{type(parent).__name__} ({parent.identity})"
        )

    def on_reload(self, parent: P) -> None:
        slot = parent._association_slots.get(self.name)
        if slot is not None:
            slot.reset()


class HasMany(Generic[C]):
    """Declares a has-many relation on an Entity class.

    ``parent.posts`` loads lazily, ``parent.posts = [...]`` assigns, and
    ``Parent.posts.load(parent, force_reload=True)`` / ``Parent.posts.present(parent)``
    cover forced reloads and the presence check.
    """

    def __init__(self, child: type[C] | str) -> None:
        self.child = child
        self.name = ""
        self.manager: AssociationManager[Any, C] | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.manager = AssociationManager(RelationSpec(name=name, parent_type=owner, child=self.child))

    def _require_manager(self) -> AssociationManager[Any, C]:
        if self.manager is None:
            raise InvalidStateError("HasMany must be declared as a class attribute of an Entity")
        return self.manager

    @overload
    def __get__(self, obj: None, objtype: type | None = None) -> HasMany[C]: ...

    @overload
    def __get__(self, obj: Entity, objtype: type | None = None) -> list[C]: ...

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return self._require_manager().load(obj)

    def __set__(self, obj: Any, value: Any) -> None:
        self._require_manager().assign(obj, value)

    def load(self, obj: Any, force_reload: bool = False) -> list[C]:
        return self._require_manager().load(obj, force_reload=force_reload)

    def present(self, obj: Any) -> bool:
        return self._require_manager().is_present(obj)

    def __repr__(self) -> str:
        child = self.child if isinstance(self.child, str) else self.child.__name__
        return f"HasMany({child!r}, name={self.name!r})"
