"""Structured error types for dynassoc."""

from __future__ import annotations

from typing import Any


class DynassocError(Exception):
    """Base error for all dynassoc errors."""


class AssociationTypeMismatch(DynassocError):
    """Raised when a has-many relation is assigned something other than a list of its child type."""

    def __init__(self, relation: str, detail: str) -> None:
        self.relation = relation
        self.detail = detail
        super().__init__(f"Cannot assign to relation '{relation}': {detail}")


class InvalidStateError(DynassocError):
    """Raised when an entity or relation is used in a state that does not allow the operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class RecordNotFoundError(DynassocError):
    """Raised when a single-item read finds no row for the given key."""

    def __init__(self, type_name: str, key: dict[str, Any]) -> None:
        self.type_name = type_name
        self.key = key
        super().__init__(f"{type_name} not found for key {key}")


class StorageBackendError(DynassocError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class StoreReadFailure(StorageBackendError):
    """Raised when a query or item read against the store fails."""


class StoreWriteFailure(StorageBackendError):
    """Raised when an item write or delete against the store fails."""
