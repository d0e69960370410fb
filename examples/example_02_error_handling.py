"""Example 02: Error Handling.

Demonstrates the errors raised at the association and storage seams:
- AssociationTypeMismatch for a wrongly typed assignment
- InvalidStateError for unresolved relations and unattached children
- RecordNotFoundError from find() and reload()
- StorageBackendError for an unsupported storage URI
"""
# pyright: reportAttributeAccessIssue=false

from dynassoc import (
    AssociationTypeMismatch,
    Database,
    Entity,
    Field,
    HasMany,
    InvalidStateError,
    RecordNotFoundError,
    StorageBackendError,
)


class Shelf(Entity, table="shelves"):
    id: Field[str] = Field(hash_key=True)
    label: Field[str]
    books = HasMany("Book")


class Book(Entity, table="books"):
    shelf_id: Field[str] = Field(hash_key=True)
    isbn: Field[str] = Field(range_key=True)
    title: Field[str]


def main():
    """Run the error handling example."""
    print("=" * 80)
    print("DYNASSOC ERROR HANDLING EXAMPLE")
    print("=" * 80)

    # Relation to an unregistered type
    db = Database(storage_uri="sqlite:///:memory:", entity_types=[Shelf])
    try:
        db.validate()
    except InvalidStateError as e:
        print(f"\n✓ InvalidStateError: {e}")
    db.register(Book)
    db.validate()

    # Wrong element type
    shelf = Shelf(label="Fiction")
    try:
        shelf.books = ["Dune"]
    except AssociationTypeMismatch as e:
        print(f"✓ AssociationTypeMismatch: {e}")

    # Child saved without a parent
    try:
        Book(isbn="9780441013593", title="Dune").save()
    except InvalidStateError as e:
        print(f"✓ InvalidStateError: {e}")

    # Missing rows
    try:
        Shelf.find("no-such-shelf")
    except RecordNotFoundError as e:
        print(f"✓ RecordNotFoundError: {e}")

    shelf.save()
    Shelf.find(shelf.id).destroy()
    try:
        shelf.reload()
    except RecordNotFoundError as e:
        print(f"✓ RecordNotFoundError on reload: {e}")

    # Unsupported backend
    try:
        Database(storage_uri="postgres://localhost/books")
    except StorageBackendError as e:
        print(f"✓ StorageBackendError: {e}")

    db.close()


if __name__ == "__main__":
    main()
