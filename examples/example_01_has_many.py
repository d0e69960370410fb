"""Example 01: Has-Many Associations.

This example walks through the lifecycle of a has-many relation:
- Declaring parent and child entities with hash/range keys
- Assigning children in memory, then persisting them with the parent's save()
- Lazy loading on first access, and the presence check
- Removing a child from the list and saving (write-back deletes it)
- Reloading the parent, which drops cached children
- Cascade destroy of the whole tree
"""
# pyright: reportAttributeAccessIssue=false

from dynassoc import Database, Entity, Field, HasMany


class Author(Entity, table="authors"):
    """A blog author; the parent side."""

    id: Field[str] = Field(hash_key=True)
    name: Field[str]
    articles = HasMany("Article")


class Article(Entity, table="articles"):
    """An article, stored under its author's key."""

    author_id: Field[str] = Field(hash_key=True)
    id: Field[str] = Field(range_key=True)
    title: Field[str]
    words: Field[int] = 0
    notes = HasMany("Note")


class Note(Entity, table="notes"):
    """Editorial note on an article; a grandchild of the author."""

    article_id: Field[str] = Field(hash_key=True)
    id: Field[str] = Field(range_key=True)
    text: Field[str]


def main():
    """Run the has-many example."""
    print("=" * 80)
    print("DYNASSOC HAS-MANY EXAMPLE")
    print("=" * 80)

    db = Database(storage_uri="sqlite:///:memory:", entity_types=[Author, Article, Note])
    db.create_tables()
    print("\n✓ Database initialized")

    # 1. Assign and save
    print("\n" + "=" * 80)
    print("1. ASSIGN CHILDREN, THEN SAVE THE PARENT")
    print("=" * 80)

    ada = Author(name="Ada")
    ada.articles = [
        Article(title="Notes on the Engine", words=1200),
        Article(title="On Bernoulli Numbers", words=800),
    ]
    ada.articles[0].notes = [Note(text="Check the table in section G")]
    ada.save()
    print(f"\nSaved author {ada.id} with {len(ada.articles)} articles")

    # 2. Lazy load
    print("\n" + "=" * 80)
    print("2. LAZY LOADING")
    print("=" * 80)

    found = Author.find(ada.id)
    print(f"\nLoaded before access? {found.association('articles').slot(found).loaded}")
    for article in found.articles:
        print(f"  {article.title} ({article.words} words, {len(article.notes)} notes)")
    print(f"Loaded after access? {found.association('articles').slot(found).loaded}")
    print(f"Has articles? {found.association_present('articles')}")

    # 3. Write-back removes dropped children
    print("\n" + "=" * 80)
    print("3. WRITE-BACK")
    print("=" * 80)

    found.articles = [a for a in found.articles if a.words > 1000]
    found.articles.append(Article(title="Sketch of the Analytical Engine", words=20000))
    found.save()
    print("\nAfter dropping short articles and adding one:")
    for article in Author.find(ada.id).articles:
        print(f"  {article.title}")

    # 4. Reload resets cached children
    print("\n" + "=" * 80)
    print("4. RELOAD")
    print("=" * 80)

    found.reload()
    print(f"\nLoaded after reload? {found.association('articles').slot(found).loaded}")

    # 5. Cascade destroy
    print("\n" + "=" * 80)
    print("5. CASCADE DESTROY")
    print("=" * 80)

    found.destroy()
    print(f"\nAuthor destroyed: {found.destroyed}")
    print(f"Remaining notes: {db.store.count_items(db.table_for(Note))}")
    print(f"Remaining articles: {db.store.count_items(db.table_for(Article))}")

    db.close()


if __name__ == "__main__":
    main()
