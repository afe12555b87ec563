"""
Example 02: Associations

This example shows belongs-to, has-many, has-many-through and join-table
associations: lazy access, building children, attach/detach/clear on a
bare join table, polymorphic belongs-to, and enum columns.
"""

import sqlite3
import tempfile
from pathlib import Path

from row_orm import (
    BelongsTo,
    Column,
    ConnectionConfig,
    Engine,
    HasAndBelongsToMany,
    HasMany,
    HasManyThrough,
    Record,
    Session,
)


class Author(Record):
    __table__ = "authors"

    id = Column(int, primary_key=True)
    name = Column(str, nullable=False)

    books = HasMany("Book", order="id", dependent="destroy")
    reviews = HasManyThrough("books")


class Book(Record):
    __table__ = "books"

    id = Column(int, primary_key=True)
    author_id = Column(int)
    title = Column(str, nullable=False)

    author = BelongsTo("Author")
    reviews = HasMany("Review", dependent="delete_all")
    tags = HasAndBelongsToMany("Tag")
    covers = HasMany("Cover", as_="coverable")


class Review(Record):
    __table__ = "reviews"

    id = Column(int, primary_key=True)
    book_id = Column(int)
    rating = Column(int)

    book = BelongsTo("Book")


class Tag(Record):
    __table__ = "tags"

    id = Column(int, primary_key=True)
    name = Column(str, nullable=False)

    books = HasAndBelongsToMany("Book")


class Cover(Record):
    __table__ = "covers"

    id = Column(int, primary_key=True)
    artist = Column(str, nullable=False)
    status = Column(int, nullable=False, default=0, enum=["draft", "approved", "printed"])
    coverable_id = Column(int)
    coverable_type = Column(str)

    coverable = BelongsTo(polymorphic=True)


def main():
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE authors (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL);
        CREATE TABLE books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            author_id INTEGER REFERENCES authors(id),
            title TEXT NOT NULL
        );
        CREATE TABLE reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER REFERENCES books(id),
            rating INTEGER
        );
        CREATE TABLE tags (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL);
        CREATE TABLE books_tags (
            book_id INTEGER NOT NULL REFERENCES books(id),
            tag_id INTEGER NOT NULL REFERENCES tags(id),
            UNIQUE (book_id, tag_id)
        );
        CREATE TABLE covers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            artist TEXT NOT NULL,
            status INTEGER NOT NULL DEFAULT 0,
            coverable_id INTEGER,
            coverable_type TEXT
        );
    """)
    conn.close()

    engine = Engine.from_config(ConnectionConfig(driver="sqlite", database=db_path))
    session = Session(engine)

    print("=== Associations ===\n")

    # Building through the collection fills in the foreign key
    author = session.create(Author, name="Ursula K. Le Guin")
    earthsea = author.books.create(title="A Wizard of Earthsea")
    tehanu = author.books.create(title="Tehanu")
    earthsea.reviews.create(rating=5)
    earthsea.reviews.create(rating=4)
    tehanu.reviews.create(rating=3)

    print("1. Lazy loading:")
    book = session.find(Book, earthsea.id)
    print(f"   {book.title} by {book.author.name}")
    print(f"   Ratings: {[r.rating for r in book.reviews]}\n")

    print("2. Through association (one joined query):")
    print(f"   {author.name} has {len(author.reviews)} reviews across all books\n")

    print("3. Join table writes:")
    fantasy = session.create(Tag, name="fantasy")
    classic = session.create(Tag, name="classic")
    earthsea.tags.attach(fantasy, classic)
    earthsea.tags.attach(fantasy)  # already paired: no duplicate row
    print(f"   After attach: {sorted(t.name for t in earthsea.tags)}")
    earthsea.tags.detach(classic)
    print(f"   After detach: {[t.name for t in earthsea.tags]}")
    earthsea.tags.clear()
    print(f"   After clear:  {list(earthsea.tags)}\n")

    print("4. Polymorphic belongs-to and enum columns:")
    cover = session.create(Cover, artist="Ruth Robbins", coverable=earthsea)
    print(f"   Cover points at {cover.coverable_type} #{cover.coverable_id}: {cover.coverable.title}")
    print(f"   Covers of the book: {[c.artist for c in earthsea.covers]}")
    print(f"   Status: {cover.status_name} (stored as {cover.status})")
    session.update(cover, status="approved")
    print(f"   Approved covers: {session.query(Cover).approved().count()}")
    print(f"   Status values: {Cover.status_values}\n")

    print("5. Dependent destroy:")
    session.destroy(author)
    print(f"   Books left:   {session.query(Book).count()}")
    print(f"   Reviews left: {session.query(Review).count()}")

    engine.close()
    Path(db_path).unlink()


if __name__ == "__main__":
    main()
