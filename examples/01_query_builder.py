"""
Example 01: Query Builder

This example declares two record types and walks through RowORM's chainable,
immutable Query: conditions, ordering, paging, scopes, calculations and bulk
writes.
"""

import sqlite3
import tempfile
from pathlib import Path

from row_orm import BelongsTo, Column, ConnectionConfig, Engine, HasMany, Record, Session, scope


class Author(Record):
    __table__ = "authors"

    id = Column(int, primary_key=True)
    name = Column(str, nullable=False)

    books = HasMany("Book", order="title")


class Book(Record):
    __table__ = "books"

    id = Column(int, primary_key=True)
    author_id = Column(int)
    title = Column(str, nullable=False)
    pages = Column(int)

    author = BelongsTo("Author")

    @scope
    def longer_than(query, pages):
        return query.where_gt("pages", pages)


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
            title TEXT NOT NULL,
            pages INTEGER
        );
    """)
    conn.close()

    engine = Engine.from_config(ConnectionConfig(driver="sqlite", database=db_path))
    session = Session(engine)

    le_guin = session.create(Author, name="Ursula K. Le Guin")
    herbert = session.create(Author, name="Frank Herbert")
    session.create(Book, title="A Wizard of Earthsea", pages=183, author=le_guin)
    session.create(Book, title="The Dispossessed", pages=387, author=le_guin)
    session.create(Book, title="Dune", pages=412, author=herbert)

    print("=== Building Queries ===\n")

    # Every call returns a new Query; the base stays untouched
    base = session.query(Book)
    long_books = base.longer_than(300).order("title DESC")
    print(f"1. Base SQL:      {base.to_sql()}")
    print(f"   Derived SQL:   {long_books.to_sql()}")
    print(f"   Titles:        {long_books.pluck('title')}\n")

    print("2. Conditions:")
    print(f"   IN list:       {base.where(pages=[183, 412]).pluck('title')}")
    print(f"   Raw fragment:  {base.where('pages BETWEEN ? AND ?', 100, 200).pluck('title')}")
    joined = base.joins("author").where(author={"name": "Frank Herbert"})
    print(f"   Joined:        {joined.pluck('title')}\n")

    print("3. Finders:")
    print(f"   first():       {base.first().title}")
    print(f"   last():        {base.last().title}")
    print(f"   find_by():     {base.find_by(title='Dune').pages} pages\n")

    print("4. Calculations:")
    print(f"   count():       {base.count()}")
    print(f"   average():     {base.average('pages'):.1f}")
    print(f"   grouped:       {base.group('author_id').count()}\n")

    print("5. Merge (other's predicates replace ours):")
    merged = base.where(pages=183).merge(session.query(Book).where(title="Dune"))
    print(f"   {merged.to_sql()}\n")

    print("6. Bulk update without hooks:")
    affected = base.where(author_id=le_guin.id).update_all("pages = pages + ?", 1)
    print(f"   Rows updated:  {affected}")

    engine.close()
    Path(db_path).unlink()


if __name__ == "__main__":
    main()
