"""
Example 03: Eager Loading

This example compares the four ways of resolving an association for a result
set and counts the statements each one issues:

- lazy:       one query for the authors, then one per author
- preload:    one query for the authors, one per association
- eager_load: a single LEFT OUTER JOIN query
- includes:   preload, unless the query filters on the association's table
"""

import sqlite3
import tempfile
from pathlib import Path

from row_orm import BelongsTo, Column, ConnectionConfig, Engine, HasMany, Record, Session


class Author(Record):
    __table__ = "authors"

    id = Column(int, primary_key=True)
    name = Column(str, nullable=False)

    books = HasMany("Book", order="id")


class Book(Record):
    __table__ = "books"

    id = Column(int, primary_key=True)
    author_id = Column(int)
    title = Column(str, nullable=False)
    pages = Column(int)

    author = BelongsTo("Author")


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

    catalogue = {
        "Ursula K. Le Guin": [("A Wizard of Earthsea", 183), ("The Dispossessed", 387)],
        "Frank Herbert": [("Dune", 412)],
        "Octavia E. Butler": [("Kindred", 264), ("Parable of the Sower", 345)],
    }
    for name, books in catalogue.items():
        author = session.create(Author, name=name)
        for title, pages in books:
            author.books.create(title=title, pages=pages)

    statements = []
    engine.add_listener(lambda sql, params: statements.append(sql))

    def run(label, query):
        statements.clear()
        authors = query.to_list()
        titles = {a.name: [b.title for b in a.books] for a in authors}
        print(f"{label:<28} {len(statements)} statement(s)  {titles}")

    print("=== Eager Loading Strategies ===\n")
    run("lazy", session.query(Author))
    run("preload", session.query(Author).preload("books"))
    run("eager_load", session.query(Author).eager_load("books"))
    run("includes", session.query(Author).includes("books"))
    run(
        "includes + books filter",
        session.query(Author).includes("books").where("books.pages > ?", 300),
    )

    print("\nLimit applies to authors, not joined rows:")
    run("eager_load + limit(2)", session.query(Author).eager_load("books").order("name").limit(2))

    print("\nResolving associations on records already in memory:")
    books = session.query(Book).to_list()
    statements.clear()
    session.load(books, "author")
    print(f"   {len(statements)} statement(s) for {len(books)} books")

    engine.close()
    Path(db_path).unlink()


if __name__ == "__main__":
    main()
