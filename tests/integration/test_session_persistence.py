"""Integration tests for Session persistence: create, update, destroy, reload."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from row_orm.associations.descriptors import HasMany
from row_orm.core.exceptions import InvalidQueryError, NotFoundError
from row_orm.model.callbacks import Phase, hook
from row_orm.model.columns import Column
from row_orm.model.record import Record
from row_orm.session import Session
from tests.models import Author, Book, Review, Tag


def count_rows(session: Session, table: str) -> int:
    return session.engine.scalar(f"SELECT COUNT(*) FROM {table}")


@pytest.mark.integration
class TestCreate:
    def test_generated_key_and_state(self, session: Session) -> None:
        author = session.create(Author, name="Ted Chiang", country="US")
        assert isinstance(author.id, int)
        assert author.persisted
        assert not author.is_changed()
        assert session.find(Author, author.id).name == "Ted Chiang"

    def test_explicit_key(self, session: Session) -> None:
        author = session.create(Author, id=42, name="Stanisław Lem")
        assert author.id == 42
        assert session.find(Author, 42).name == "Stanisław Lem"

    def test_timestamps_and_version(self, session: Session) -> None:
        book = session.create(Book, title="Neuromancer")
        assert book.created_at is not None
        assert book.updated_at == book.created_at
        assert book.lock_version == 0
        fresh = session.find(Book, book.id)
        assert fresh.created_at == book.created_at
        assert fresh.out_of_print is False

    def test_before_save_hook_mutates(self, session: Session) -> None:
        book = session.create(Book, title="  Solaris  ")
        assert book.title == "Solaris"
        assert session.find(Book, book.id).title == "Solaris"


@pytest.mark.integration
class TestUpdate:
    def test_only_changed_columns_written(
        self, session: Session, library: SimpleNamespace, statements: list[str]
    ) -> None:
        dune = library.dune
        statements.clear()
        session.update(dune, pages=896)
        assert len(statements) == 1
        assert statements[0].startswith("UPDATE books SET pages = ?, updated_at = ?, lock_version = ?")
        assert session.find(Book, dune.id).pages == 896
        assert not dune.is_changed()

    def test_unchanged_record_issues_nothing(
        self, session: Session, library: SimpleNamespace, statements: list[str]
    ) -> None:
        statements.clear()
        session.save(library.dune)
        assert statements == []

    def test_updated_at_moves(self, session: Session, library: SimpleNamespace) -> None:
        dune = library.dune
        created = dune.created_at
        session.update(dune, title="Dune Messiah")
        assert dune.created_at == created
        assert dune.updated_at >= created

    def test_record_without_locking_column(self, session: Session, library: SimpleNamespace) -> None:
        ana = library.ana
        session.update(ana, name="Ana María")
        assert session.find(type(ana), ana.id).name == "Ana María"


@pytest.mark.integration
class TestHooks:
    def test_phase_order(self, session: Session) -> None:
        session.engine.execute(
            "CREATE TABLE journal_entries (id INTEGER PRIMARY KEY AUTOINCREMENT, body TEXT)"
        )
        calls: list[str] = []

        class JournalEntry(Record):
            __table__ = "journal_entries"

            id = Column(int, primary_key=True)
            body = Column(str)

            @hook(*Phase)
            def record_phase(self) -> None:
                calls.append(self._phase_marker())

            def _phase_marker(self) -> str:
                return "persisted" if self.persisted else "new"

        entry = session.create(JournalEntry, body="first")
        # validation, save and create hooks before the insert; create and save after
        assert calls == ["new"] * 4 + ["persisted"] * 2

        calls.clear()
        session.update(entry, body="second")
        assert len(calls) == 6

        calls.clear()
        session.destroy(entry)
        assert len(calls) == 2
        assert entry.destroyed

    def test_failing_hook_rolls_back(self, session: Session) -> None:
        session.engine.execute(
            "CREATE TABLE audit_entries (id INTEGER PRIMARY KEY AUTOINCREMENT, body TEXT)"
        )

        class AuditEntry(Record):
            __table__ = "audit_entries"

            id = Column(int, primary_key=True)
            body = Column(str)

            @hook(Phase.AFTER_CREATE)
            def reject(self) -> None:
                raise ValueError("rejected")

        with pytest.raises(ValueError, match="rejected"):
            session.create(AuditEntry, body="x")
        assert count_rows(session, "audit_entries") == 0


@pytest.mark.integration
class TestDestroy:
    def test_dependent_destroy_cascades(self, session: Session, library: SimpleNamespace) -> None:
        herbert = session.find(Author, library.herbert.id)
        session.destroy(herbert)
        assert herbert.destroyed
        assert not session.query(Book).where(title="Dune").exists()
        # the destroyed book's join rows go too, the tags stay
        assert session.engine.scalar(
            "SELECT COUNT(*) FROM books_tags WHERE book_id = ?", (library.dune.id,)
        ) == 0
        assert session.query(Tag).count() == 2

    def test_dependent_delete_all(self, session: Session, library: SimpleNamespace) -> None:
        session.destroy(library.earthsea)
        assert session.query(Review).count() == 1
        assert session.query(Review).pluck("body") == ["Dense"]

    def test_dependent_nullify(self, session: Session, library: SimpleNamespace) -> None:
        class Estate(Record):
            __table__ = "authors"

            id = Column(int, primary_key=True)
            name = Column(str)
            country = Column(str)

            books = HasMany("Book", foreign_key="author_id", dependent="nullify")

        estate = session.find(Estate, library.herbert.id)
        session.destroy(estate)
        assert session.find(Book, library.dune.id).author_id is None
        assert not session.query(Author).where(id=library.herbert.id).exists()

    def test_unsaved_record_cannot_be_destroyed(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="unsaved Book"):
            session.destroy(Book(title="Draft"))

    def test_destroyed_record_cannot_be_saved(self, session: Session, library: SimpleNamespace) -> None:
        borges = library.borges
        session.destroy(borges)
        with pytest.raises(InvalidQueryError, match="destroyed Author"):
            session.save(borges)


@pytest.mark.integration
class TestReadBack:
    def test_reload_discards_changes(self, session: Session, library: SimpleNamespace) -> None:
        dune = library.dune
        dune.title = "Changed"
        session.reload(dune)
        assert dune.title == "Dune"
        assert not dune.is_changed()
        assert not dune.loaded("author")

    def test_reload_missing_row(self, session: Session, library: SimpleNamespace) -> None:
        borges = library.borges
        session.query(Author).where(id=borges.id).delete_all()
        with pytest.raises(NotFoundError, match="Couldn't find Author with 'id'="):
            session.reload(borges)

    def test_find_by_sql_keeps_extra_columns(self, session: Session, library: SimpleNamespace) -> None:
        books = session.find_by_sql(
            Book,
            "SELECT books.*, COUNT(reviews.id) AS review_count FROM books "
            "LEFT JOIN reviews ON reviews.book_id = books.id "
            "WHERE books.pages > ? GROUP BY books.id ORDER BY books.id",
            100,
        )
        assert [(b.title, b["review_count"]) for b in books] == [
            ("A Wizard of Earthsea", 2),
            ("The Dispossessed", 1),
            ("Dune", 0),
        ]
        assert books[0].author.name == "Ursula K. Le Guin"
