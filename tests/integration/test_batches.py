"""Integration tests for cursor-paged batch enumeration."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

from row_orm.core.exceptions import InvalidQueryError
from row_orm.session import Session
from tests.models import Author, Book, User


@pytest.fixture
def users(session: Session) -> list[User]:
    return [session.create(User, name=f"user{i}") for i in range(1, 8)]


@pytest.mark.integration
class TestFindInBatches:
    def test_short_last_batch(self, session: Session, users: list[User]) -> None:
        batches = list(session.query(User).find_in_batches(3))
        assert [len(b) for b in batches] == [3, 3, 1]
        assert [u.id for batch in batches for u in batch] == [u.id for u in users]

    def test_exact_multiple_ends_on_an_empty_page(
        self, session: Session, users: list[User], statements: list[str]
    ) -> None:
        session.query(User).where(id=users[-1].id).delete_all()
        statements.clear()
        batches = list(session.query(User).find_in_batches(3))
        assert [len(b) for b in batches] == [3, 3]
        assert len(statements) == 3

    def test_empty_set(self, session: Session) -> None:
        assert list(session.query(User).find_in_batches(3)) == []

    def test_pages_by_cursor_not_offset(
        self, session: Session, users: list[User], statements: list[str]
    ) -> None:
        statements.clear()
        list(session.query(User).find_in_batches(3))
        assert all("OFFSET" not in sql for sql in statements)
        assert "id > ?" in statements[1]

    def test_start_and_finish(self, session: Session, users: list[User]) -> None:
        batches = session.query(User).find_in_batches(3, start=users[2].id, finish=users[5].id)
        assert [[u.name for u in b] for b in batches] == [["user3", "user4", "user5"], ["user6"]]

    def test_descending(self, session: Session, users: list[User]) -> None:
        batches = list(session.query(User).find_in_batches(3, order="desc"))
        assert [u.name for u in batches[0]] == ["user7", "user6", "user5"]
        assert [u.name for u in batches[-1]] == ["user1"]

    def test_custom_cursor(self, session: Session, users: list[User]) -> None:
        batches = list(session.query(User).find_in_batches(4, cursor="name"))
        assert [len(b) for b in batches] == [4, 3]

    def test_predicates_kept_and_limit_caps_total(self, session: Session, users: list[User]) -> None:
        query = session.query(User).where_not(name="user2").limit(5)
        batches = list(query.find_in_batches(2))
        assert [[u.name for u in b] for b in batches] == [
            ["user1", "user3"],
            ["user4", "user5"],
            ["user6"],
        ]

    def test_restartable(self, session: Session, users: list[User]) -> None:
        enumerator = session.query(User).find_in_batches(5)
        assert [len(b) for b in enumerator] == [5, 2]
        assert [len(b) for b in enumerator] == [5, 2]

    def test_default_batch_size_from_settings(self, session: Session, users: list[User]) -> None:
        assert [len(b) for b in session.query(User).find_in_batches()] == [7]

    def test_scoped_order_replaced_with_warning(
        self, session: Session, users: list[User], caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="row_orm.query.batches"):
            batches = list(session.query(User).order("name DESC").find_in_batches(4))
        assert batches[0][0].name == "user1"
        assert "Scoped order is ignored" in caplog.text


@pytest.mark.integration
class TestInvalidBatches:
    def test_batch_size_must_be_positive(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="batch size must be >= 1"):
            session.query(User).find_in_batches(-1)

    def test_zero_batch_size_rejected(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="batch size must be >= 1, got 0"):
            session.query(User).find_in_batches(0)

    def test_null_cursor_value_stops_the_walk(self, session: Session) -> None:
        for title in ("Untitled I", "Untitled II", "Untitled III"):
            session.create(Book, title=title)
        batches = session.query(Book).find_in_batches(2, cursor="pages")
        with pytest.raises(InvalidQueryError, match="reached a NULL value"):
            list(batches)
        with pytest.raises(InvalidQueryError, match="reached a NULL value"):
            list(session.query(Book).in_batches(2, cursor="pages"))

    def test_offset_rejected(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="offset"):
            session.query(User).offset(2).find_in_batches(3)

    def test_unknown_cursor(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="Unknown cursor column 'rank'"):
            session.query(User).find_in_batches(3, cursor="rank")

    def test_invalid_order(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="Invalid batch order"):
            session.query(User).find_in_batches(3, order="sideways")

    def test_cursor_must_be_selected(self, session: Session) -> None:
        with pytest.raises(InvalidQueryError, match="must be selected"):
            session.query(User).select("name").find_in_batches(3)


@pytest.mark.integration
class TestEachRecordAndQuery:
    def test_find_each(self, session: Session, users: list[User]) -> None:
        assert [u.name for u in session.query(User).find_each(2)] == [f"user{i}" for i in range(1, 8)]

    def test_in_batches_yields_queries(self, session: Session, users: list[User]) -> None:
        pages = list(session.query(User).in_batches(3))
        assert [page.count() for page in pages] == [3, 3, 1]
        assert pages[1].pluck("name") == ["user4", "user5", "user6"]

    def test_in_batches_bulk_update(self, session: Session, users: list[User]) -> None:
        for page in session.query(User).in_batches(3):
            page.update_all("name = name || ?", "!")
        assert session.query(User).where_like("name", "%!").count() == 7

    def test_loaded_pages_skip_refetch(
        self, session: Session, users: list[User], statements: list[str]
    ) -> None:
        statements.clear()
        pages = session.query(User).in_batches(3, load=True)
        first = next(pages)
        fetched = len(statements)
        assert [u.name for u in first] == ["user1", "user2", "user3"]
        assert len(statements) == fetched

    def test_in_batches_with_joined_includes(self, session: Session, library: SimpleNamespace) -> None:
        query = session.query(Book).includes("author").where({"authors.country": "US"})
        pages = list(query.in_batches(2))
        assert [page.pluck("title") for page in pages] == [
            ["A Wizard of Earthsea", "The Dispossessed"],
            ["Dune"],
        ]
        long_books = session.query(Author).includes("books").where("books.pages > ?", 300)
        assert [a.name for a in long_books.find_each(1)] == ["Ursula K. Le Guin", "Frank Herbert"]
