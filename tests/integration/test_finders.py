"""Integration tests for finders, calculations and bulk writes."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from row_orm.core.exceptions import InvalidQueryError, NotFoundError
from row_orm.model.columns import Column
from row_orm.model.record import Record
from row_orm.session import Session
from tests.models import Author, Book, Review


class InPrintBook(Record):
    __table__ = "books"
    __default_scope__ = staticmethod(lambda query: query.where(out_of_print=False).order("title"))

    id = Column(int, primary_key=True)
    title = Column(str)
    out_of_print = Column(bool)


@pytest.mark.integration
class TestFind:
    def test_by_key(self, session: Session, library: SimpleNamespace) -> None:
        assert session.find(Book, library.dune.id).title == "Dune"

    def test_many_keys_keep_requested_order(self, session: Session, library: SimpleNamespace) -> None:
        books = session.find(Book, library.dune.id, library.earthsea.id)
        assert [b.title for b in books] == ["Dune", "A Wizard of Earthsea"]
        assert session.find(Book, [library.dune.id]) == [library.dune]

    def test_missing_key(self, session: Session, library: SimpleNamespace) -> None:
        with pytest.raises(NotFoundError, match="Couldn't find Book with 'id'=999"):
            session.find(Book, 999)
        with pytest.raises(NotFoundError, match=r"'id' in \[999\]"):
            session.find(Book, library.dune.id, 999)

    def test_find_by(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).find_by(title="Dune") == library.dune
        assert session.query(Book).find_by(title="Missing") is None
        with pytest.raises(NotFoundError, match="Couldn't find Book with"):
            session.query(Book).find_by_or_raise(title="Missing")

    def test_first_last_take(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book)
        assert books.first().title == "A Wizard of Earthsea"
        assert books.last().title == "Dune"
        assert [b.title for b in books.first(2)] == ["A Wizard of Earthsea", "The Dispossessed"]
        assert [b.title for b in books.order("title").last(2)] == ["Dune", "The Dispossessed"]
        assert books.take() is not None
        assert len(books.take(2)) == 2
        assert session.query(Book).where(pages=1).first() is None
        with pytest.raises(NotFoundError):
            session.query(Book).where(pages=1).first_or_raise()

    def test_exists(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).exists()
        assert session.query(Book).exists(title="Dune")
        assert not session.query(Book).where(pages=1).exists()


@pytest.mark.integration
class TestConditions:
    def test_hash_forms(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book)
        assert books.where(pages=[183, 412]).order("id").pluck("title") == ["A Wizard of Earthsea", "Dune"]
        assert books.where(pages=range(300, 400)).pluck("title") == ["The Dispossessed"]
        assert books.where(author_id=None).count() == 0
        assert books.where_not(title="Dune").count() == 2

    def test_operators(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book)
        assert books.where_like("title", "The %").pluck("title") == ["The Dispossessed"]
        assert books.where_gt("pages", 383).count() == 2
        assert books.where_lte("price", 12.0).count() == 2
        assert books.where_between("pages", 100, 200).count() == 1
        assert books.where_not_in("id", [library.dune.id]).count() == 2
        assert books.where_not_null("author_id").count() == 3

    def test_raw_fragment(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).where("pages > ? AND price < ?", 200, 14).pluck("title") == [
            "The Dispossessed"
        ]

    def test_nested_conditions_on_joined_association(
        self, session: Session, library: SimpleNamespace
    ) -> None:
        titles = (
            session.query(Book).joins("author").where(author={"country": "US"}, pages=412).pluck("title")
        )
        assert titles == ["Dune"]

    def test_join_table_join_is_distinct(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).joins("tags").where(tags={"name": "classic"}).count() == 3
        query = session.query(Book).joins("tags").where("tags.name IN (?, ?)", "classic", "fantasy")
        assert query.count() == 4
        assert query.distinct().count() == 3

    def test_left_joins_keep_unmatched(self, session: Session, library: SimpleNamespace) -> None:
        names = session.query(Author).left_joins("books").where("books.id IS NULL").pluck("name")
        assert names == ["Jorge Luis Borges"]

    def test_paging(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book).order("id")
        assert books.page(2, per_page=2).pluck("title") == ["Dune"]
        assert books.offset(1).pluck("title") == ["The Dispossessed", "Dune"]


@pytest.mark.integration
class TestCalculations:
    def test_aggregates(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book)
        assert books.count() == 3
        assert books.sum("pages") == 982
        assert books.average("price") == pytest.approx(36.5 / 3)
        assert books.minimum("pages") == 183
        assert books.maximum("pages") == 412

    def test_empty_set(self, session: Session, library: SimpleNamespace) -> None:
        none = session.query(Book).where(pages=1)
        assert none.count() == 0
        assert none.sum("pages") == 0
        assert none.average("pages") is None

    def test_count_respects_limit(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).order("id").limit(2).count() == 2

    def test_grouped_count(self, session: Session, library: SimpleNamespace) -> None:
        counts = session.query(Book).group("author_id").count()
        assert counts == {library.le_guin.id: 2, library.herbert.id: 1}

    def test_grouped_with_having(self, session: Session, library: SimpleNamespace) -> None:
        counts = session.query(Review).group("book_id").having("COUNT(*) > ?", 1).count()
        assert counts == {library.earthsea.id: 2}

    def test_ungrouped_column_rejected(self, session: Session, library: SimpleNamespace) -> None:
        with pytest.raises(InvalidQueryError):
            session.query(Book).group("author_id").pluck("title")

    def test_pluck_pick_ids(self, session: Session, library: SimpleNamespace) -> None:
        books = session.query(Book).order("id")
        assert books.pluck("title", "pages")[0] == ("A Wizard of Earthsea", 183)
        assert books.pick("title") == "A Wizard of Earthsea"
        assert books.ids() == [library.earthsea.id, library.dispossessed.id, library.dune.id]
        assert session.query(Book).where(pages=1).pick("title") is None

    def test_select_exposes_aliases(self, session: Session, library: SimpleNamespace) -> None:
        book = session.query(Book).select("id", "title", "pages * 2 AS double_pages").find(library.dune.id)
        assert book["double_pages"] == 824

    def test_explain(self, session: Session, library: SimpleNamespace) -> None:
        assert "books" in session.query(Book).where(title="Dune").explain()


@pytest.mark.integration
class TestBulkWrites:
    def test_update_all(self, session: Session, library: SimpleNamespace) -> None:
        affected = session.query(Book).where(author_id=library.le_guin.id).update_all(out_of_print=True)
        assert affected == 2
        assert session.query(Book).where(out_of_print=True).count() == 2

    def test_update_all_with_fragment(self, session: Session, library: SimpleNamespace) -> None:
        session.query(Book).update_all("pages = pages + ?", 10)
        assert session.query(Book).sum("pages") == 1012

    def test_update_all_skips_locking(self, session: Session, library: SimpleNamespace) -> None:
        session.query(Book).update_all(title="Same")
        assert session.query(Book).pluck("lock_version") == [0, 0, 0]

    def test_update_all_with_limit(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Book).order("id").limit(2).update_all(pages=1) == 2
        assert session.find(Book, library.dune.id).pages == 412

    def test_update_all_through_join(self, session: Session, library: SimpleNamespace) -> None:
        affected = session.query(Book).joins("author").where(author={"name": "Frank Herbert"}).update_all(
            price=20.0
        )
        assert affected == 1
        assert session.find(Book, library.dune.id).price == 20.0

    def test_delete_all(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Review).where_lt("rating", 5).delete_all() == 2
        assert session.query(Review).count() == 1


@pytest.mark.integration
class TestFindOrCreate:
    def test_existing(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Author).find_or_create_by(name="Frank Herbert") == library.herbert
        assert session.query(Author).count() == 3

    def test_created(self, session: Session, library: SimpleNamespace) -> None:
        author = session.query(Author).find_or_create_by(name="Italo Calvino")
        assert author.persisted
        assert session.query(Author).count() == 4

    def test_initialized(self, session: Session, library: SimpleNamespace) -> None:
        author = session.query(Author).find_or_initialize_by(name="Italo Calvino")
        assert author.new_record
        assert author.session is session


@pytest.mark.integration
class TestScopes:
    def test_named_scopes_compose(self, session: Session, library: SimpleNamespace) -> None:
        session.update(library.dune, out_of_print=True)
        titles = session.query(Book).in_print().longer_than(200).pluck("title")
        assert titles == ["The Dispossessed"]

    def test_scope_on_association_query(self, session: Session, library: SimpleNamespace) -> None:
        assert library.le_guin.books.query().longer_than(200).count() == 1

    def test_default_scope(self, session: Session, library: SimpleNamespace) -> None:
        session.update(library.dune, out_of_print=True)
        assert session.query(InPrintBook).pluck("title") == ["A Wizard of Earthsea", "The Dispossessed"]
        assert session.query(InPrintBook).unscoped().count() == 3
        assert session.unscoped_query(InPrintBook).count() == 3

    def test_merge_overrides_default_scope(self, session: Session, library: SimpleNamespace) -> None:
        session.update(library.dune, out_of_print=True)
        override = session.unscoped_query(InPrintBook).where(out_of_print=True)
        assert session.query(InPrintBook).merge(override).pluck("title") == ["Dune"]


@pytest.mark.integration
class TestValueTerminalsWithIncludes:
    """Terminals that skip records still join what ``includes`` joins."""

    def test_singular_association_filter(self, session: Session, library: SimpleNamespace) -> None:
        query = session.query(Book).includes("author").where({"authors.name": "Frank Herbert"})
        assert [b.title for b in query.to_list()] == ["Dune"]
        assert query.count() == 1
        assert query.exists()
        assert query.sum("pages") == 412
        assert query.maximum("pages") == 412
        assert query.pluck("title") == ["Dune"]
        assert query.pick("title") == "Dune"
        assert query.ids() == [library.dune.id]

    def test_collection_filter_counts_base_rows(
        self, session: Session, library: SimpleNamespace
    ) -> None:
        query = session.query(Author).includes("books").where("books.pages > ?", 100).order("name")
        # le_guin matches through two books but counts once
        assert query.count() == 2
        assert query.exists()
        assert query.pluck("name") == ["Frank Herbert", "Ursula K. Le Guin"]
        assert sorted(query.ids()) == sorted([library.le_guin.id, library.herbert.id])
        assert query.limit(1).pluck("name") == ["Frank Herbert"]
        assert not session.query(Author).includes("books").where("books.pages > ?", 1000).exists()

    def test_update_all_and_delete_all(self, session: Session, library: SimpleNamespace) -> None:
        long_books = session.query(Author).includes("books").where("books.pages > ?", 100)
        assert long_books.update_all(country="XX") == 2
        assert session.query(Author).where(country="XX").count() == 2

        herbert_books = session.query(Book).includes("author").where({"authors.name": "Frank Herbert"})
        assert herbert_books.update_all(pages=413) == 1
        assert session.find(Book, library.dune.id).pages == 413
        assert herbert_books.delete_all() == 1
        assert session.query(Book).count() == 2

    def test_eager_load_counts_base_rows(self, session: Session, library: SimpleNamespace) -> None:
        assert session.query(Author).eager_load("books").count() == 3
        assert session.query(Author).preload("books").where(country="US").count() == 2
