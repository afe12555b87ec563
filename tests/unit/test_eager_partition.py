"""Unit tests for how ``includes`` picks a loading strategy."""

from __future__ import annotations

from types import SimpleNamespace

from row_orm.core.enums import IncludesDetection
from row_orm.core.settings import OrmSettings
from row_orm.query.builder import Query
from row_orm.query.eager import EagerLoadResolver
from tests.models import Author, Book


def resolver(detection: IncludesDetection = IncludesDetection.STRUCTURAL) -> EagerLoadResolver:
    session = SimpleNamespace(settings=OrmSettings(includes_detection=detection))
    return EagerLoadResolver(session)  # type: ignore[arg-type]


class TestStructuralDetection:
    def test_unreferenced_includes_preloads(self) -> None:
        query = Query(Author).includes("books").where(country="US")
        assert resolver().partition(query.spec) == ([], ["books"])

    def test_raw_predicate_on_target_table_joins(self) -> None:
        query = Query(Author).includes("books").where("books.pages > ?", 300)
        assert resolver().partition(query.spec) == (["books"], [])

    def test_nested_condition_joins(self) -> None:
        query = Query(Author).includes("books").where(books={"title": "Dune"})
        assert resolver().partition(query.spec) == (["books"], [])

    def test_order_on_target_table_joins(self) -> None:
        query = Query(Author).includes("books").order("books.title")
        assert resolver().partition(query.spec) == (["books"], [])

    def test_through_intermediate_table_counts(self) -> None:
        query = Query(Author).includes("reviews").where("books.pages > ?", 300)
        assert resolver().partition(query.spec) == (["reviews"], [])

    def test_decided_per_association(self) -> None:
        query = Query(Book).includes("author", "reviews").where("reviews.rating > ?", 3)
        assert resolver().partition(query.spec) == (["reviews"], ["author"])

    def test_explicit_strategies_are_kept(self) -> None:
        query = Query(Book).preload("author").eager_load("tags").where("tags.name = ?", "x")
        assert resolver().partition(query.spec) == (["tags"], ["author"])


class TestExplicitDetection:
    def test_filter_alone_does_not_join(self) -> None:
        query = Query(Author).includes("books").where("books.pages > ?", 300)
        assert resolver(IncludesDetection.EXPLICIT).partition(query.spec) == ([], ["books"])

    def test_references_join(self) -> None:
        query = Query(Author).includes("books").references("books")
        assert resolver(IncludesDetection.EXPLICIT).partition(query.spec) == (["books"], [])

    def test_references_by_association_name(self) -> None:
        query = Query(Book).includes("author").references("author")
        assert resolver(IncludesDetection.EXPLICIT).partition(query.spec) == (["author"], [])
