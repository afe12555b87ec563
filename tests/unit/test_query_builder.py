"""Unit tests for the chainable Query builder (compilation only, no database)."""

from __future__ import annotations

import pytest

from row_orm.adapters.dialect import PostgresqlDialect, SqliteDialect
from row_orm.core.enums import LoadStrategy
from row_orm.core.exceptions import (
    AssociationConfigurationError,
    InvalidQueryError,
)
from row_orm.model.columns import Column
from row_orm.model.record import Record, scope
from row_orm.query.builder import Query
from tests.models import Author, Book


def sql_of(query: Query) -> str:
    return query.compile().sql


class TestImmutability:
    def test_chain_returns_new_query(self) -> None:
        base = Query(Book)
        filtered = base.where(title="Dune")
        assert filtered is not base
        assert base.spec.predicates == ()
        assert len(filtered.spec.predicates) == 1

    def test_base_query_reusable(self) -> None:
        base = Query(Book).where(out_of_print=False)
        short = base.where_lt("pages", 200)
        long = base.where_gt("pages", 400)
        assert sql_of(short) == "SELECT * FROM books WHERE out_of_print = ? AND pages < ?"
        assert sql_of(long) == "SELECT * FROM books WHERE out_of_print = ? AND pages > ?"
        assert sql_of(base) == "SELECT * FROM books WHERE out_of_print = ?"


class TestWhere:
    def test_keyword_equality(self) -> None:
        compiled = Query(Book).where(title="Dune").compile()
        assert compiled.sql == "SELECT * FROM books WHERE title = ?"
        assert compiled.params == ("Dune",)

    def test_none_becomes_is_null(self) -> None:
        assert sql_of(Query(Book).where(pages=None)) == "SELECT * FROM books WHERE pages IS NULL"

    def test_sequence_becomes_in(self) -> None:
        compiled = Query(Book).where(id=[1, 2, 3]).compile()
        assert compiled.sql == "SELECT * FROM books WHERE id IN (?, ?, ?)"
        assert compiled.params == (1, 2, 3)

    def test_empty_sequence_matches_nothing(self) -> None:
        assert sql_of(Query(Book).where(id=[])) == "SELECT * FROM books WHERE 1=0"
        assert sql_of(Query(Book).where_not(id=[])) == "SELECT * FROM books WHERE 1=1"

    def test_range_becomes_between(self) -> None:
        compiled = Query(Book).where(pages=range(100, 201)).compile()
        assert compiled.sql == "SELECT * FROM books WHERE pages BETWEEN ? AND ?"
        assert compiled.params == (100, 200)

    def test_raw_fragment_with_params(self) -> None:
        compiled = Query(Book).where("pages > ? AND price < ?", 100, 20.0).compile()
        assert compiled.sql == "SELECT * FROM books WHERE (pages > ? AND price < ?)"
        assert compiled.params == (100, 20.0)

    def test_placeholder_count_mismatch(self) -> None:
        with pytest.raises(InvalidQueryError, match="1 placeholder"):
            Query(Book).where("pages > ?")

    def test_question_mark_inside_literal_is_not_a_placeholder(self) -> None:
        compiled = Query(Book).where("title = 'Why?'").compile()
        assert compiled.params == ()

    def test_where_not(self) -> None:
        compiled = Query(Book).where_not(title="Dune", pages=None).compile()
        assert compiled.sql == "SELECT * FROM books WHERE title != ? AND pages IS NOT NULL"

    def test_unknown_column(self) -> None:
        with pytest.raises(InvalidQueryError, match="Unknown column 'nope'"):
            Query(Book).where(nope=1)

    def test_belongs_to_name_filters_on_foreign_key(self) -> None:
        author = Author.hydrate({"id": 7, "name": "Someone"})
        compiled = Query(Book).where(author=author).compile()
        assert compiled.sql == "SELECT * FROM books WHERE author_id = ?"
        assert compiled.params == (7,)

    def test_subquery_condition(self) -> None:
        authors = Query(Author).where(country="US").select("id")
        compiled = Query(Book).where(author_id=authors).compile()
        assert compiled.sql == (
            "SELECT * FROM books WHERE author_id IN (SELECT id FROM authors WHERE country = ?)"
        )
        assert compiled.params == ("US",)

    def test_operator_helpers(self) -> None:
        query = (
            Query(Book)
            .where_like("title", "The %")
            .where_between("pages", 100, 300)
            .where_gte("price", 5.0)
            .where_lte("price", 20.0)
            .where_not_null("author_id")
            .where_not_in("id", [4, 5])
        )
        assert sql_of(query) == (
            "SELECT * FROM books WHERE title LIKE ? AND pages BETWEEN ? AND ? AND price >= ? "
            "AND price <= ? AND author_id IS NOT NULL AND id NOT IN (?, ?)"
        )
        assert query.compile().params == ("The %", 100, 300, 5.0, 20.0, 4, 5)

    def test_params_follow_predicate_order(self) -> None:
        compiled = Query(Book).where("pages > ?", 10).where(title="A").where("price < ?", 3.0).compile()
        assert compiled.params == (10, "A", 3.0)


class TestJoins:
    def test_belongs_to_join_qualifies_columns(self) -> None:
        query = Query(Book).joins("author").where(title="Dune")
        assert sql_of(query) == (
            "SELECT books.* FROM books INNER JOIN authors ON authors.id = books.author_id "
            "WHERE books.title = ?"
        )

    def test_nested_conditions_on_joined_association(self) -> None:
        compiled = Query(Book).joins("author").where(author={"country": "US"}).compile()
        assert compiled.sql.endswith("WHERE authors.country = ?")
        assert compiled.params == ("US",)

    def test_has_many_join(self) -> None:
        assert sql_of(Query(Book).joins("reviews")) == (
            "SELECT books.* FROM books INNER JOIN reviews ON reviews.book_id = books.id"
        )

    def test_join_table_association(self) -> None:
        assert sql_of(Query(Book).joins("tags")) == (
            "SELECT books.* FROM books "
            "INNER JOIN books_tags ON books_tags.book_id = books.id "
            "INNER JOIN tags ON tags.id = books_tags.tag_id"
        )

    def test_through_association_join(self) -> None:
        assert sql_of(Query(Author).joins("reviews")) == (
            "SELECT authors.* FROM authors "
            "INNER JOIN books ON books.author_id = authors.id "
            "INNER JOIN reviews ON reviews.book_id = books.id"
        )

    def test_left_joins(self) -> None:
        assert sql_of(Query(Author).left_joins("books")) == (
            "SELECT authors.* FROM authors LEFT OUTER JOIN books ON books.author_id = authors.id"
        )

    def test_same_association_joined_once(self) -> None:
        query = Query(Book).joins("author").joins("author")
        assert len(query.spec.joins) == 1

    def test_table_already_joined_gets_alias(self) -> None:
        query = Query(Book).joins("INNER JOIN authors ON authors.id = books.author_id").joins("author")
        assert sql_of(query).endswith(
            "INNER JOIN authors authors_2 ON authors_2.id = books.author_id"
        )

    def test_unknown_association(self) -> None:
        with pytest.raises(AssociationConfigurationError, match="no such association"):
            Query(Book).left_joins("publisher")


class TestOrderingAndPaging:
    def test_order_appends(self) -> None:
        query = Query(Book).order("title").order(pages="desc")
        assert sql_of(query) == "SELECT * FROM books ORDER BY title ASC, pages DESC"

    def test_reorder_replaces(self) -> None:
        query = Query(Book).order("title").reorder("id DESC")
        assert sql_of(query) == "SELECT * FROM books ORDER BY id DESC"

    def test_reverse_order_defaults_to_primary_key(self) -> None:
        assert sql_of(Query(Book).reverse_order()) == "SELECT * FROM books ORDER BY id DESC"

    def test_reverse_order_of_expression(self) -> None:
        query = Query(Book).order("LENGTH(title)").reverse_order()
        assert sql_of(query) == "SELECT * FROM books ORDER BY LENGTH(title) DESC"

    def test_invalid_direction(self) -> None:
        with pytest.raises(InvalidQueryError, match="Invalid sort direction"):
            Query(Book).order(title="sideways")

    def test_limit_offset(self) -> None:
        query = Query(Book).order(title="desc").limit(5).offset(10)
        assert sql_of(query) == "SELECT * FROM books ORDER BY title DESC LIMIT 5 OFFSET 10"

    def test_page(self) -> None:
        assert sql_of(Query(Book).page(3, per_page=10)) == "SELECT * FROM books LIMIT 10 OFFSET 20"

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(InvalidQueryError, match="limit must be a non-negative integer"):
            Query(Book).limit(-1)

    def test_offset_without_limit_on_sqlite(self) -> None:
        compiled = Query(Book).offset(5).compile(SqliteDialect())
        assert compiled.sql == "SELECT * FROM books LIMIT -1 OFFSET 5"


class TestProjectionAndGrouping:
    def test_select_distinct(self) -> None:
        assert sql_of(Query(Book).select("id", "title").distinct()) == (
            "SELECT DISTINCT id, title FROM books"
        )

    def test_group_having(self) -> None:
        query = Query(Book).select("author_id", "COUNT(*) AS n").group("author_id").having("COUNT(*) > ?", 1)
        compiled = query.compile()
        assert compiled.sql == (
            "SELECT author_id, COUNT(*) AS n FROM books GROUP BY author_id HAVING (COUNT(*) > ?)"
        )
        assert compiled.params == (1,)

    def test_ungrouped_column_rejected(self) -> None:
        query = Query(Book).select("title").group("author_id")
        with pytest.raises(InvalidQueryError, match="must appear in the GROUP BY clause"):
            query.compile()


class TestLocking:
    def test_default_lock_clause(self) -> None:
        compiled = Query(Book).where(id=1).lock().compile(PostgresqlDialect())
        assert compiled.sql == "SELECT * FROM books WHERE id = ? FOR UPDATE"

    def test_lock_follows_order_and_limit(self) -> None:
        compiled = Query(Book).order("id").limit(1).lock().compile(PostgresqlDialect())
        assert compiled.sql == "SELECT * FROM books ORDER BY id ASC LIMIT 1 FOR UPDATE"

    def test_custom_lock_clause(self) -> None:
        compiled = Query(Book).lock("FOR SHARE NOWAIT").compile(PostgresqlDialect())
        assert compiled.sql == "SELECT * FROM books FOR SHARE NOWAIT"

    def test_lock_false_clears(self) -> None:
        compiled = Query(Book).lock().lock(False).compile(PostgresqlDialect())
        assert compiled.sql == "SELECT * FROM books"

    def test_sqlite_has_no_row_locks(self) -> None:
        assert Query(Book).lock().compile(SqliteDialect()).sql == "SELECT * FROM books"


class TestMerge:
    def test_predicates_replaced_wholesale(self) -> None:
        merged = Query(Book).where(out_of_print=False).merge(Query(Book).where(out_of_print=True))
        compiled = merged.compile()
        assert compiled.sql == "SELECT * FROM books WHERE out_of_print = ?"
        assert compiled.params == (True,)

    def test_empty_other_is_noop(self) -> None:
        base = Query(Book).where(title="Dune").order("title").limit(3)
        assert base.merge(Query(Book)).compile() == base.compile()

    def test_scalars_override_when_set(self) -> None:
        base = Query(Book).order("title").limit(5).offset(2)
        merged = base.merge(Query(Book).order("pages"))
        assert sql_of(merged) == "SELECT * FROM books ORDER BY pages ASC LIMIT 5 OFFSET 2"

    def test_joins_accumulate(self) -> None:
        merged = Query(Book).joins("author").merge(Query(Book).joins("author").joins("reviews"))
        assert [j.association for j in merged.spec.joins] == ["author", "reviews"]

    def test_eager_specs_replaced(self) -> None:
        merged = Query(Book).includes("author").merge(Query(Book).preload("reviews"))
        assert [(e.association, e.strategy) for e in merged.spec.eager] == [
            ("reviews", LoadStrategy.PRELOAD)
        ]

    def test_different_record_types(self) -> None:
        with pytest.raises(InvalidQueryError, match="Cannot merge"):
            Query(Book).merge(Query(Author))

    def test_accepts_spec(self) -> None:
        other = Query(Book).limit(1).spec
        assert Query(Book).merge(other).spec.limit == 1


class TestScopes:
    def test_scopes_chain(self) -> None:
        compiled = Query(Book).in_print().longer_than(200).compile()
        assert compiled.sql == "SELECT * FROM books WHERE out_of_print = ? AND pages > ?"
        assert compiled.params == (False, 200)

    def test_scope_must_return_query(self) -> None:
        class ScopedWidget(Record):
            __table__ = "scoped_widgets"

            id = Column(int, primary_key=True)

            @scope
            def broken(query):
                return "not a query"

        with pytest.raises(InvalidQueryError, match="must return a Query"):
            Query(ScopedWidget).broken()

    def test_unknown_attribute(self) -> None:
        with pytest.raises(AttributeError):
            Query(Book).no_such_scope()


class TestEagerSpecs:
    def test_last_strategy_wins_per_association(self) -> None:
        query = Query(Book).includes("author", "reviews").eager_load("author")
        assert [(e.association, e.strategy) for e in query.spec.eager] == [
            ("reviews", LoadStrategy.INCLUDES),
            ("author", LoadStrategy.EAGER_LOAD),
        ]

    def test_unknown_association(self) -> None:
        with pytest.raises(AssociationConfigurationError):
            Query(Book).includes("publisher")

    def test_references(self) -> None:
        query = Query(Author).includes("books").references("books")
        assert query.spec.references == frozenset({"books"})


class TestExecutionGuards:
    def test_unbound_query_cannot_execute(self) -> None:
        with pytest.raises(InvalidQueryError, match="not bound to a session"):
            Query(Book).to_list()

    def test_native_placeholders(self) -> None:
        compiled = Query(Book).where(title="x", pages=3).compile()
        assert compiled.native("format") == "SELECT * FROM books WHERE title = %s AND pages = %s"
        assert compiled.native("numeric") == "SELECT * FROM books WHERE title = :1 AND pages = :2"
        assert compiled.native("qmark") == compiled.sql
