"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from types import SimpleNamespace
from typing import Any

import pytest

from row_orm.core.connection import ConnectionConfig
from row_orm.core.engine import Engine
from row_orm.core.settings import OrmSettings
from row_orm.session import Session
from tests.models import SCHEMA, Author, Book, Profile, Review, Tag, User


@pytest.fixture
def sqlite_config() -> ConnectionConfig:
    """SQLite in-memory connection config (one connection, one database)."""
    return ConnectionConfig(driver="sqlite", database=":memory:", pool_size=1)


@pytest.fixture
def engine(sqlite_config: ConnectionConfig) -> Iterator[Engine]:
    eng = Engine.from_config(sqlite_config)
    with eng.connection_manager.get_connection() as conn:
        conn.executescript(SCHEMA)
    yield eng
    eng.close()


@pytest.fixture
def settings() -> OrmSettings:
    return OrmSettings()


@pytest.fixture
def session(engine: Engine, settings: OrmSettings) -> Session:
    return Session(engine, settings)


@pytest.fixture
def statements(engine: Engine) -> Iterator[list[str]]:
    """SQL of every statement the engine runs while the test is active.

    Usage:
        statements.clear()
        session.query(Author).preload("books").to_list()
        assert len(statements) == 2
    """
    recorded: list[str] = []

    def _record(sql: str, params: tuple[Any, ...]) -> None:
        recorded.append(sql)

    engine.add_listener(_record)
    yield recorded
    engine.remove_listener(_record)


@pytest.fixture
def library(session: Session) -> SimpleNamespace:
    """Seed a small catalogue.

    le_guin: earthsea (2 reviews: ana 5, ben 3, tags fantasy+classic),
             dispossessed (1 review: ana 4, tag classic)
    herbert: dune (no reviews, tag classic)
    borges:  no books
    """
    le_guin = session.create(Author, name="Ursula K. Le Guin", country="US")
    herbert = session.create(Author, name="Frank Herbert", country="US")
    borges = session.create(Author, name="Jorge Luis Borges", country="AR")

    earthsea = session.create(Book, title="A Wizard of Earthsea", author=le_guin, pages=183, price=9.5)
    dispossessed = session.create(Book, title="The Dispossessed", author=le_guin, pages=387, price=12.0)
    dune = session.create(Book, title="Dune", author=herbert, pages=412, price=15.0)

    ana = session.create(User, name="Ana")
    ben = session.create(User, name="Ben")

    session.create(Review, book=earthsea, user=ana, rating=5, body="Timeless")
    session.create(Review, book=earthsea, user=ben, rating=3, body="Slow start")
    session.create(Review, book=dispossessed, user=ana, rating=4, body="Dense")

    fantasy = session.create(Tag, name="fantasy")
    classic = session.create(Tag, name="classic")
    earthsea.tags.attach(fantasy, classic)
    dispossessed.tags.attach(classic)
    dune.tags.attach(classic)

    session.create(Profile, author=le_guin, bio="Wrote Earthsea")

    return SimpleNamespace(
        le_guin=le_guin,
        herbert=herbert,
        borges=borges,
        earthsea=earthsea,
        dispossessed=dispossessed,
        dune=dune,
        ana=ana,
        ben=ben,
        fantasy=fantasy,
        classic=classic,
    )
