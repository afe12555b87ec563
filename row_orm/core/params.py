"""Positional parameter handling.

Builders write every fragment with ``?`` placeholders. At compile time the
placeholders are rewritten to the driver's marker (``?``, ``%s``, ``:1``).
String literals are never touched.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from row_orm.core.exceptions import InvalidQueryError

# Matches single-quoted string literals (with '' and backslash escapes)
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^'\\]|''|\\.)*'")


def _split_literals(sql: str) -> list[tuple[bool, str]]:
    """Split *sql* into ``(is_literal, text)`` segments."""
    parts: list[tuple[bool, str]] = []
    last_end = 0
    for match in _STRING_LITERAL_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            parts.append((False, sql[last_end:start]))
        parts.append((True, match.group()))
        last_end = end
    if last_end < len(sql):
        parts.append((False, sql[last_end:]))
    return parts


@lru_cache(maxsize=512)
def count_placeholders(fragment: str) -> int:
    """Number of ``?`` placeholders outside string literals."""
    return sum(text.count("?") for is_literal, text in _split_literals(fragment) if not is_literal)


def check_fragment(fragment: str, params: tuple[Any, ...]) -> None:
    """Raise InvalidQueryError unless placeholders match params 1:1."""
    expected = count_placeholders(fragment)
    if expected != len(params):
        raise InvalidQueryError(
            f"Fragment {fragment!r} has {expected} placeholder(s) but "
            f"{len(params)} parameter(s) were given"
        )


@lru_cache(maxsize=256)
def rewrite_placeholders(sql: str, paramstyle: str) -> str:
    """Convert ``?`` placeholders to the target param style.

    Args:
        sql: SQL with ``?`` placeholders.
        paramstyle: 'qmark' (no conversion), 'format' (``%s``, literal ``%``
            doubled) or 'numeric' (``:1``, ``:2``...).
    """
    if paramstyle == "qmark":
        return sql

    counter = 0
    out: list[str] = []
    for is_literal, text in _split_literals(sql):
        if paramstyle == "format":
            text = text.replace("%", "%%")
        if is_literal:
            out.append(text)
            continue
        pieces = text.split("?")
        rebuilt = [pieces[0]]
        for piece in pieces[1:]:
            counter += 1
            rebuilt.append("%s" if paramstyle == "format" else f":{counter}")
            rebuilt.append(piece)
        out.append("".join(rebuilt))
    return "".join(out)


def coerce_params(params: Any) -> tuple[Any, ...]:
    """Normalize *params* to a tuple for positional binding.

    * ``None`` -> empty tuple.
    * ``tuple`` / ``list`` -> tuple.
    * Any other scalar -> single-element tuple.
    """
    if params is None:
        return ()
    if isinstance(params, (tuple, list)):
        return tuple(params)
    return (params,)
