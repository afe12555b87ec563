"""Lifecycle hooks.

Hooks are ordinary methods marked with ``@hook(Phase.X)``. Every record
type keeps an ordered list per phase, base classes first, in declaration
order. A hook may mutate the record; an exception aborts the operation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

Condition = Callable[[Any], bool] | str | None


class Phase(Enum):
    BEFORE_VALIDATION = "before_validation"
    AFTER_VALIDATION = "after_validation"
    BEFORE_SAVE = "before_save"
    AFTER_SAVE = "after_save"
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DESTROY = "before_destroy"
    AFTER_DESTROY = "after_destroy"


@dataclass(frozen=True)
class HookSpec:
    phase: Phase
    method_name: str
    if_: Condition = None
    unless: Condition = None

    def applies_to(self, record: Any) -> bool:
        if self.if_ is not None and not _evaluate(self.if_, record):
            return False
        if self.unless is not None and _evaluate(self.unless, record):
            return False
        return True


def _evaluate(condition: Callable[[Any], bool] | str, record: Any) -> bool:
    if isinstance(condition, str):
        return bool(getattr(record, condition)())
    return bool(condition(record))


def hook(
    *phases: Phase,
    if_: Condition = None,
    unless: Condition = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Register the decorated method for one or more lifecycle phases.

    ``if_`` / ``unless`` take a predicate on the record or the name of a
    method returning a bool.

    Example::

        class Book(Record):
            @hook(Phase.BEFORE_SAVE, unless="is_draft")
            def normalize_title(self) -> None:
                self.title = self.title.strip()
    """
    if not phases:
        raise TypeError("hook() needs at least one Phase")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        specs = list(getattr(func, "__row_orm_hooks__", ()))
        specs.extend(HookSpec(phase, func.__name__, if_, unless) for phase in phases)
        func.__row_orm_hooks__ = specs  # type: ignore[attr-defined]
        return func

    return decorator


def collect_hooks(cls: type) -> dict[Phase, list[HookSpec]]:
    """Gather hook specs from *cls* and its bases.

    A subclass redefining a hooked method replaces the base's entry in
    place, so ordering follows the first declaration.
    """
    by_name: dict[str, list[HookSpec]] = {}
    for klass in reversed(cls.__mro__):
        for attr_name, value in vars(klass).items():
            specs = getattr(value, "__row_orm_hooks__", None)
            if specs:
                by_name[attr_name] = list(specs)
            elif attr_name in by_name and callable(value):
                # overridden without the decorator: no longer a hook
                del by_name[attr_name]

    result: dict[Phase, list[HookSpec]] = {phase: [] for phase in Phase}
    for specs in by_name.values():
        for spec in specs:
            result[spec.phase].append(spec)
    return result


def run_callbacks(phase: Phase, record: Any) -> None:
    """Invoke every applicable hook of *phase* on *record*, in order."""
    for spec in type(record).__hooks__[phase]:
        if spec.applies_to(record):
            getattr(record, spec.method_name)()
