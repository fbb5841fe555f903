"""Operator translation shared by every backend, plus in-process evaluation."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Generic, Literal, Sequence, TypeVar

from prepmint.core.errors import ConfigurationError
from prepmint.models.entities import Record
from prepmint.store.query import CollectionQuery, FilterSpec, Operator

T = TypeVar("T")

SearchMode = Literal["substring", "prefix"]

_METHODS: dict[Operator, str] = {
    Operator.EQ: "eq",
    Operator.NEQ: "neq",
    Operator.GT: "gt",
    Operator.GTE: "gte",
    Operator.LT: "lt",
    Operator.LTE: "lte",
    Operator.IN: "in_",
    Operator.CONTAINS: "contains",
    Operator.LIKE: "like",
    Operator.ILIKE: "ilike",
    Operator.IS: "is_",
}


class OperatorTranslator(ABC, Generic[T]):
    """Turns one ``FilterSpec`` into a backend-native query fragment.

    ``target`` is whatever the backend accumulates filters into: a SQL clause
    list, a PostgREST request builder, a Firestore query. Each method returns
    the new target. Backends that cannot express an operator raise
    ``ConfigurationError`` so the caller learns before any network call.
    """

    backend_name = "abstract"

    def apply(self, target: T, spec: FilterSpec) -> T:
        method = getattr(self, _METHODS[spec.operator])
        return method(target, spec.field, spec.value)

    def apply_all(self, target: T, specs: Sequence[FilterSpec]) -> T:
        for spec in specs:
            target = self.apply(target, spec)
        return target

    def unsupported(self, operator: str) -> ConfigurationError:
        return ConfigurationError(f"Operator {operator!r} is not supported by the {self.backend_name} backend")

    @abstractmethod
    def eq(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def neq(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def gt(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def gte(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def lt(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def lte(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def in_(self, target: T, field: str, value: Any) -> T: ...

    @abstractmethod
    def contains(self, target: T, field: str, value: Any) -> T: ...

    def like(self, target: T, field: str, value: Any) -> T:
        raise self.unsupported("like")

    def ilike(self, target: T, field: str, value: Any) -> T:
        raise self.unsupported("ilike")

    def is_(self, target: T, field: str, value: Any) -> T:
        return self.eq(target, field, value)


Predicate = Callable[[Record], bool]


class PredicateOperators(OperatorTranslator[list[Predicate]]):
    """In-process translation used to re-check pushed records against a query."""

    backend_name = "in-process"

    def _add(self, target: list[Predicate], predicate: Predicate) -> list[Predicate]:
        return [*target, predicate]

    def eq(self, target, field, value):
        return self._add(target, lambda r: _normalise(r.get(field)) == _normalise(value))

    def neq(self, target, field, value):
        return self._add(
            target,
            lambda r: r.get(field) is not None and _normalise(r.get(field)) != _normalise(value),
        )

    def gt(self, target, field, value):
        return self._add(target, lambda r: _compare(r.get(field), value, lambda a, b: a > b))

    def gte(self, target, field, value):
        return self._add(target, lambda r: _compare(r.get(field), value, lambda a, b: a >= b))

    def lt(self, target, field, value):
        return self._add(target, lambda r: _compare(r.get(field), value, lambda a, b: a < b))

    def lte(self, target, field, value):
        return self._add(target, lambda r: _compare(r.get(field), value, lambda a, b: a <= b))

    def in_(self, target, field, value):
        options = [_normalise(item) for item in value]
        return self._add(target, lambda r: _normalise(r.get(field)) in options)

    def contains(self, target, field, value):
        def predicate(record: Record) -> bool:
            current = record.get(field)
            if isinstance(current, (list, tuple)):
                return value in current
            if isinstance(current, str) and isinstance(value, str):
                return value in current
            return False

        return self._add(target, predicate)

    def like(self, target, field, value):
        pattern = _like_to_regex(value, ignore_case=False)
        return self._add(target, lambda r: isinstance(r.get(field), str) and bool(pattern.match(r.get(field))))

    def ilike(self, target, field, value):
        pattern = _like_to_regex(value, ignore_case=True)
        return self._add(target, lambda r: isinstance(r.get(field), str) and bool(pattern.match(r.get(field))))

    def is_(self, target, field, value):
        return self._add(target, lambda r: r.get(field) is value or r.get(field) == value)


_PREDICATES = PredicateOperators()


def matches_filters(record: Record, filters: Sequence[FilterSpec]) -> bool:
    return all(predicate(record) for predicate in _PREDICATES.apply_all([], filters))


def matches_search(record: Record, term: str, fields: Sequence[str], mode: SearchMode = "substring") -> bool:
    """Case-insensitive match of ``term`` against any of ``fields``."""
    needle = term.casefold()
    for name in fields:
        value = record.get(name)
        if value is None:
            continue
        haystack = str(value).casefold()
        if mode == "prefix" and haystack.startswith(needle):
            return True
        if mode == "substring" and needle in haystack:
            return True
    return False


def matches_query(record: Record, query: CollectionQuery, mode: SearchMode = "substring") -> bool:
    if not matches_filters(record, query.filters):
        return False
    if query.searching:
        return matches_search(record, query.search_term or "", query.search_fields, mode)
    return True


def sort_key(record: Record, field: str) -> tuple[int, Any]:
    """Total ordering over mixed values; ``None`` sorts first like SQL ``ASC``."""
    value = record.get(field)
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, datetime):
        return (2, value.timestamp())
    return (3, str(value))


def insertion_index(items: Sequence[Record], record: Record, field: str, direction: str) -> int:
    """Position that keeps ``items`` ordered; ties go after existing entries."""
    key = sort_key(record, field)
    for index, existing in enumerate(items):
        other = sort_key(existing, field)
        if (direction == "asc" and key < other) or (direction == "desc" and key > other):
            return index
    return len(items)


def _normalise(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.timestamp()
    return value


def _compare(left: Any, right: Any, op: Callable[[Any, Any], bool]) -> bool:
    if left is None or right is None:
        return False
    left, right = _normalise(left), _normalise(right)
    try:
        return op(left, right)
    except TypeError:
        return False


def _like_to_regex(pattern: str, *, ignore_case: bool) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile("^" + "".join(parts) + "$", flags)


__all__ = [
    "OperatorTranslator",
    "PredicateOperators",
    "SearchMode",
    "matches_filters",
    "matches_search",
    "matches_query",
    "sort_key",
    "insertion_index",
]
