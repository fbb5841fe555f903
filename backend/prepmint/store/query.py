"""Collection query description and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, Literal, Mapping, Sequence

import orjson

from prepmint.core.errors import ConfigurationError

SortDirection = Literal["asc", "desc"]

FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    LIKE = "like"
    ILIKE = "ilike"
    IS = "is"


@dataclass(frozen=True, slots=True)
class FilterSpec:
    field: str
    operator: Operator
    value: Any = None

    @classmethod
    def parse(cls, raw: "FilterSpec | Mapping[str, Any] | Sequence[Any]") -> "FilterSpec":
        """Accept a FilterSpec, ``{"field"|"column", "operator", "value"}`` or a 3-tuple."""
        if isinstance(raw, FilterSpec):
            field_name, operator, value = raw.field, raw.operator, raw.value
        elif isinstance(raw, Mapping):
            field_name = raw.get("field") or raw.get("column")
            operator = raw.get("operator")
            value = raw.get("value")
        elif isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 3:
            field_name, operator, value = raw
        else:
            raise ConfigurationError(f"Unrecognised filter: {raw!r}")
        try:
            op = Operator(operator)
        except ValueError:
            raise ConfigurationError(f"Unknown filter operator: {operator!r}") from None
        spec = cls(field=str(field_name or ""), operator=op, value=value)
        spec.validate()
        return spec

    def validate(self) -> None:
        _check_field_name(self.field, "filter field")
        if self.operator is Operator.IN and (
            isinstance(self.value, (str, bytes)) or not isinstance(self.value, Iterable)
        ):
            raise ConfigurationError(f"Operator 'in' on {self.field!r} needs a list value")
        if self.operator in (Operator.LIKE, Operator.ILIKE) and not isinstance(self.value, str):
            raise ConfigurationError(f"Operator {self.operator.value!r} on {self.field!r} needs a string pattern")


@dataclass(frozen=True, slots=True)
class CollectionQuery:
    """Which page of which source to fetch."""

    source_name: str
    page_size: int = 20
    order_by_field: str = "created_at"
    order_direction: SortDirection = "desc"
    filters: tuple[FilterSpec, ...] = ()
    search_term: str | None = None
    search_fields: tuple[str, ...] = ()
    cursor: str | None = None

    def validate(self) -> "CollectionQuery":
        if not self.source_name or not FIELD_NAME_RE.match(self.source_name):
            raise ConfigurationError(f"Invalid source name: {self.source_name!r}")
        if not isinstance(self.page_size, int) or isinstance(self.page_size, bool) or self.page_size <= 0:
            raise ConfigurationError(f"page_size must be a positive integer, got {self.page_size!r}")
        if self.order_direction not in ("asc", "desc"):
            raise ConfigurationError(f"order_direction must be 'asc' or 'desc', got {self.order_direction!r}")
        _check_field_name(self.order_by_field, "order_by_field")
        for spec in self.filters:
            if not isinstance(spec, FilterSpec):
                raise ConfigurationError(f"Unrecognised filter: {spec!r}")
            spec.validate()
        if self.search_term:
            if not self.search_fields:
                raise ConfigurationError("search_term given without search_fields")
            for name in self.search_fields:
                _check_field_name(name, "search field")
        return self

    @property
    def searching(self) -> bool:
        return bool(self.search_term and self.search_fields)

    @property
    def offset(self) -> int:
        """Decode an offset cursor; used by count-aware backends."""
        return decode_offset(self.cursor)

    def first_page(self) -> "CollectionQuery":
        return replace(self, cursor=None)

    def with_cursor(self, cursor: str | None) -> "CollectionQuery":
        return replace(self, cursor=cursor)

    def with_search(self, term: str | None, fields: Sequence[str]) -> "CollectionQuery":
        term = (term or "").strip() or None
        return replace(self, search_term=term, search_fields=tuple(fields), cursor=None).validate()


def build_query(
    source_name: str,
    *,
    page_size: int = 20,
    order_by_field: str = "created_at",
    order_direction: str = "desc",
    filters: Iterable[Any] = (),
    search_term: str | None = None,
    search_fields: Sequence[str] = (),
    cursor: str | None = None,
) -> CollectionQuery:
    """Normalise loose arguments into a validated ``CollectionQuery``."""
    query = CollectionQuery(
        source_name=source_name,
        page_size=page_size,
        order_by_field=order_by_field,
        order_direction=order_direction,  # type: ignore[arg-type]
        filters=tuple(FilterSpec.parse(raw) for raw in filters),
        search_term=(search_term or "").strip() or None,
        search_fields=tuple(search_fields),
        cursor=cursor,
    )
    return query.validate()


def parse_filter_expression(expression: str) -> FilterSpec:
    """Parse ``field:operator:value`` as used by the HTTP API and CLI.

    The value is read as JSON when possible (``role:in:["student","teacher"]``,
    ``xp:gte:100``) and kept as a plain string otherwise.
    """
    parts = expression.split(":", 2)
    if len(parts) != 3:
        raise ConfigurationError(f"Filter must look like field:operator:value, got {expression!r}")
    field_name, operator, raw_value = parts
    return FilterSpec.parse((field_name, operator, _decode_value(raw_value)))


def decode_offset(cursor: str | None) -> int:
    if cursor is None:
        return 0
    try:
        offset = int(cursor)
    except ValueError:
        raise ConfigurationError(f"Invalid cursor: {cursor!r}") from None
    if offset < 0:
        raise ConfigurationError(f"Invalid cursor: {cursor!r}")
    return offset


def shift_offset_cursor(cursor: str | None, delta: int) -> str | None:
    """Move an offset cursor by ``delta`` rows, never below zero."""
    if cursor is None:
        return None
    return str(max(decode_offset(cursor) + delta, 0))


def _decode_value(raw: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw


def _check_field_name(name: str, label: str) -> None:
    if not isinstance(name, str) or not FIELD_NAME_RE.match(name):
        raise ConfigurationError(f"Invalid {label}: {name!r}")


__all__ = [
    "Operator",
    "FilterSpec",
    "CollectionQuery",
    "SortDirection",
    "build_query",
    "parse_filter_expression",
    "decode_offset",
    "shift_offset_cursor",
]
