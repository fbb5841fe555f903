"""Supabase (PostgREST) backend."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Sequence, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from prepmint.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    PrepMintError,
    TransientError,
    ValidationError,
)
from prepmint.core.logging import get_logger
from prepmint.models.entities import Record, RecordPage
from prepmint.store.backends.base import Backend
from prepmint.store.operators import OperatorTranslator
from prepmint.store.query import CollectionQuery, shift_offset_cursor
from prepmint.utils.time import parse_timestamp, utc_now

logger = get_logger(__name__)

R = TypeVar("R")

# PostgreSQL SQLSTATE classes returned in APIError.code
_VALIDATION_CODES = {"23502", "23503", "23505", "23514", "22P02"}
_PERMISSION_CODES = {"42501", "PGRST301", "PGRST302"}


class PostgrestOperators(OperatorTranslator[Any]):
    """Translate filters onto a PostgREST request builder."""

    backend_name = "supabase"

    def eq(self, target, field, value):
        if value is None:
            return target.is_(field, "null")
        return target.eq(field, value)

    def neq(self, target, field, value):
        return target.neq(field, value)

    def gt(self, target, field, value):
        return target.gt(field, value)

    def gte(self, target, field, value):
        return target.gte(field, value)

    def lt(self, target, field, value):
        return target.lt(field, value)

    def lte(self, target, field, value):
        return target.lte(field, value)

    def in_(self, target, field, value):
        return target.in_(field, list(value))

    def contains(self, target, field, value):
        return target.contains(field, value if isinstance(value, list) else [value])

    def like(self, target, field, value):
        return target.like(field, value)

    def ilike(self, target, field, value):
        return target.ilike(field, value)

    def is_(self, target, field, value):
        return target.is_(field, "null" if value is None else value)


def search_expression(term: str, fields: Sequence[str]) -> str:
    """PostgREST ``or=`` expression matching ``term`` in any of ``fields``."""
    cleaned = term.replace(",", " ").replace("(", " ").replace(")", " ").strip()
    return ",".join(f"{field}.ilike.%{cleaned}%" for field in fields)


class SupabaseBackend(Backend):
    """Relational backend over Supabase tables, one table per source.

    Every table is expected to carry ``id``, ``created_at`` and ``updated_at``
    columns. Counting is exact (``count="exact"``). The synchronous Python
    client has no realtime channel, so stores bound here refresh after
    mutations instead.
    """

    name = "supabase"
    search_mode = "substring"
    supports_realtime = False
    exact_count = True

    def __init__(
        self,
        client: Client,
        required_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        super().__init__(required_fields)
        self.client = client
        self.operators = PostgrestOperators()

    @classmethod
    def from_credentials(
        cls,
        url: str,
        key: str,
        required_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> "SupabaseBackend":
        return cls(create_client(url, key), required_fields=required_fields)

    async def select(self, query: CollectionQuery) -> RecordPage:
        start = query.offset
        end = start + query.page_size - 1

        def _run() -> Any:
            builder = self.client.table(query.source_name).select("*", count="exact")
            builder = self.operators.apply_all(builder, query.filters)
            if query.searching:
                builder = builder.or_(search_expression(query.search_term or "", query.search_fields))
            builder = builder.order(query.order_by_field, desc=query.order_direction == "desc")
            return builder.range(start, end).execute()

        response = await self._call(query.source_name, _run)
        items = [_row_to_record(row) for row in response.data or []]
        total = response.count
        next_offset = start + len(items)
        if total is not None:
            has_more = next_offset < total
        else:
            has_more = len(items) == query.page_size
        return RecordPage(
            items=items,
            has_more=has_more,
            next_cursor=str(next_offset) if has_more else None,
            total=total,
        )

    def adjust_cursor(self, cursor: str | None, delta: int, window: Sequence[Record]) -> str | None:
        return shift_offset_cursor(cursor, delta)

    async def get(self, source: str, record_id: str) -> Record:
        response = await self._call(
            source,
            lambda: self.client.table(source).select("*").eq("id", record_id).limit(1).execute(),
        )
        if not response.data:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        return _row_to_record(response.data[0])

    async def insert(self, source: str, fields: Mapping[str, Any]) -> Record:
        self.check_required(source, fields)
        payload = _jsonable(self.clean_fields(fields))
        if fields.get("id"):
            payload["id"] = str(fields["id"])
        response = await self._call(source, lambda: self.client.table(source).insert(payload).execute())
        if not response.data:
            raise TransientError(f"Insert into {source} returned no row", source=source)
        record = _row_to_record(response.data[0])
        logger.info("Inserted %s/%s", source, record.id)
        return record

    async def update(self, source: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        payload = {**_jsonable(self.clean_fields(fields)), "updated_at": utc_now().isoformat()}
        response = await self._call(
            source,
            lambda: self.client.table(source).update(payload).eq("id", record_id).execute(),
        )
        if not response.data:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        return _row_to_record(response.data[0])

    async def delete(self, source: str, record_id: str) -> None:
        response = await self._call(
            source,
            lambda: self.client.table(source).delete().eq("id", record_id).execute(),
        )
        if not response.data:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)

    async def _call(self, source: str, func: Callable[[], R]) -> R:
        try:
            return await asyncio.to_thread(func)
        except PrepMintError:
            raise
        except APIError as exc:
            raise _map_api_error(source, exc) from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"Supabase request for {source} failed: {exc}", source=source) from exc


def _map_api_error(source: str, exc: APIError) -> PrepMintError:
    code = str(exc.code or "")
    message = exc.message or str(exc)
    if code in _VALIDATION_CODES:
        return ValidationError(message, source=source)
    if code in _PERMISSION_CODES:
        return PermissionDeniedError(message, source=source)
    if code == "PGRST116":
        return NotFoundError(message, source=source)
    return TransientError(message, source=source)


def _jsonable(fields: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if hasattr(value, "isoformat"):
            out[key] = value.isoformat()
        elif isinstance(value, (set, tuple)):
            out[key] = list(value)
        else:
            out[key] = value
    return out


def _row_to_record(row: Mapping[str, Any]) -> Record:
    data = dict(row)
    record_id = str(data.pop("id"))
    created_at = parse_timestamp(data.pop("created_at", None)) or utc_now()
    updated_at = parse_timestamp(data.pop("updated_at", None))
    return Record(id=record_id, fields=data, created_at=created_at, updated_at=updated_at)


__all__ = ["SupabaseBackend", "PostgrestOperators", "search_expression"]
