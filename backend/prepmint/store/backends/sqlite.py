"""SQLite-backed records store with an in-process change feed."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping, Sequence

import orjson

from prepmint.core.errors import NotFoundError, PermissionDeniedError, TransientError, ValidationError
from prepmint.core.logging import get_logger
from prepmint.db.sqlite import SQLiteDatabase
from prepmint.models.entities import Record, RecordPage
from prepmint.store.backends.base import Backend, ChangeCallback, ChangeEvent, ChangeType, Subscription
from prepmint.store.operators import OperatorTranslator
from prepmint.store.query import CollectionQuery, shift_offset_cursor
from prepmint.utils.ids import new_id
from prepmint.utils.time import datetime_to_ms, ms_to_datetime, now_ms

logger = get_logger(__name__)

_META_COLUMNS = {"id": "id", "created_at": "created_at", "updated_at": "updated_at"}

Clause = tuple[str, list[Any]]


def column_expr(field: str) -> str:
    """SQL expression for a meta column or a JSON path into ``fields``.

    Field names are validated against ``FIELD_NAME_RE`` before they get here.
    """
    if field in _META_COLUMNS:
        return _META_COLUMNS[field]
    return f"json_extract(fields, '$.{field}')"


def _param(field: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return datetime_to_ms(value) if field in _META_COLUMNS else value.isoformat()
    if isinstance(value, (list, dict)):
        return orjson.dumps(value).decode("utf-8")
    return value


class SqlOperators(OperatorTranslator[list[Clause]]):
    backend_name = "sqlite"

    def _binary(self, target, field, sql_op, value):
        return [*target, (f"{column_expr(field)} {sql_op} ?", [_param(field, value)])]

    def eq(self, target, field, value):
        if value is None:
            return self.is_(target, field, None)
        return self._binary(target, field, "=", value)

    def neq(self, target, field, value):
        return self._binary(target, field, "!=", value)

    def gt(self, target, field, value):
        return self._binary(target, field, ">", value)

    def gte(self, target, field, value):
        return self._binary(target, field, ">=", value)

    def lt(self, target, field, value):
        return self._binary(target, field, "<", value)

    def lte(self, target, field, value):
        return self._binary(target, field, "<=", value)

    def in_(self, target, field, value):
        values = [_param(field, item) for item in value]
        if not values:
            return [*target, ("0", [])]
        placeholders = ",".join("?" for _ in values)
        return [*target, (f"{column_expr(field)} IN ({placeholders})", values)]

    def contains(self, target, field, value):
        path = f"$.{field}"
        clause = (
            "(CASE json_type(fields, ?) "
            "WHEN 'array' THEN EXISTS (SELECT 1 FROM json_each(fields, ?) WHERE json_each.value = ?) "
            "WHEN 'text' THEN instr(json_extract(fields, ?), ?) > 0 "
            "ELSE 0 END)"
        )
        return [*target, (clause, [path, path, _param(field, value), path, _param(field, value)])]

    def like(self, target, field, value):
        # SQLite LIKE ignores ASCII case unless case_sensitive_like is set.
        return [*target, (f"{column_expr(field)} GLOB ?", [_like_to_glob(value)])]

    def ilike(self, target, field, value):
        return [*target, (f"lower({column_expr(field)}) LIKE lower(?)", [value])]

    def is_(self, target, field, value):
        return [*target, (f"{column_expr(field)} IS ?", [_param(field, value)])]


def _like_to_glob(pattern: str) -> str:
    escaped = []
    for char in pattern:
        if char == "%":
            escaped.append("*")
        elif char == "_":
            escaped.append("?")
        elif char in "*?[":
            escaped.append(f"[{char}]")
        else:
            escaped.append(char)
    return "".join(escaped)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteBackend(Backend):
    """Relational backend over a single ``records`` table.

    Counts are exact, so ``has_more`` never over-reports. Push events are
    delivered for writes made through this instance only.
    """

    name = "sqlite"
    search_mode = "substring"
    supports_realtime = True
    exact_count = True

    def __init__(
        self,
        database: SQLiteDatabase,
        required_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        super().__init__(required_fields)
        self.db = database
        self.db.ensure_schema()
        self.operators = SqlOperators()
        self._subscribers: dict[str, dict[int, ChangeCallback]] = {}
        self._next_token = 0

    async def select(self, query: CollectionQuery) -> RecordPage:
        where_sql, params = self._where(query)
        order_expr = column_expr(query.order_by_field)
        direction = "ASC" if query.order_direction == "asc" else "DESC"
        offset = query.offset
        try:
            total_row = self.db.execute(f"SELECT COUNT(*) AS count FROM records WHERE {where_sql}", params).fetchone()
            rows = self.db.query(
                f"""
                SELECT id, fields, created_at, updated_at FROM records
                WHERE {where_sql}
                ORDER BY {order_expr} {direction}, id {direction}
                LIMIT ? OFFSET ?
                """,
                [*params, query.page_size, offset],
            )
        except sqlite3.OperationalError as exc:
            raise TransientError(f"Failed to fetch {query.source_name}: {exc}", source=query.source_name) from exc
        total = int(total_row["count"]) if total_row else 0
        items = [_row_to_record(row) for row in rows]
        next_offset = offset + len(items)
        has_more = next_offset < total
        return RecordPage(
            items=items,
            has_more=has_more,
            next_cursor=str(next_offset) if has_more else None,
            total=total,
        )

    def adjust_cursor(self, cursor: str | None, delta: int, window: Sequence[Record]) -> str | None:
        return shift_offset_cursor(cursor, delta)

    async def get(self, source: str, record_id: str) -> Record:
        row = self.db.execute(
            "SELECT id, fields, created_at, updated_at FROM records WHERE source = ? AND id = ?",
            [source, record_id],
        ).fetchone()
        if row is None:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        return _row_to_record(row)

    async def insert(self, source: str, fields: Mapping[str, Any]) -> Record:
        self.check_required(source, fields)
        record_id = str(fields.get("id") or new_id())
        payload = self.clean_fields(fields)
        now = now_ms()
        with _write_errors(source), self.db.transaction() as cursor:
            cursor.execute(
                "INSERT INTO records (source, id, fields, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                [source, record_id, _dumps(payload), now, None],
            )
        record = Record(id=record_id, fields=payload, created_at=ms_to_datetime(now), updated_at=None)
        self._publish(ChangeEvent(ChangeType.INSERT, source, record_id, record))
        return record

    async def update(self, source: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        current = await self.get(source, record_id)
        merged = {**current.fields, **self.clean_fields(fields)}
        now = now_ms()
        with _write_errors(source), self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE records SET fields = ?, updated_at = ? WHERE source = ? AND id = ?",
                [_dumps(merged), now, source, record_id],
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        record = Record(id=record_id, fields=merged, created_at=current.created_at, updated_at=ms_to_datetime(now))
        self._publish(ChangeEvent(ChangeType.UPDATE, source, record_id, record))
        return record

    async def delete(self, source: str, record_id: str) -> None:
        with _write_errors(source), self.db.transaction() as cursor:
            cursor.execute("DELETE FROM records WHERE source = ? AND id = ?", [source, record_id])
            deleted = cursor.rowcount
        if not deleted:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        self._publish(ChangeEvent(ChangeType.DELETE, source, record_id, None))

    def subscribe(self, source: str, callback: ChangeCallback) -> Subscription:
        token = self._next_token
        self._next_token += 1
        self._subscribers.setdefault(source, {})[token] = callback
        logger.debug("Subscribed to %s changes (token %s)", source, token)

        def _remove() -> None:
            self._subscribers.get(source, {}).pop(token, None)
            logger.debug("Unsubscribed from %s changes (token %s)", source, token)

        return Subscription(source, _remove)

    async def close(self) -> None:
        self._subscribers.clear()
        self.db.close()

    # Internal helpers -------------------------------------------------

    def _where(self, query: CollectionQuery) -> tuple[str, list[Any]]:
        clauses: list[Clause] = [("source = ?", [query.source_name])]
        clauses = self.operators.apply_all(clauses, query.filters)
        if query.searching:
            needle = f"%{_escape_like((query.search_term or '').lower())}%"
            ors = [f"lower(CAST({column_expr(name)} AS TEXT)) LIKE ? ESCAPE '\\'" for name in query.search_fields]
            clauses.append((f"({' OR '.join(ors)})", [needle] * len(ors)))
        sql = " AND ".join(clause for clause, _ in clauses)
        params = [param for _, clause_params in clauses for param in clause_params]
        return sql, params

    def _publish(self, event: ChangeEvent) -> None:
        for callback in list(self._subscribers.get(event.source, {}).values()):
            callback(event)


@contextmanager
def _write_errors(source: str) -> Iterator[None]:
    """Map sqlite3 write failures onto the error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise ValidationError(f"Write to {source} rejected: {exc}", source=source) from exc
    except sqlite3.OperationalError as exc:
        message = str(exc)
        if "readonly" in message:
            raise PermissionDeniedError(f"Write to {source} not permitted: {message}", source=source) from exc
        raise TransientError(f"Write to {source} failed: {message}", source=source) from exc


def _dumps(fields: Mapping[str, Any]) -> str:
    return orjson.dumps(fields, default=_json_default).decode("utf-8")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, tuple)):
        return list(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def _row_to_record(row: sqlite3.Row) -> Record:
    return Record(
        id=row["id"],
        fields=orjson.loads(row["fields"]) if row["fields"] else {},
        created_at=ms_to_datetime(row["created_at"]),
        updated_at=ms_to_datetime(row["updated_at"]),
    )


__all__ = ["SQLiteBackend", "SqlOperators", "column_expr"]
