"""Cloud Firestore backend."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import And, FieldFilter, Or

from prepmint.core.errors import (
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    PrepMintError,
    TransientError,
    ValidationError,
)
from prepmint.core.logging import get_logger
from prepmint.models.entities import Record, RecordPage
from prepmint.store.backends.base import Backend, ChangeCallback, ChangeEvent, ChangeType, Subscription
from prepmint.store.operators import OperatorTranslator
from prepmint.store.query import CollectionQuery
from prepmint.utils.time import parse_timestamp, utc_now

logger = get_logger(__name__)

R = TypeVar("R")

# Firestore documents use camelCase timestamps.
_FIELD_ALIASES = {"created_at": "createdAt", "updated_at": "updatedAt"}
_PREFIX_SENTINEL = "\uf8ff"
_CHANGE_TYPES = {
    "ADDED": ChangeType.INSERT,
    "MODIFIED": ChangeType.UPDATE,
    "REMOVED": ChangeType.DELETE,
}

DEFAULT_SEARCHABLE_FIELDS: dict[str, tuple[str, ...]] = {
    "users": ("name", "displayName", "email"),
    "institutions": ("name",),
    "tests": ("title",),
}


def firestore_field(field: str) -> str:
    return _FIELD_ALIASES.get(field, field)


class FirestoreOperators(OperatorTranslator[Any]):
    backend_name = "firestore"

    def _where(self, target, field, op, value):
        return target.where(filter=FieldFilter(firestore_field(field), op, value))

    def eq(self, target, field, value):
        return self._where(target, field, "==", value)

    def neq(self, target, field, value):
        return self._where(target, field, "!=", value)

    def gt(self, target, field, value):
        return self._where(target, field, ">", value)

    def gte(self, target, field, value):
        return self._where(target, field, ">=", value)

    def lt(self, target, field, value):
        return self._where(target, field, "<", value)

    def lte(self, target, field, value):
        return self._where(target, field, "<=", value)

    def in_(self, target, field, value):
        values = list(value)
        if len(values) > 30:
            raise ConfigurationError(f"Firestore 'in' filters accept at most 30 values, got {len(values)}")
        return self._where(target, field, "in", values)

    def contains(self, target, field, value):
        return self._where(target, field, "array-contains", value)


def prefix_search_filter(term: str, fields: Sequence[str]) -> Any:
    """Case-insensitive prefix match over lower-cased ``<field>_lower`` shadows."""
    needle = term.lower()
    ranges = [
        And(
            filters=[
                FieldFilter(f"{field}_lower", ">=", needle),
                FieldFilter(f"{field}_lower", "<=", needle + _PREFIX_SENTINEL),
            ]
        )
        for field in fields
    ]
    return ranges[0] if len(ranges) == 1 else Or(filters=ranges)


class FirestoreBackend(Backend):
    """Document-store backend, one collection per source.

    Pagination is keyset based (``start_after`` the last document of the
    previous page) and the store cannot count cheaply, so ``has_more`` is the
    "page came back full" heuristic and over-reports on exact multiples of
    the page size. Search is prefix-only on shadow fields maintained for the
    configured searchable fields.
    """

    name = "firestore"
    search_mode = "prefix"
    supports_realtime = True
    exact_count = False

    def __init__(
        self,
        client: Any,
        required_fields: Mapping[str, Sequence[str]] | None = None,
        searchable_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        super().__init__(required_fields)
        self.client = client
        self.operators = FirestoreOperators()
        self.searchable_fields = {
            source: tuple(fields) for source, fields in (searchable_fields or DEFAULT_SEARCHABLE_FIELDS).items()
        }

    @classmethod
    def from_credentials(
        cls,
        credentials_path: Path | None,
        required_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> "FirestoreBackend":
        if not firebase_admin._apps:
            if credentials_path is not None:
                firebase_admin.initialize_app(credentials.Certificate(str(credentials_path)))
            else:
                firebase_admin.initialize_app()
        return cls(firestore.client(), required_fields=required_fields)

    async def select(self, query: CollectionQuery) -> RecordPage:
        source = query.source_name

        def _run() -> list[Any]:
            collection = self.client.collection(source)
            builder = self.operators.apply_all(collection, query.filters)
            if query.searching:
                builder = builder.where(filter=prefix_search_filter(query.search_term or "", query.search_fields))
            direction = firestore.Query.ASCENDING if query.order_direction == "asc" else firestore.Query.DESCENDING
            builder = builder.order_by(firestore_field(query.order_by_field), direction=direction)
            if query.cursor:
                anchor = collection.document(query.cursor).get()
                if not anchor.exists:
                    raise NotFoundError(f"Cursor {query.cursor!r} no longer exists in {source}", source=source)
                builder = builder.start_after(anchor)
            return list(builder.limit(query.page_size).stream())

        snapshots = await self._call(source, _run)
        items = [self._to_record(source, snapshot) for snapshot in snapshots]
        has_more = len(items) == query.page_size
        return RecordPage(
            items=items,
            has_more=has_more,
            next_cursor=items[-1].id if has_more and items else None,
            total=None,
        )

    async def get(self, source: str, record_id: str) -> Record:
        snapshot = await self._call(source, lambda: self.client.collection(source).document(record_id).get())
        if not snapshot.exists:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
        return self._to_record(source, snapshot)

    async def insert(self, source: str, fields: Mapping[str, Any]) -> Record:
        self.check_required(source, fields)
        now = utc_now()
        payload = self._with_shadows(source, self.clean_fields(fields))
        payload.update({"createdAt": now, "updatedAt": now})

        def _run() -> Any:
            collection = self.client.collection(source)
            ref = collection.document(str(fields["id"])) if fields.get("id") else collection.document()
            ref.set(payload)
            return ref

        ref = await self._call(source, _run)
        logger.info("Inserted %s/%s", source, ref.id)
        return Record(id=ref.id, fields=self._strip_shadows(source, payload), created_at=now, updated_at=now)

    async def update(self, source: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        payload = self._with_shadows(source, self.clean_fields(fields))
        payload["updatedAt"] = utc_now()

        def _run() -> Any:
            ref = self.client.collection(source).document(record_id)
            ref.update(payload)
            return ref.get()

        snapshot = await self._call(source, _run, record_id=record_id)
        return self._to_record(source, snapshot)

    async def delete(self, source: str, record_id: str) -> None:
        def _run() -> None:
            ref = self.client.collection(source).document(record_id)
            if not ref.get().exists:
                raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id)
            ref.delete()

        await self._call(source, _run, record_id=record_id)

    def subscribe(self, source: str, callback: ChangeCallback) -> Subscription:
        """Forward ``on_snapshot`` changes onto the running event loop.

        Firestore invokes the listener on its own thread; events are handed
        to the loop with ``call_soon_threadsafe`` so they are applied in the
        order the backend delivered them.
        """
        loop = asyncio.get_running_loop()

        def _on_snapshot(_snapshot: Any, changes: Sequence[Any], _read_time: Any) -> None:
            for change in changes:
                change_type = _CHANGE_TYPES.get(change.type.name)
                if change_type is None:
                    continue
                document = change.document
                record = None if change_type is ChangeType.DELETE else self._to_record(source, document)
                loop.call_soon_threadsafe(callback, ChangeEvent(change_type, source, document.id, record))

        watch = self.client.collection(source).on_snapshot(_on_snapshot)
        logger.debug("Listening to %s snapshots", source)
        return Subscription(source, watch.unsubscribe)

    # Internal helpers -------------------------------------------------

    async def _call(self, source: str, func: Callable[[], R], record_id: str | None = None) -> R:
        try:
            return await asyncio.to_thread(func)
        except PrepMintError:
            raise
        except google_exceptions.NotFound as exc:
            raise NotFoundError(f"{source}/{record_id} not found", source=source, record_id=record_id) from exc
        except google_exceptions.PermissionDenied as exc:
            raise PermissionDeniedError(exc.message or str(exc), source=source, record_id=record_id) from exc
        except google_exceptions.InvalidArgument as exc:
            raise ValidationError(exc.message or str(exc), source=source, record_id=record_id) from exc
        except google_exceptions.FailedPrecondition as exc:
            # Usually a missing composite index for the requested filter/order.
            raise ConfigurationError(exc.message or str(exc), source=source) from exc
        except google_exceptions.GoogleAPICallError as exc:
            raise TransientError(exc.message or str(exc), source=source, record_id=record_id) from exc

    def _with_shadows(self, source: str, fields: dict[str, Any]) -> dict[str, Any]:
        for name in self.searchable_fields.get(source, ()):
            value = fields.get(name)
            if isinstance(value, str):
                fields[f"{name}_lower"] = value.lower()
        return fields

    def _strip_shadows(self, source: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        shadows = {f"{name}_lower" for name in self.searchable_fields.get(source, ())}
        return {
            key: value
            for key, value in fields.items()
            if key not in shadows and key not in ("createdAt", "updatedAt")
        }

    def _to_record(self, source: str, snapshot: Any) -> Record:
        data = snapshot.to_dict() or {}
        created_at = parse_timestamp(data.get("createdAt")) or utc_now()
        updated_at = parse_timestamp(data.get("updatedAt"))
        return Record(
            id=snapshot.id,
            fields=self._strip_shadows(source, data),
            created_at=created_at,
            updated_at=updated_at,
        )


__all__ = ["FirestoreBackend", "FirestoreOperators", "prefix_search_filter", "firestore_field"]
