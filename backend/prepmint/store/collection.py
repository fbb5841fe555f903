"""Reactive, paginated view over one backend source."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Sequence

from prepmint.core.errors import ConfigurationError, PrepMintError
from prepmint.core.logging import get_logger, log_context
from prepmint.core.metrics import STORE_FETCH_LATENCY, STORE_FETCHES, STORE_MUTATIONS
from prepmint.models.entities import Record, RecordPage
from prepmint.store.backends.base import Backend, ChangeEvent, ChangeType, Subscription
from prepmint.store.operators import insertion_index, matches_query
from prepmint.store.query import CollectionQuery, FilterSpec

logger = get_logger(__name__)


@dataclass(slots=True)
class StoreState:
    """What a bound view renders: the loaded window plus fetch status."""

    items: list[Record] = field(default_factory=list)
    loading: bool = False
    error: str | None = None
    has_more: bool = False
    cursor: str | None = None
    total: int | None = None

    @property
    def stale(self) -> bool:
        """An error is showing over previously loaded items."""
        return self.error is not None and bool(self.items)


StateListener = Callable[[StoreState], None]


@dataclass(slots=True)
class DeleteOutcome:
    record_id: str
    ok: bool
    error: str | None = None


@dataclass(slots=True)
class BulkResult:
    """Per-id outcomes of a non-atomic bulk operation."""

    outcomes: list[DeleteOutcome]

    @property
    def succeeded(self) -> list[str]:
        return [outcome.record_id for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[str]:
        return [outcome.record_id for outcome in self.outcomes if not outcome.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return f"{len(self.succeeded)} of {len(self.outcomes)} succeeded"


@dataclass(slots=True)
class _PageLoaded:
    page: RecordPage
    append: bool


class CollectionStore:
    """Bind a view to one source with paging, search, CRUD and push updates.

    The store only caches the loaded window; the backend stays the source of
    truth. Every change to ``items``, whether it comes from a fetched page,
    a local mutation or a realtime push, goes through ``_apply_change``.

    Usage::

        async with CollectionStore(backend, build_query("users"), realtime=True) as store:
            await store.search("alice", ["name", "email"])
            render(store.state)
    """

    def __init__(
        self,
        backend: Backend,
        query: CollectionQuery,
        *,
        realtime: bool = False,
        listener: StateListener | None = None,
    ) -> None:
        self.backend = backend
        self.query = query.validate()
        self.realtime = realtime
        self._listener = listener
        self._state = StoreState()
        self._alive = False
        self._generation = 0
        self._inflight = 0
        # Window size change not yet reflected in an in-flight page's cursor.
        self._pending_shift = 0
        self._subscription: Subscription | None = None

    @property
    def source(self) -> str:
        return self.query.source_name

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def items(self) -> list[Record]:
        return self._state.items

    @property
    def bound(self) -> bool:
        return self._alive

    @property
    def realtime_active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def __aenter__(self) -> "CollectionStore":
        await self.bind()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unbind()

    # Lifecycle --------------------------------------------------------

    async def bind(self) -> StoreState:
        if self._alive:
            return self._state
        self._alive = True
        if self.realtime:
            if self.backend.supports_realtime:
                self._subscription = self.backend.subscribe(self.source, self._on_push)
            else:
                logger.info(
                    "%s backend has no realtime feed; %s relies on refresh()",
                    self.backend.name,
                    self.source,
                )
        try:
            await self.refresh()
        except ConfigurationError:
            self.unbind()
            raise
        return self._state

    def unbind(self) -> None:
        """Detach the subscription and discard state; late fetch results are dropped."""
        self._alive = False
        self._generation += 1
        self._pending_shift = 0
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._state = StoreState()

    # Reads ------------------------------------------------------------

    async def refresh(self) -> None:
        self._generation += 1
        await self._fetch(self.query.first_page(), append=False)

    async def load_more(self) -> None:
        """Append the next page; a no-op while any fetch is running or at the end."""
        if not self._alive or not self._state.has_more or self._inflight:
            return
        await self._fetch(self.query.with_cursor(self._state.cursor), append=True)

    async def search(self, term: str, fields: Sequence[str]) -> None:
        self.query = self.query.with_search(term, fields)
        await self.refresh()

    async def set_filters(self, filters: Iterable[Any]) -> None:
        """Replace the active filters and reload page 1."""
        specs = tuple(FilterSpec.parse(raw) for raw in filters)
        self.query = replace(self.query, filters=specs, cursor=None).validate()
        await self.refresh()

    # Writes -----------------------------------------------------------

    async def add_document(self, fields: Mapping[str, Any]) -> str:
        """Insert a record; it shows up via the subscription or the next ``refresh()``."""
        try:
            record = await self.backend.insert(self.source, fields)
        except PrepMintError as exc:
            STORE_MUTATIONS.labels(self.source, "add", "error").inc()
            logger.error("Error adding document to %s: %s", self.source, exc.message)
            raise
        STORE_MUTATIONS.labels(self.source, "add", "ok").inc()
        logger.info("Document added to %s: %s", self.source, record.id)
        return record.id

    async def update_document(self, record_id: str, fields: Mapping[str, Any]) -> Record:
        try:
            record = await self.backend.update(self.source, record_id, fields)
        except PrepMintError as exc:
            STORE_MUTATIONS.labels(self.source, "update", "error").inc()
            logger.error("Error updating %s/%s: %s", self.source, record_id, exc.message)
            raise
        STORE_MUTATIONS.labels(self.source, "update", "ok").inc()
        logger.info("Document updated in %s: %s", self.source, record_id)
        self._apply_change(ChangeEvent(ChangeType.UPDATE, self.source, record_id, record))
        return record

    async def delete_document(self, record_id: str) -> None:
        try:
            await self.backend.delete(self.source, record_id)
        except PrepMintError as exc:
            STORE_MUTATIONS.labels(self.source, "delete", "error").inc()
            logger.error("Error deleting %s/%s: %s", self.source, record_id, exc.message)
            raise
        STORE_MUTATIONS.labels(self.source, "delete", "ok").inc()
        logger.info("Document deleted from %s: %s", self.source, record_id)
        self._apply_change(ChangeEvent(ChangeType.DELETE, self.source, record_id))

    async def bulk_delete(self, record_ids: Sequence[str]) -> BulkResult:
        """Delete ids one at a time; failures are reported per id, never raised."""
        outcomes: list[DeleteOutcome] = []
        for record_id in record_ids:
            try:
                await self.backend.delete(self.source, record_id)
            except PrepMintError as exc:
                STORE_MUTATIONS.labels(self.source, "delete", "error").inc()
                logger.warning(
                    "Bulk delete of %s/%s failed: %s",
                    self.source,
                    record_id,
                    exc.message,
                    extra=log_context(source=self.source, record_id=record_id),
                )
                outcomes.append(DeleteOutcome(record_id, ok=False, error=exc.message))
                continue
            STORE_MUTATIONS.labels(self.source, "delete", "ok").inc()
            outcomes.append(DeleteOutcome(record_id, ok=True))
            self._apply_change(ChangeEvent(ChangeType.DELETE, self.source, record_id))
        result = BulkResult(outcomes)
        logger.info("Bulk delete on %s: %s", self.source, result.summary())
        return result

    # Internal helpers -------------------------------------------------

    def _current(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    async def _fetch(self, query: CollectionQuery, *, append: bool) -> None:
        if not self._alive:
            return
        generation = self._generation
        self._inflight += 1
        if not append:
            self._pending_shift = 0
        self._update(loading=True, error=None)
        started = time.perf_counter()
        try:
            page = await self.backend.select(query)
        except ConfigurationError:
            # Malformed queries propagate to the caller.
            STORE_FETCHES.labels(self.source, "error").inc()
            raise
        except PrepMintError as exc:
            STORE_FETCHES.labels(self.source, "error").inc()
            if self._current(generation):
                logger.warning(
                    "Error fetching %s: %s", self.source, exc.message, extra=log_context(source=self.source)
                )
                self._update(error=exc.message)
            return
        finally:
            self._inflight -= 1
            STORE_FETCH_LATENCY.labels(self.source).observe(time.perf_counter() - started)
            if self._alive:
                self._update(loading=self._inflight > 0)
        STORE_FETCHES.labels(self.source, "ok").inc()
        if not self._current(generation):
            logger.debug("Discarding superseded %s page", self.source)
            return
        self._apply_change(_PageLoaded(page, append))

    def _on_push(self, event: ChangeEvent) -> None:
        if not self._alive or event.source != self.source:
            return
        logger.debug("Realtime %s on %s/%s", event.type.value, event.source, event.record_id)
        self._apply_change(event)

    def _apply_change(self, change: ChangeEvent | _PageLoaded) -> None:
        """Single entry point for every mutation of ``items``.

        Pushed or locally updated records are re-checked against the active
        filters and search, then placed by the order field. A record that
        sorts past the loaded window while more pages exist is left for a
        later page. Whenever the window grows or shrinks the next-page cursor
        is moved with it, so later pages neither skip nor repeat records.
        """
        if not self._alive:
            return
        state = self._state
        if isinstance(change, _PageLoaded):
            page = change.page
            if change.append:
                known = {record.id for record in state.items}
                items = state.items + [record for record in page.items if record.id not in known]
            else:
                items = list(page.items)
            cursor = page.next_cursor
            if change.append and self._pending_shift:
                cursor = self.backend.adjust_cursor(cursor, self._pending_shift, items)
            self._pending_shift = 0
            self._update(items=items, has_more=page.has_more, cursor=cursor, total=page.total)
            return

        items = [record for record in state.items if record.id != change.record_id]
        existed = len(items) != len(state.items)
        total = state.total
        record = change.record
        entered = False
        if change.type is ChangeType.DELETE or record is None:
            if existed and total is not None:
                total -= 1
        elif not matches_query(record, self.query, self.backend.search_mode):
            if existed and total is not None:
                total -= 1
        else:
            if change.type is ChangeType.INSERT and not existed and total is not None:
                total += 1
            index = insertion_index(items, record, self.query.order_by_field, self.query.order_direction)
            if index < len(items) or not state.has_more:
                items.insert(index, record)
                entered = True
        self._update(items=items, total=total, cursor=self._shift_cursor(int(entered) - int(existed), items))

    def _shift_cursor(self, delta: int, items: Sequence[Record]) -> str | None:
        cursor = self._state.cursor
        if not delta:
            return cursor
        if self._inflight:
            self._pending_shift += delta
        return self.backend.adjust_cursor(cursor, delta, items)

    def _update(self, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(self._state, key, value)
        if self._listener is not None:
            self._listener(self._state)


__all__ = ["CollectionStore", "StoreState", "BulkResult", "DeleteOutcome", "StateListener"]
