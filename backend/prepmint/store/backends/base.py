"""Backend contract consumed by the collection store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from prepmint.core.errors import ConfigurationError, ValidationError
from prepmint.models.entities import META_FIELDS, Record, RecordPage
from prepmint.store.operators import SearchMode
from prepmint.store.query import CollectionQuery


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True)
class ChangeEvent:
    """A push notification about one record of a source."""

    type: ChangeType
    source: str
    record_id: str
    record: Record | None = None


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ``Backend.subscribe``; closing twice is a no-op."""

    def __init__(self, source: str, on_close: Callable[[], None]) -> None:
        self.source = source
        self._on_close: Callable[[], None] | None = on_close

    @property
    def active(self) -> bool:
        return self._on_close is not None

    def close(self) -> None:
        on_close, self._on_close = self._on_close, None
        if on_close is not None:
            on_close()


class Backend(ABC):
    """Async CRUD + paging over named sources (tables or collections)."""

    name = "abstract"
    search_mode: SearchMode = "substring"
    supports_realtime = False
    exact_count = False

    def __init__(self, required_fields: Mapping[str, Sequence[str]] | None = None) -> None:
        self.required_fields = {source: tuple(fields) for source, fields in (required_fields or {}).items()}

    @abstractmethod
    async def select(self, query: CollectionQuery) -> RecordPage: ...

    @abstractmethod
    async def get(self, source: str, record_id: str) -> Record: ...

    @abstractmethod
    async def insert(self, source: str, fields: Mapping[str, Any]) -> Record: ...

    @abstractmethod
    async def update(self, source: str, record_id: str, fields: Mapping[str, Any]) -> Record: ...

    @abstractmethod
    async def delete(self, source: str, record_id: str) -> None: ...

    def subscribe(self, source: str, callback: ChangeCallback) -> Subscription:
        raise ConfigurationError(f"The {self.name} backend does not support realtime subscriptions")

    def adjust_cursor(self, cursor: str | None, delta: int, window: Sequence[Record]) -> str | None:
        """Next-page cursor after ``delta`` records entered (+) or left (-) the loaded ``window``.

        The default suits keyset cursors: resume after the last loaded record.
        Offset backends override this to shift the offset instead.
        """
        if cursor is None:
            return None
        return window[-1].id if window else None

    async def close(self) -> None:
        return None

    def check_required(self, source: str, fields: Mapping[str, Any]) -> None:
        """Reject inserts that lack the source's required fields."""
        missing = [
            name
            for name in self.required_fields.get(source, ())
            if fields.get(name) is None or (isinstance(fields.get(name), str) and not fields[name].strip())
        ]
        if missing:
            raise ValidationError(
                f"Missing required field(s) for {source}: {', '.join(missing)}",
                source=source,
            )

    @staticmethod
    def clean_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
        """Drop meta fields the backend assigns itself."""
        return {key: value for key, value in fields.items() if key not in META_FIELDS}


__all__ = [
    "Backend",
    "ChangeType",
    "ChangeEvent",
    "ChangeCallback",
    "Subscription",
]
