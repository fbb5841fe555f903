"""User notifications stored in the ``notifications`` source."""

from __future__ import annotations

from typing import Any, Literal, Mapping, get_args

from prepmint.core.config import Settings
from prepmint.core.errors import PermissionDeniedError, ValidationError
from prepmint.core.logging import get_logger
from prepmint.models.entities import Record
from prepmint.store.backends.base import Backend
from prepmint.store.collection import CollectionStore
from prepmint.store.query import build_query

logger = get_logger(__name__)

NOTIFICATIONS_SOURCE = "notifications"

NotificationType = Literal[
    "evaluation",
    "badge",
    "announcement",
    "reminder",
    "message",
    "info",
    "warning",
    "error",
]
NOTIFICATION_TYPES: tuple[str, ...] = get_args(NotificationType)
_MAX_BATCH = 500


class NotificationService:
    def __init__(self, backend: Backend, *, realtime: bool = True) -> None:
        self.backend = backend
        self.realtime = realtime

    @classmethod
    def from_settings(cls, settings: Settings, backend: Backend) -> "NotificationService":
        return cls(backend, realtime=settings.realtime)

    def _query(self, user_id: str, *, limit: int, unread_only: bool):
        filters: list[tuple[str, str, Any]] = [("userId", "eq", user_id)]
        if unread_only:
            filters.append(("read", "eq", False))
        return build_query(NOTIFICATIONS_SOURCE, page_size=limit, filters=filters)

    async def fetch(self, user_id: str, limit: int = 50, unread_only: bool = False) -> list[Record]:
        """Newest first."""
        page = await self.backend.select(self._query(user_id, limit=limit, unread_only=unread_only))
        return page.items

    async def unread_count(self, user_id: str) -> int:
        page = await self.backend.select(self._query(user_id, limit=_MAX_BATCH, unread_only=True))
        return page.total if page.total is not None else len(page.items)

    async def mark_as_read(self, notification_id: str, user_id: str | None = None) -> Record:
        """Mark one notification read; with ``user_id``, only if it is addressed to them."""
        if user_id is not None:
            current = await self.backend.get(NOTIFICATIONS_SOURCE, notification_id)
            if current.fields.get("userId") != user_id:
                raise PermissionDeniedError(
                    f"{user_id} cannot modify notification {notification_id}",
                    source=NOTIFICATIONS_SOURCE,
                    record_id=notification_id,
                )
        return await self.backend.update(NOTIFICATIONS_SOURCE, notification_id, {"read": True})

    async def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of ``user_id`` read; returns how many changed."""
        marked = 0
        while True:
            unread = await self.fetch(user_id, limit=_MAX_BATCH, unread_only=True)
            if not unread:
                break
            for record in unread:
                await self.mark_as_read(record.id)
                marked += 1
            if len(unread) < _MAX_BATCH:
                break
        logger.info("Marked %s notification(s) read for %s", marked, user_id)
        return marked

    async def send(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        sender: Mapping[str, Any] | None = None,
        action_url: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type {type!r}", source=NOTIFICATIONS_SOURCE)
        fields: dict[str, Any] = {
            "userId": user_id,
            "type": type,
            "title": title,
            "message": message,
            "read": False,
        }
        if sender:
            fields.update(
                {
                    "senderId": sender.get("id"),
                    "senderName": sender.get("name"),
                    "senderRole": sender.get("role"),
                }
            )
        if action_url:
            fields["actionUrl"] = action_url
        if metadata:
            fields["metadata"] = dict(metadata)
        record = await self.backend.insert(NOTIFICATIONS_SOURCE, fields)
        logger.info("Sent %s notification %s to %s", type, record.id, user_id)
        return record.id

    def store_for(
        self,
        user_id: str,
        *,
        realtime: bool | None = None,
        unread_only: bool = False,
        page_size: int = 20,
    ) -> CollectionStore:
        """An unbound store over the user's notifications; call ``bind()`` to load it."""
        return CollectionStore(
            self.backend,
            self._query(user_id, limit=page_size, unread_only=unread_only),
            realtime=self.realtime if realtime is None else realtime,
        )


__all__ = ["NotificationService", "NOTIFICATION_TYPES", "NOTIFICATIONS_SOURCE"]
