"""Notification routes for the signed-in caller."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from prepmint.api.dependencies import get_caller, get_notification_service
from prepmint.auth.capabilities import Capability, require_capability
from prepmint.core.errors import PermissionDeniedError
from prepmint.core.logging import get_logger
from prepmint.models.dto import (
    MarkAllReadResponse,
    RecordCreateResponse,
    RecordResponse,
    SendNotificationRequest,
    UnreadCountResponse,
)
from prepmint.models.entities import UserProfile
from prepmint.notifications import NotificationService

logger = get_logger(__name__)

router = APIRouter()


def _signed_in(caller: UserProfile | None) -> UserProfile:
    if caller is None:
        raise PermissionDeniedError("Sign in to read notifications")
    return caller


@router.get("", response_model=list[RecordResponse], summary="Caller's notifications, newest first")
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    unread_only: bool = False,
    caller: UserProfile | None = Depends(get_caller),
    service: NotificationService = Depends(get_notification_service),
) -> list[RecordResponse]:
    user = _signed_in(caller)
    records = await service.fetch(user.id, limit=limit, unread_only=unread_only)
    return [RecordResponse.from_record(record) for record in records]


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Caller's unread total")
async def unread_count(
    caller: UserProfile | None = Depends(get_caller),
    service: NotificationService = Depends(get_notification_service),
) -> UnreadCountResponse:
    user = _signed_in(caller)
    return UnreadCountResponse(unread=await service.unread_count(user.id))


@router.post("/read-all", response_model=MarkAllReadResponse, summary="Mark every notification read")
async def mark_all_read(
    caller: UserProfile | None = Depends(get_caller),
    service: NotificationService = Depends(get_notification_service),
) -> MarkAllReadResponse:
    user = _signed_in(caller)
    return MarkAllReadResponse(marked=await service.mark_all_as_read(user.id))


@router.post("/{notification_id}/read", response_model=RecordResponse, summary="Mark one notification read")
async def mark_read(
    notification_id: str,
    caller: UserProfile | None = Depends(get_caller),
    service: NotificationService = Depends(get_notification_service),
) -> RecordResponse:
    user = _signed_in(caller)
    return RecordResponse.from_record(await service.mark_as_read(notification_id, user_id=user.id))


@router.post("", response_model=RecordCreateResponse, status_code=201, summary="Send a notification")
async def send_notification(
    request: SendNotificationRequest,
    caller: UserProfile | None = Depends(get_caller),
    service: NotificationService = Depends(get_notification_service),
) -> RecordCreateResponse:
    sender = require_capability(caller, Capability.SEND_NOTIFICATIONS)
    notification_id = await service.send(
        request.userId,
        request.type,
        request.title,
        request.message,
        sender={"id": sender.id, "name": sender.display_name, "role": sender.role},
        action_url=request.actionUrl,
        metadata=request.metadata,
    )
    logger.info("%s sent notification %s to %s", sender.id, notification_id, request.userId)
    return RecordCreateResponse(id=notification_id)


__all__ = ["router"]
