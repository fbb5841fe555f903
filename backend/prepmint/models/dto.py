"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from prepmint.models.entities import Record, UserProfile


class RecordResponse(BaseModel):
    id: str
    fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Record) -> "RecordResponse":
        return cls(id=record.id, fields=record.fields, created_at=record.created_at, updated_at=record.updated_at)


class RecordPageResponse(BaseModel):
    items: list[RecordResponse]
    has_more: bool
    next_cursor: str | None = None
    total: int | None = None


class RecordCreateResponse(BaseModel):
    id: str


class BulkDeleteRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)


class DeleteOutcomeResponse(BaseModel):
    id: str
    ok: bool
    error: str | None = None


class BulkDeleteResponse(BaseModel):
    succeeded: list[str]
    failed: list[str]
    outcomes: list[DeleteOutcomeResponse]
    summary: str


class UploadAccepted(BaseModel):
    jobId: str


class JobStatusResponse(BaseModel):
    jobId: str
    status: str
    progress: float | None = None
    result: dict[str, Any] | None = None
    errorMessage: str | None = None


class AwardXpRequest(BaseModel):
    userId: str
    amount: int
    reason: str


class AwardXpResponse(BaseModel):
    success: bool = True
    message: str = "XP awarded successfully"
    data: dict[str, Any]


class AwardBadgeRequest(BaseModel):
    userId: str
    badgeId: str


class AwardBadgeResponse(BaseModel):
    success: bool = True
    awarded: bool
    message: str


class LeaderboardEntry(BaseModel):
    rank: int
    id: str
    name: str | None = None
    xp: int
    level: int
    badges: int

    @classmethod
    def from_profile(cls, rank: int, profile: UserProfile) -> "LeaderboardEntry":
        return cls(
            rank=rank,
            id=profile.id,
            name=profile.display_name,
            xp=profile.xp,
            level=profile.level,
            badges=len(profile.badges),
        )


class SendNotificationRequest(BaseModel):
    userId: str
    type: str = "info"
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    actionUrl: str | None = None
    metadata: dict[str, Any] | None = None


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    marked: int


class ErrorResponse(BaseModel):

    message: str
