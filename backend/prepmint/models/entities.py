"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

META_FIELDS = ("id", "created_at", "updated_at")


@dataclass(slots=True)
class Record:
    """One row or document of a source."""

    id: str
    fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime | None = None

    def get(self, name: str, default: Any = None) -> Any:
        """Resolve a meta field or a (dotted) path into ``fields``."""
        if name == "id":
            return self.id
        if name == "created_at":
            return self.created_at
        if name == "updated_at":
            return self.updated_at
        value: Any = self.fields
        for part in name.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.fields,
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class RecordPage:
    items: list[Record]
    has_more: bool
    next_cursor: str | None = None
    total: int | None = None


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


@dataclass(slots=True)
class EvaluationJob:
    job_id: str
    owner_user_id: str
    source_file_ref: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime | None = None
    test_id: str | None = None
    progress: int | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None

    @classmethod
    def from_record(cls, record: Record) -> "EvaluationJob":
        data = record.fields
        return cls(
            job_id=record.id,
            owner_user_id=data["owner_user_id"],
            source_file_ref=data.get("source_file_ref", ""),
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            created_at=record.created_at,
            updated_at=record.updated_at,
            test_id=data.get("test_id"),
            progress=data.get("progress"),
            result=data.get("result"),
            error_message=data.get("error_message"),
        )


@dataclass(slots=True)
class UserProfile:
    id: str
    role: str
    email: str | None = None
    display_name: str | None = None
    institution_id: str | None = None
    xp: int = 0
    level: int = 1
    badges: list[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Record) -> "UserProfile":
        data = record.fields
        return cls(
            id=record.id,
            role=data.get("role", "student"),
            email=data.get("email"),
            display_name=data.get("name") or data.get("displayName"),
            institution_id=data.get("institution_id"),
            xp=int(data.get("xp") or 0),
            level=int(data.get("level") or 1),
            badges=list(data.get("badges") or []),
        )


__all__ = ["Record", "RecordPage", "JobStatus", "EvaluationJob", "UserProfile", "META_FIELDS"]
