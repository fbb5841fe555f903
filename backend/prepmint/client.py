"""HTTP client for the PrepMint API (evaluation intake, job status, XP awards)."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import requests

from prepmint.core.config import Settings
from prepmint.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    PrepMintError,
    TransientError,
    ValidationError,
)
from prepmint.core.logging import get_logger
from prepmint.evaluation.validation import SelectedFile
from prepmint.models.entities import JobStatus

logger = get_logger(__name__)

GENERIC_UPLOAD_ERROR = "Failed to upload file. Please try again."
_MAX_SERVER_MESSAGE = 200
# Older intake services report "pending" for jobs that have not started.
_STATUS_ALIASES = {"pending": JobStatus.QUEUED}


@dataclass(slots=True)
class StatusReport:
    """One answer from ``GET /evaluate/{jobId}/status``."""

    job_id: str
    status: JobStatus
    progress: float | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None

    @classmethod
    def from_payload(cls, job_id: str, payload: dict[str, Any]) -> "StatusReport":
        raw = str(payload.get("status", "")).lower()
        try:
            status = _STATUS_ALIASES.get(raw) or JobStatus(raw)
        except ValueError as exc:
            raise TransientError(f"Unexpected job status {raw!r} for {job_id}") from exc
        progress = payload.get("progress")
        result = payload.get("result")
        if result is not None and not isinstance(result, dict):
            raise TransientError(f"Unexpected result for {job_id}: expected an object")
        return cls(
            job_id=str(payload.get("jobId") or job_id),
            status=status,
            progress=float(progress) if isinstance(progress, (int, float)) else None,
            result=result,
            error_message=payload.get("errorMessage") or payload.get("error"),
        )

    @property
    def score(self) -> Any:
        return (self.result or {}).get("score")


class ApiClient:
    """Thin ``requests`` wrapper; async methods run the blocking call in a thread."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        user_id: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_id = user_id
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, *, user_id: str | None = None) -> "ApiClient":
        return cls(settings.api_base_url, timeout=settings.http_timeout_seconds, user_id=user_id)

    async def upload_evaluation(self, file: SelectedFile, user_id: str, test_id: str | None = None) -> str:
        """POST the answer sheet as multipart form data and return the job id."""
        data = {"userId": user_id}
        if test_id:
            data["testId"] = test_id
        files = {"file": (file.name, file.read_bytes(), file.content_type)}
        payload = await asyncio.to_thread(
            self._request, "POST", "/evaluate", fallback=GENERIC_UPLOAD_ERROR, data=data, files=files
        )
        job_id = payload.get("jobId")
        if not job_id:
            raise TransientError("Evaluation service did not return a job id")
        return str(job_id)

    async def job_status(self, job_id: str) -> StatusReport:
        payload = await asyncio.to_thread(
            self._request, "GET", f"/evaluate/{job_id}/status", fallback="Failed to fetch evaluation status"
        )
        return StatusReport.from_payload(job_id, payload)

    async def award_xp(self, user_id: str, amount: int, reason: str) -> dict[str, Any]:
        return await asyncio.to_thread(
            self._request,
            "POST",
            "/gamify/xp",
            fallback="Failed to award XP",
            json={"userId": user_id, "amount": amount, "reason": reason},
        )

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, *, fallback: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        if self.user_id:
            headers.setdefault("X-User-Id", self.user_id)
        try:
            response = self.session.request(method, url, timeout=self.timeout, headers=headers, **kwargs)
        except requests.RequestException as exc:
            logger.warning("Request %s %s failed: %s", method, url, exc)
            raise TransientError(f"{fallback}: {exc}") from exc
        if response.status_code >= 400:
            raise _error_for(response, fallback)
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientError(f"{fallback}: invalid JSON response") from exc
        if not isinstance(body, dict):
            raise TransientError(f"{fallback}: expected a JSON object, got {type(body).__name__}")
        return body


def server_message(response: requests.Response) -> str | None:
    """The body's ``message`` when it is a short, single-line string."""
    try:
        body = response.json()
    except ValueError:
        return None
    message = body.get("message") if isinstance(body, dict) else None
    if not isinstance(message, str):
        return None
    message = message.strip()
    if not message or len(message) > _MAX_SERVER_MESSAGE or "\n" in message or "<" in message:
        return None
    return message


def _error_for(response: requests.Response, fallback: str) -> PrepMintError:
    message = server_message(response) or fallback
    status = response.status_code
    if status in (401, 403):
        return PermissionDeniedError(message)
    if status == 404:
        return NotFoundError(message)
    if status in (408, 429) or status >= 500:
        return TransientError(message)
    return ValidationError(message)


__all__ = ["ApiClient", "StatusReport", "GENERIC_UPLOAD_ERROR", "server_message"]
