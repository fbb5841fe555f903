"""Answer-sheet intake and job status routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from prepmint.api.dependencies import get_app_settings, get_job_store
from prepmint.core.config import Settings
from prepmint.core.errors import ValidationError
from prepmint.core.logging import get_logger
from prepmint.core.metrics import UPLOADS
from prepmint.evaluation.jobs import EvaluationJobStore, status_payload
from prepmint.evaluation.validation import SelectedFile, validate_upload
from prepmint.models.dto import JobStatusResponse, UploadAccepted

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=UploadAccepted, status_code=202, summary="Queue an answer sheet for evaluation")
async def submit_evaluation(
    file: UploadFile = File(...),
    userId: str = Form(...),
    testId: str | None = Form(default=None),
    jobs: EvaluationJobStore = Depends(get_job_store),
    settings: Settings = Depends(get_app_settings),
) -> UploadAccepted:
    content = await file.read()
    selected = SelectedFile.from_bytes(
        file.filename or "",
        content,
        file.content_type or "application/octet-stream",
    )
    try:
        validate_upload(selected, settings.upload_max_bytes)
    except ValidationError as exc:
        UPLOADS.labels("rejected").inc()
        logger.info("Rejected upload %r from %s: %s", selected.name, userId, exc.message)
        raise
    job = await jobs.create(userId, selected, test_id=testId)
    UPLOADS.labels("accepted").inc()
    return UploadAccepted(jobId=job.job_id)


@router.get("/{job_id}/status", response_model=JobStatusResponse, summary="Current state of an evaluation job")
async def job_status(job_id: str, jobs: EvaluationJobStore = Depends(get_job_store)) -> JobStatusResponse:
    job = await jobs.get(job_id)
    return JobStatusResponse(**status_payload(job))


__all__ = ["router"]
