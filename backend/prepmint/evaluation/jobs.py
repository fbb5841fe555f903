"""Server-side intake: persist uploads and track evaluation jobs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from prepmint.core.errors import ValidationError
from prepmint.core.logging import get_logger
from prepmint.evaluation.validation import SelectedFile
from prepmint.models.entities import EvaluationJob, JobStatus
from prepmint.store.backends.base import Backend
from prepmint.utils.ids import new_id

logger = get_logger(__name__)

JOBS_SOURCE = "evaluation_jobs"


class EvaluationJobStore:
    """Create queued jobs for validated uploads and record grading progress.

    Grading itself happens elsewhere; the grader reports through
    ``update_status``. Terminal jobs are immutable.
    """

    def __init__(self, backend: Backend, upload_dir: Path) -> None:
        self.backend = backend
        self.upload_dir = Path(upload_dir)

    async def create(self, owner_user_id: str, file: SelectedFile, test_id: str | None = None) -> EvaluationJob:
        job_id = new_id("job")
        target_dir = self.upload_dir / job_id
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / file.name
        target.write_bytes(file.read_bytes())
        fields: dict[str, Any] = {
            "id": job_id,
            "owner_user_id": owner_user_id,
            "source_file_ref": str(target),
            "status": JobStatus.QUEUED.value,
            "test_id": test_id,
            "progress": None,
        }
        record = await self.backend.insert(JOBS_SOURCE, fields)
        logger.info("Queued evaluation job %s for %s", job_id, owner_user_id)
        return EvaluationJob.from_record(record)

    async def get(self, job_id: str) -> EvaluationJob:
        return EvaluationJob.from_record(await self.backend.get(JOBS_SOURCE, job_id))

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        progress: int | None = None,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> EvaluationJob:
        current = await self.get(job_id)
        if current.status.terminal:
            raise ValidationError(f"Job {job_id} is already {current.status.value}", source=JOBS_SOURCE, record_id=job_id)
        if progress is not None and not 0 <= progress <= 100:
            raise ValidationError("Progress must be between 0 and 100", source=JOBS_SOURCE, record_id=job_id)
        changes: dict[str, Any] = {"status": status.value, "progress": progress}
        if status is JobStatus.DONE:
            changes["result"] = result or {}
        if status is JobStatus.FAILED:
            changes["error_message"] = error_message or "Evaluation failed"
        record = await self.backend.update(JOBS_SOURCE, job_id, changes)
        logger.info("Job %s is now %s", job_id, status.value)
        return EvaluationJob.from_record(record)


def status_payload(job: EvaluationJob) -> dict[str, Any]:
    """Wire shape of ``GET /evaluate/{jobId}/status``."""
    payload: dict[str, Any] = {"jobId": job.job_id, "status": job.status.value}
    if job.progress is not None:
        payload["progress"] = job.progress
    if job.result is not None:
        payload["result"] = job.result
    if job.error_message:
        payload["errorMessage"] = job.error_message
    return payload


__all__ = ["EvaluationJobStore", "JOBS_SOURCE", "status_payload"]
