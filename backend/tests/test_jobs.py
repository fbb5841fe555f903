"""Evaluation job intake and status transitions."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from prepmint.core.errors import NotFoundError, ValidationError
from prepmint.evaluation.jobs import EvaluationJobStore, status_payload
from prepmint.evaluation.validation import SelectedFile
from prepmint.models.entities import JobStatus


def _store(backend, tmp_path: Path) -> EvaluationJobStore:
    return EvaluationJobStore(backend, tmp_path / "uploads")


def test_create_persists_file_and_queues(backend, tmp_path: Path) -> None:
    jobs = _store(backend, tmp_path)
    sheet = SelectedFile.from_bytes("sheet.pdf", b"%PDF-1.7 answers", "application/pdf")
    job = asyncio.run(jobs.create("s1", sheet, test_id="test-1"))
    assert job.job_id.startswith("job")
    assert job.status is JobStatus.QUEUED
    assert Path(job.source_file_ref).read_bytes() == b"%PDF-1.7 answers"
    assert status_payload(job) == {"jobId": job.job_id, "status": "queued"}


def test_status_progression_and_terminal_lock(backend, tmp_path: Path) -> None:
    jobs = _store(backend, tmp_path)
    sheet = SelectedFile.from_bytes("sheet.png", b"png", "image/png")

    async def scenario():
        job = await jobs.create("s1", sheet)
        processing = await jobs.update_status(job.job_id, JobStatus.PROCESSING, progress=40)
        done = await jobs.update_status(job.job_id, JobStatus.DONE, progress=100, result={"score": 95})
        with pytest.raises(ValidationError):
            await jobs.update_status(job.job_id, JobStatus.FAILED)
        return processing, done

    processing, done = asyncio.run(scenario())
    assert status_payload(processing) == {"jobId": processing.job_id, "status": "processing", "progress": 40}
    assert status_payload(done)["result"] == {"score": 95}


def test_failed_job_gets_default_message(backend, tmp_path: Path) -> None:
    jobs = _store(backend, tmp_path)

    async def scenario():
        job = await jobs.create("s1", SelectedFile.from_bytes("a.pdf", b"x", "application/pdf"))
        with pytest.raises(ValidationError):
            await jobs.update_status(job.job_id, JobStatus.PROCESSING, progress=101)
        return await jobs.update_status(job.job_id, JobStatus.FAILED)

    assert status_payload(asyncio.run(scenario()))["errorMessage"] == "Evaluation failed"


def test_unknown_job(backend, tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_store(backend, tmp_path).get("job-missing"))
