"""Upload-and-poll evaluation workflow."""

from __future__ import annotations

import asyncio

import pytest

from prepmint.client import GENERIC_UPLOAD_ERROR, StatusReport
from prepmint.core.errors import ConfigurationError, TransientError, ValidationError
from prepmint.evaluation.validation import SelectedFile
from prepmint.evaluation.workflow import LOST_CONTACT_ERROR, EvaluationWorkflow, WorkflowState
from prepmint.gamify.xp import XpAwarder
from prepmint.models.entities import JobStatus


def _report(status: str, progress: float | None = None, **extra) -> StatusReport:
    return StatusReport(job_id="job-1", status=JobStatus(status), progress=progress, **extra)


class FakeApi:
    """Scripted stand-in for ApiClient; runs out of script -> keeps reporting processing."""

    def __init__(self, statuses=(), upload_error: Exception | None = None) -> None:
        self.statuses = list(statuses)
        self.upload_error = upload_error
        self.uploads: list[tuple[str, str, str | None]] = []
        self.status_calls = 0

    async def upload_evaluation(self, file, user_id, test_id=None):
        self.uploads.append((file.name, user_id, test_id))
        if self.upload_error is not None:
            raise self.upload_error
        return "job-1"

    async def job_status(self, job_id):
        self.status_calls += 1
        if not self.statuses:
            return _report("processing", 50)
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingAwarder(XpAwarder):
    def __init__(self, error: Exception | None = None) -> None:
        self.awards: list[tuple[str, int, str]] = []
        self.error = error

    async def award(self, user_id, amount, reason):
        self.awards.append((user_id, amount, reason))
        if self.error is not None:
            raise self.error


def _pdf(size: int = 2048) -> SelectedFile:
    return SelectedFile.from_bytes("sheet.pdf", b"x" * size, "application/pdf")


def _workflow(api: FakeApi, awarder: XpAwarder | None = None, **kwargs) -> EvaluationWorkflow:
    kwargs.setdefault("poll_interval", 0)
    return EvaluationWorkflow(api, awarder, **kwargs)


def _collapse(states: list[str]) -> list[str]:
    collapsed: list[str] = []
    for state in states:
        if not collapsed or collapsed[-1] != state:
            collapsed.append(state)
    return collapsed


def test_empty_file_is_rejected_without_network() -> None:
    api = FakeApi()
    workflow = _workflow(api)
    assert workflow.select_file(SelectedFile.from_bytes("sheet.pdf", b"", "application/pdf")) is False
    assert workflow.state is WorkflowState.REJECTED
    assert workflow.error.startswith("File is empty")
    with pytest.raises(ConfigurationError):
        asyncio.run(workflow.submit("user-1"))
    assert api.uploads == []


def test_happy_path_awards_once_and_stops_polling() -> None:
    api = FakeApi(
        [
            _report("queued"),
            _report("processing", 40),
            _report("processing", 90),
            _report("done", 100, result={"score": 100, "feedback": "Perfect"}),
        ]
    )
    awarder = RecordingAwarder()
    states: list[str] = []
    completed: list[dict] = []
    workflow = _workflow(
        api,
        awarder,
        listener=lambda wf: states.append(wf.state.value),
        on_complete=completed.append,
    )

    async def scenario() -> None:
        assert workflow.select_file(_pdf())
        job_id = await workflow.submit("user-1", test_id="test-9")
        assert job_id == "job-1"
        await workflow.wait()
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(scenario())
    assert _collapse(states) == ["validating", "uploading", "queued", "processing", "done"]
    assert api.uploads == [("sheet.pdf", "user-1", "test-9")]
    assert api.status_calls == 4
    assert workflow.result == {"score": 100, "feedback": "Perfect"}
    assert completed == [{"score": 100, "feedback": "Perfect"}]
    assert awarder.awards == [
        ("user-1", 20, "Evaluation completed"),
        ("user-1", 100, "Perfect score achieved!"),
    ]


def test_imperfect_score_gets_completion_award_only() -> None:
    api = FakeApi([_report("done", result={"score": 72})])
    awarder = RecordingAwarder()
    workflow = _workflow(api, awarder)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await workflow.wait()

    asyncio.run(scenario())
    assert [amount for _, amount, _ in awarder.awards] == [20]


def test_award_failures_do_not_change_the_outcome() -> None:
    api = FakeApi([_report("done", result={"score": 100})])
    awarder = RecordingAwarder(error=TransientError("gamify down"))
    workflow = _workflow(api, awarder)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await workflow.wait()

    asyncio.run(scenario())
    assert workflow.state is WorkflowState.DONE
    assert len(awarder.awards) == 2


def test_failed_job_reports_error_message() -> None:
    api = FakeApi([_report("processing", 10), _report("failed", error_message="Unreadable scan")])
    errors: list[str] = []
    awarder = RecordingAwarder()
    workflow = _workflow(api, awarder, on_error=errors.append)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await workflow.wait()

    asyncio.run(scenario())
    assert workflow.state is WorkflowState.FAILED
    assert errors == ["Unreadable scan"]
    assert api.status_calls == 2
    assert awarder.awards == []


def test_upload_rejection_uses_server_message() -> None:
    errors: list[str] = []
    workflow = _workflow(FakeApi(upload_error=ValidationError("Test is closed")), on_error=errors.append)
    workflow.select_file(_pdf())
    assert asyncio.run(workflow.submit("user-1")) is None
    assert workflow.state is WorkflowState.FAILED
    assert errors == ["Test is closed"]


def test_upload_network_failure_uses_generic_message() -> None:
    workflow = _workflow(FakeApi(upload_error=TransientError("connection reset")))
    workflow.select_file(_pdf())
    asyncio.run(workflow.submit("user-1"))
    assert workflow.error == GENERIC_UPLOAD_ERROR


def test_transient_poll_errors_are_tolerated() -> None:
    api = FakeApi([TransientError("blip"), TransientError("blip"), _report("done", result={"score": 50})])
    workflow = _workflow(api, poll_max_errors=3)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await workflow.wait()

    asyncio.run(scenario())
    assert workflow.state is WorkflowState.DONE
    assert api.status_calls == 3


def test_too_many_poll_errors_fail_the_workflow() -> None:
    api = FakeApi([TransientError("down")] * 3)
    errors: list[str] = []
    workflow = _workflow(api, poll_max_errors=3, on_error=errors.append)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await workflow.wait()

    asyncio.run(scenario())
    assert workflow.state is WorkflowState.FAILED
    assert errors == [LOST_CONTACT_ERROR]
    assert api.status_calls == 3


def test_close_mid_poll_stops_status_requests() -> None:
    api = FakeApi()
    workflow = _workflow(api, poll_interval=0.01)

    async def scenario() -> int:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        await asyncio.sleep(0.05)
        workflow.close()
        workflow.close()
        calls = api.status_calls
        await asyncio.sleep(0.05)
        assert api.status_calls == calls
        return calls

    assert asyncio.run(scenario()) >= 1
    assert workflow.state is WorkflowState.PROCESSING
    assert not workflow.poller.running


def test_reset_only_outside_active_states() -> None:
    api = FakeApi([_report("done", result={"score": 10})])
    workflow = _workflow(api, poll_interval=0.01)

    async def scenario() -> None:
        workflow.select_file(_pdf())
        await workflow.submit("user-1")
        with pytest.raises(ConfigurationError):
            workflow.reset()
        await workflow.wait()

    asyncio.run(scenario())
    workflow.reset()
    assert workflow.state is WorkflowState.IDLE
    assert workflow.job_id is None
    assert workflow.result is None
