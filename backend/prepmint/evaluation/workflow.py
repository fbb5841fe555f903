"""Upload-and-poll state machine for answer-sheet evaluation."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from prepmint.client import GENERIC_UPLOAD_ERROR, ApiClient, StatusReport
from prepmint.core.config import Settings
from prepmint.core.errors import ConfigurationError, PrepMintError, TransientError
from prepmint.core.logging import get_logger
from prepmint.core.metrics import UPLOADS
from prepmint.evaluation.poller import JobPoller
from prepmint.evaluation.validation import SelectedFile, rejection_reason
from prepmint.gamify.xp import XP_REWARDS, XpAwarder
from prepmint.models.entities import JobStatus

logger = get_logger(__name__)

LOST_CONTACT_ERROR = "Lost contact with the evaluation service. Please check back later."
DEFAULT_FAILURE = "Evaluation failed"


class WorkflowState(str, Enum):
    IDLE = "idle"
    REJECTED = "rejected"
    VALIDATING = "validating"
    UPLOADING = "uploading"
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


ACTIVE_STATES = frozenset({WorkflowState.UPLOADING, WorkflowState.QUEUED, WorkflowState.PROCESSING})

CompleteCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[str], None]
ChangeListener = Callable[["EvaluationWorkflow"], None]


class EvaluationWorkflow:
    """Validate a file, submit it for grading and follow the job to the end.

    ``select_file`` leaves the workflow in ``validating`` when the file is
    acceptable (ready for ``submit``) or ``rejected`` with a reason.
    XP awards on completion go through the configured ``XpAwarder`` and are
    best effort: failures are logged and never change the outcome.
    """

    def __init__(
        self,
        client: ApiClient,
        awarder: XpAwarder | None = None,
        *,
        max_upload_bytes: int = 10 * 1024 * 1024,
        poll_interval: float = 2.0,
        poll_max_errors: int = 5,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        listener: ChangeListener | None = None,
    ) -> None:
        self.client = client
        self.awarder = awarder
        self.max_upload_bytes = max_upload_bytes
        self.poll_interval = poll_interval
        self.poll_max_errors = poll_max_errors
        self.on_complete = on_complete
        self.on_error = on_error
        self.listener = listener

        self.state = WorkflowState.IDLE
        self.file: SelectedFile | None = None
        self.user_id: str | None = None
        self.job_id: str | None = None
        self.progress: float | None = None
        self.result: dict[str, Any] | None = None
        self.error: str | None = None
        self.poller: JobPoller | None = None
        self._closed = False
        self._rewarded: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: ApiClient,
        awarder: XpAwarder | None = None,
        **callbacks: Any,
    ) -> "EvaluationWorkflow":
        return cls(
            client,
            awarder,
            max_upload_bytes=settings.upload_max_bytes,
            poll_interval=settings.poll_interval_seconds,
            poll_max_errors=settings.poll_max_errors,
            **callbacks,
        )

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    def select_file(self, file: SelectedFile) -> bool:
        if self.active:
            raise ConfigurationError("An evaluation is already in progress")
        self.file = None
        self.error = None
        self._set_state(WorkflowState.VALIDATING)
        reason = rejection_reason(file, self.max_upload_bytes)
        if reason is not None:
            UPLOADS.labels("rejected").inc()
            logger.info("Rejected %s: %s", file.name, reason)
            self.error = reason
            self._set_state(WorkflowState.REJECTED)
            return False
        self.file = file
        self._notify()
        return True

    async def submit(self, user_id: str, test_id: str | None = None) -> str | None:
        """Upload the selected file; returns the job id, or ``None`` when the upload failed."""
        if self.state is not WorkflowState.VALIDATING or self.file is None:
            raise ConfigurationError("Select a valid file before submitting")
        if self._closed:
            raise ConfigurationError("Workflow has been closed")
        self.user_id = user_id
        self._set_state(WorkflowState.UPLOADING)
        try:
            job_id = await self.client.upload_evaluation(self.file, user_id, test_id)
        except PrepMintError as exc:
            UPLOADS.labels("failed").inc()
            logger.error("Upload of %s failed: %s", self.file.name, exc.message)
            message = GENERIC_UPLOAD_ERROR if isinstance(exc, TransientError) else exc.message
            self._fail(message)
            return None
        UPLOADS.labels("accepted").inc()
        logger.info("Upload accepted, job %s", job_id)
        self.job_id = job_id
        if self._closed:
            return job_id
        self._set_state(WorkflowState.QUEUED)
        self.poller = JobPoller(
            self.client,
            job_id,
            on_status=self._handle_status,
            on_error=self._handle_poll_error,
            interval=self.poll_interval,
            max_errors=self.poll_max_errors,
        )
        self.poller.start()
        return job_id

    async def wait(self) -> None:
        if self.poller is not None:
            await self.poller.wait()

    def reset(self) -> None:
        if self.active:
            raise ConfigurationError("Cannot reset while an evaluation is in progress")
        self.file = None
        self.user_id = None
        self.job_id = None
        self.progress = None
        self.result = None
        self.error = None
        self.poller = None
        self._set_state(WorkflowState.IDLE)

    def close(self) -> None:
        """Stop polling for good; safe to call repeatedly."""
        self._closed = True
        if self.poller is not None:
            self.poller.stop()

    # Poll handlers ----------------------------------------------------

    async def _handle_status(self, report: StatusReport) -> None:
        if self._closed:
            return
        self.progress = report.progress
        if report.status is JobStatus.DONE:
            self.result = report.result or {}
            self._set_state(WorkflowState.DONE)
            logger.info("Evaluation %s done (score %s)", report.job_id, report.score)
            await self._reward(report)
            if self.on_complete is not None:
                self.on_complete(self.result)
        elif report.status is JobStatus.FAILED:
            self._fail(report.error_message or DEFAULT_FAILURE)
        elif report.status is JobStatus.PROCESSING:
            self._set_state(WorkflowState.PROCESSING)
        else:
            self._set_state(WorkflowState.QUEUED)

    async def _handle_poll_error(self, error: PrepMintError) -> None:
        if self._closed:
            return
        self._fail(LOST_CONTACT_ERROR if isinstance(error, TransientError) else error.message)

    async def _reward(self, report: StatusReport) -> None:
        if self.awarder is None or self.user_id is None or report.job_id in self._rewarded:
            return
        self._rewarded.add(report.job_id)
        awards = [(XP_REWARDS["EVALUATION_COMPLETE"], "Evaluation completed")]
        if report.score == 100:
            awards.append((XP_REWARDS["PERFECT_SCORE"], "Perfect score achieved!"))
        for amount, reason in awards:
            try:
                await self.awarder.award(self.user_id, amount, reason)
            except PrepMintError as exc:
                logger.warning("Failed to award %s XP to %s: %s", amount, self.user_id, exc.message)

    # Internal helpers -------------------------------------------------

    def _fail(self, message: str) -> None:
        self.error = message
        self._set_state(WorkflowState.FAILED)
        logger.error("Evaluation failed: %s", message)
        if self.on_error is not None:
            self.on_error(message)

    def _set_state(self, state: WorkflowState) -> None:
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if self.listener is not None:
            self.listener(self)


__all__ = ["EvaluationWorkflow", "WorkflowState", "ACTIVE_STATES"]
