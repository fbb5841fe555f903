"""Fixed-interval status poller for one evaluation job."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable

from prepmint.client import ApiClient, StatusReport
from prepmint.core.errors import PrepMintError
from prepmint.core.logging import get_logger, log_context
from prepmint.core.metrics import POLL_REQUESTS

logger = get_logger(__name__)

StatusHandler = Callable[[StatusReport], Awaitable[None]]
ErrorHandler = Callable[[PrepMintError], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


class JobPoller:
    """Poll ``/evaluate/{jobId}/status`` until the job reaches a terminal state.

    Retryable errors are logged and the next tick proceeds; after
    ``max_errors`` consecutive failures, or on any other error, the
    poller gives up and reports through ``on_error``. ``stop()`` may be
    called at any time, any number of times; once it returns no further
    status request is issued and no handler runs.
    """

    def __init__(
        self,
        client: ApiClient,
        job_id: str,
        *,
        on_status: StatusHandler,
        on_error: ErrorHandler,
        interval: float = 2.0,
        max_errors: int = 5,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.client = client
        self.job_id = job_id
        self.interval = interval
        self.max_errors = max(1, max_errors)
        self.requests = 0
        self._on_status = on_status
        self._on_error = on_error
        self._sleep = sleep
        self._stopped = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poll-{self.job_id}")
        return self._task

    def stop(self) -> None:
        self._stopped = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def wait(self) -> None:
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def _run(self) -> None:
        errors = 0
        while not self._stopped:
            self.requests += 1
            try:
                report = await self.client.job_status(self.job_id)
            except PrepMintError as exc:
                POLL_REQUESTS.labels("error").inc()
                if not exc.retryable:
                    logger.error(
                        "Status poll for %s rejected: %s",
                        self.job_id,
                        exc.message,
                        extra=log_context(job_id=self.job_id, status=exc.status_code),
                    )
                    self._stopped = True
                    await self._on_error(exc)
                    return
                errors += 1
                logger.warning(
                    "Status poll %s/%s for %s failed: %s",
                    errors,
                    self.max_errors,
                    self.job_id,
                    exc.message,
                    extra=log_context(job_id=self.job_id, attempt=errors),
                )
                if errors >= self.max_errors:
                    self._stopped = True
                    await self._on_error(exc)
                    return
            else:
                errors = 0
                POLL_REQUESTS.labels(report.status.value).inc()
                if self._stopped:
                    return
                if report.status.terminal:
                    self._stopped = True
                await self._on_status(report)
                if self._stopped:
                    return
            await self._sleep(self.interval)


__all__ = ["JobPoller", "StatusHandler", "ErrorHandler"]
