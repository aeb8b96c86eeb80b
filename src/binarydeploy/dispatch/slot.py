"""Single-slot background job runner.

Each engine the gateway drives gets one ``JobSlot``. At most one job runs at
a time; a submission that arrives while a job runs becomes the single
pending follow-up, replacing any older pending job, and starts as soon as
the running one finishes. For deployments only the newest push matters, so
coalescing intermediate deliveries loses nothing.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SubmitResult(str, Enum):
    """What happened to a submitted job."""

    STARTED = "started"
    QUEUED = "queued"


@dataclass
class _Job:
    label: str
    factory: Callable[[], Awaitable[Any]]


class JobSlot:
    """Runs one job at a time with room for one pending follow-up."""

    def __init__(self, name: str):
        self.name = name
        self.completed = 0
        self.failed = 0
        self._task: asyncio.Task | None = None
        self._pending: _Job | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> str | None:
        """Label of the pending job, if any."""
        return self._pending.label if self._pending else None

    def submit(self, factory: Callable[[], Awaitable[Any]], label: str) -> SubmitResult:
        """Run ``factory()`` now, or after the running job if the slot is busy."""
        job = _Job(label=label, factory=factory)

        if self.busy:
            if self._pending is not None:
                logger.info(f"[{self.name}] Replacing pending job {self._pending.label} with {label}")
            else:
                logger.info(f"[{self.name}] Job running, queued {label}")
            self._pending = job
            return SubmitResult.QUEUED

        self._idle.clear()
        self._task = asyncio.create_task(self._run(job), name=f"{self.name}:{label}")
        return SubmitResult.STARTED

    async def wait_idle(self) -> None:
        """Wait until no job is running or pending."""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Drop the pending job and cancel the running one."""
        self._pending = None
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def status(self) -> dict[str, Any]:
        return {
            "busy": self.busy,
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
        }

    async def _run(self, job: _Job | None) -> None:
        try:
            while job is not None:
                logger.info(f"[{self.name}] Starting {job.label}")
                try:
                    await job.factory()
                except Exception:
                    # Outcomes of background work are only ever logged
                    self.failed += 1
                    logger.exception(f"[{self.name}] {job.label} failed")
                else:
                    self.completed += 1
                    logger.info(f"[{self.name}] {job.label} completed successfully")

                job, self._pending = self._pending, None
        finally:
            self._idle.set()
