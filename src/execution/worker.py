# src/execution/worker.py - v1
"""Job worker and worker pool.

``JobWorker.process`` runs one claimed job to its next status: PLAN jobs
go through the planner, EXECUTE jobs through the executor and the
continuation manager. Terminal jobs are handed to the completion watcher.

``WorkerPool`` claims jobs atomically from the state store and keeps at
most ``settings.worker_concurrency`` of them in flight as asyncio tasks.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from dialectica.core.errors import ConfigurationError
from dialectica.core.models import utcnow
from dialectica.logging.context import clear_context, set_job_context

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.execution.completion import CompletionWatcher
    from dialectica.execution.continuation import ContinuationManager
    from dialectica.execution.executor import JobExecutor
    from dialectica.jobs.models import Job
    from dialectica.planning.planner import JobPlanner
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)


class JobWorker:
    """Processes one claimed job."""

    def __init__(
        self,
        planner: JobPlanner,
        executor: JobExecutor,
        continuation: ContinuationManager,
        watcher: CompletionWatcher,
    ) -> None:
        self._planner = planner
        self._executor = executor
        self._continuation = continuation
        self._watcher = watcher

    async def process(self, job: Job) -> Job | None:
        """Run ``job`` (already in ``processing``) and record its outcome.

        Returns the job after its transition, or None when another actor
        moved it first.
        """
        set_job_context(job.session_id, job.id, job.stage_slug, job.model_id)
        try:
            try:
                updated = await self._run(job)
            except Exception as e:
                if isinstance(e, ConfigurationError):
                    logger.error("Job %s hit a configuration error: %s", job.id, e)
                else:
                    logger.warning("Job %s raised %s: %s", job.id, type(e).__name__, e)
                updated = await self._continuation.record_failure(job, e)

            if updated is not None and updated.is_terminal:
                await self._watcher.on_job_transition(updated)
            return updated
        finally:
            clear_context()

    async def release(self, job: Job) -> None:
        """Hand a job moved outside ``process`` to the completion watcher."""
        if job.is_terminal:
            set_job_context(job.session_id, job.id, job.stage_slug, job.model_id)
            try:
                await self._watcher.on_job_transition(job)
            finally:
                clear_context()

    async def _run(self, job: Job) -> Job | None:
        if job.job_type == "PLAN":
            result = await self._planner.plan_next_step(job)
            return result.job

        result = await self._executor.execute(job)
        if result.status == "needs_continuation":
            return await self._continuation.record_continuation(job, result)
        return await self._continuation.record_success(job, result)


class WorkerPool:
    """Bounded pool of concurrent job tasks fed by atomic claims."""

    def __init__(self, worker: JobWorker, state: BaseStateStore, settings: Settings) -> None:
        self._worker = worker
        self._state = state
        self._concurrency = max(settings.worker_concurrency, 1)
        self._poll_interval = settings.worker_poll_interval_s
        self._claim_timeout = timedelta(seconds=settings.job_claim_timeout_s)

    async def run_until_idle(self, max_jobs: int | None = None) -> int:
        """Process jobs until none is claimable now or later.

        Jobs waiting on a backoff delay are waited for; jobs blocked on
        children are not claimable and end the run once nothing else is.
        When nothing is in flight, claims older than the claim timeout are
        recovered first. A job task that raises is logged; the other jobs in
        flight always run to their recorded outcome.

        Returns:
            Number of jobs processed.
        """
        in_flight: set[asyncio.Task] = set()
        processed = 0
        try:
            while True:
                while len(in_flight) < self._concurrency and (
                    max_jobs is None or processed < max_jobs
                ):
                    job = await self._state.claim_next_job(utcnow())
                    if job is None:
                        break
                    processed += 1
                    in_flight.add(
                        asyncio.create_task(self._worker.process(job), name=f"job-{job.id}")
                    )

                if in_flight:
                    done, in_flight = await asyncio.wait(
                        in_flight, return_when=asyncio.FIRST_COMPLETED
                    )
                    for task in done:
                        _log_task_error(task)
                    continue

                if max_jobs is not None and processed >= max_jobs:
                    break
                if await self.recover_stale_jobs():
                    continue
                next_at = await self._state.next_available_at()
                if next_at is None:
                    break
                delay = (next_at - utcnow()).total_seconds()
                await asyncio.sleep(min(max(delay, 0.0), self._poll_interval))
        finally:
            if in_flight:
                done, _ = await asyncio.wait(in_flight)
                for task in done:
                    _log_task_error(task)

        logger.info("Worker pool idle after %d jobs", processed)
        return processed

    async def recover_stale_jobs(self) -> list[Job]:
        """Requeue or fail jobs whose claim outlived the claim timeout."""
        now = utcnow()
        moved = await self._state.requeue_stale_jobs(
            now - self._claim_timeout,
            now,
            {
                "type": "ClaimExpired",
                "category": "timeout",
                "message": (
                    f"no outcome recorded within {self._claim_timeout.total_seconds():.0f}s "
                    "of the claim"
                ),
            },
        )
        for job in moved:
            logger.warning(
                "Recovered abandoned job %s: %s (attempt %d)",
                job.id, job.status, job.attempt_count,
            )
            await self._worker.release(job)
        return moved


def _log_task_error(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Job task %s was cancelled", task.get_name())
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Job task %s ended without a recorded outcome: %s: %s",
            task.get_name(), type(error).__name__, error,
            exc_info=error,
        )
