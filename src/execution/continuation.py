# src/execution/continuation.py - v1
"""Continuation manager: record the outcome of an EXECUTE attempt.

Success completes the job. Truncated output re-queues the job as
``pending_continuation`` with the partial text carried in its results.
Failures either schedule a retry with exponential backoff or fail the job
for good, depending on the error class and the remaining attempts.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from dialectica.core.errors import DialecticError
from dialectica.core.models import utcnow
from dialectica.jobs.models import ExecutePayload
from dialectica.llm.retry import RetryConfig, classify_error, compute_delay, is_transient

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.execution.executor import ExecutionResult
    from dialectica.jobs.models import Job
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

_ACTIVE = ["processing"]


class ContinuationManager:
    """Moves a processing job to its next status after an attempt."""

    def __init__(self, state: BaseStateStore, settings: Settings) -> None:
        self._state = state
        self._settings = settings

    async def record_success(self, job: Job, result: ExecutionResult) -> Job | None:
        results = {
            "contribution_ids": result.contribution_ids,
            "tokens_input": job.results.get("tokens_input", 0) + result.tokens_input,
            "tokens_output": job.results.get("tokens_output", 0) + result.tokens_output,
            "truncated": result.truncated,
            "finish_reason": result.finish_reason,
            "indexed": result.indexed,
        }
        done = await self._state.transition_job(
            job.id, _ACTIVE, "completed", results=results, completed_at=utcnow()
        )
        if done is None:
            logger.warning("Job %s left processing before completion was recorded", job.id)
        return done

    async def record_continuation(self, job: Job, result: ExecutionResult) -> Job | None:
        """Re-queue ``job`` to resume truncated output on its next claim."""
        payload = job.payload
        if not isinstance(payload, ExecutePayload):
            raise TypeError(f"Job {job.id} cannot continue: not an EXECUTE job")
        results = {
            **job.results,
            "partial_content": result.content,
            "tokens_input": job.results.get("tokens_input", 0) + result.tokens_input,
            "tokens_output": job.results.get("tokens_output", 0) + result.tokens_output,
            "finish_reason": result.finish_reason,
        }
        queued = await self._state.transition_job(
            job.id,
            _ACTIVE,
            "pending_continuation",
            payload=payload.model_copy(
                update={"continuation_count": payload.continuation_count + 1}
            ),
            results=results,
            available_at=utcnow(),
        )
        if queued is not None:
            logger.info(
                "Job %s queued for continuation %d",
                job.id, payload.continuation_count + 1,
            )
        return queued

    async def record_failure(self, job: Job, error: BaseException) -> Job | None:
        """Schedule a retry for transient errors, otherwise fail the job."""
        error_type = classify_error(error)
        details = {
            "type": type(error).__name__,
            "category": error_type,
            "message": str(error),
            "attempt_count": job.attempt_count,
        }
        if isinstance(error, DialecticError):
            details["details"] = error.to_details()

        if is_transient(error) and job.attempt_count < job.max_retries:
            attempt = job.attempt_count + 1
            delay = compute_delay(
                RetryConfig(
                    max_retries=job.max_retries,
                    base_delay_s=self._settings.retry_base_delay_s,
                    max_delay_s=self._settings.retry_max_delay_s,
                ),
                attempt,
            )
            retried = await self._state.transition_job(
                job.id,
                _ACTIVE,
                "retrying",
                attempt_count=attempt,
                available_at=utcnow() + timedelta(seconds=delay),
                error_details=details,
            )
            if retried is not None:
                logger.warning(
                    "Job %s attempt %d/%d failed (%s); retrying in %.2fs",
                    job.id, attempt, job.max_retries, error_type, delay,
                )
            return retried

        failed = await self._state.transition_job(
            job.id,
            _ACTIVE,
            "failed",
            error_details=details,
            completed_at=utcnow(),
        )
        if failed is not None:
            logger.error(
                "Job %s failed after %d attempts (%s): %s",
                job.id, job.attempt_count, error_type, error,
            )
        return failed
