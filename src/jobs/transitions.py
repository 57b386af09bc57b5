# src/jobs/transitions.py - v1
"""Allowed job status transitions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from dialectica.core.errors import DialecticValidationError

if TYPE_CHECKING:
    from dialectica.jobs.models import Job

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "failed"}),
    "processing": frozenset(
        {
            "completed",
            "failed",
            "retrying",
            "pending_continuation",
            "waiting_for_children",
        }
    ),
    "retrying": frozenset({"processing", "failed"}),
    "pending_continuation": frozenset({"processing", "failed"}),
    "pending_next_step": frozenset({"processing", "failed"}),
    "waiting_for_children": frozenset({"pending_next_step", "completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


class InvalidTransitionError(DialecticValidationError):
    """A job was asked to move along an edge the state machine lacks."""


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def check_transition(from_status: str, to_status: str) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(
            f"Job cannot move from {from_status!r} to {to_status!r}",
            from_status=from_status,
            to_status=to_status,
        )


def sources_for(to_status: str) -> frozenset[str]:
    """All statuses from which ``to_status`` is reachable in one step."""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if to_status in targets)


def stale_job_outcome(job: Job, now: datetime, error_details: dict[str, Any]) -> Job:
    """Next state of a job whose worker stopped reporting while it was processing.

    The job is retried under the next attempt count, or failed once its
    retries are used up.
    """
    details = {**error_details, "attempt_count": job.attempt_count}
    if job.attempt_count < job.max_retries:
        check_transition(job.status, "retrying")
        return job.with_changes(
            status="retrying",
            attempt_count=job.attempt_count + 1,
            available_at=now,
            error_details=details,
        )
    check_transition(job.status, "failed")
    return job.with_changes(status="failed", error_details=details, completed_at=now)
