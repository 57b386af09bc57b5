# src/storage/base_state_store.py - v1
"""Abstract durable state store.

Holds projects, sessions, jobs, contributions, feedback and seed prompts.
Two operations carry the concurrency guarantees of the engine:

* ``update_session`` is a compare-and-set on ``Session.version``;
* ``transition_job`` / ``claim_next_job`` move a job only if its current
  status is one of the expected source statuses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

from dialectica.core.models import Contribution, Feedback, Project, SeedPrompt, Session
from dialectica.jobs.models import Job


class BaseStateStore(ABC):
    """Repository interface shared by the memory and SQLite backends."""

    # --- Projects ---

    @abstractmethod
    async def create_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None: ...

    # --- Sessions ---

    @abstractmethod
    async def create_session(self, session: Session) -> Session: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Session | None: ...

    @abstractmethod
    async def list_sessions(self, project_id: str) -> list[Session]:
        """Sessions of a project, oldest first."""

    @abstractmethod
    async def update_session(
        self, session_id: str, expected_version: int, **changes: Any
    ) -> Session:
        """Apply changes if the stored version equals expected_version.

        The stored version is incremented on success.

        Raises:
            ConcurrencyConflictError: If another writer got there first.
            NotFoundError: If the session does not exist.
        """

    # --- Jobs ---

    @abstractmethod
    async def insert_jobs(self, jobs: Iterable[Job]) -> list[Job]: ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None: ...

    @abstractmethod
    async def transition_job(
        self,
        job_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        **changes: Any,
    ) -> Job | None:
        """Atomically move a job if its status is in from_statuses.

        Returns the updated job, or None when the status did not match.

        Raises:
            InvalidTransitionError: The move is not an edge of the job
                status graph.
        """

    @abstractmethod
    async def requeue_stale_jobs(
        self, stale_before: datetime, now: datetime, error_details: dict[str, Any]
    ) -> list[Job]:
        """Recover jobs claimed at or before ``stale_before`` and still processing.

        A job with attempts left moves to ``retrying`` under the next
        ``attempt_count``; an exhausted one fails. Both carry
        ``error_details`` plus their attempt count. Returns the moved jobs.
        """

    @abstractmethod
    async def claim_next_job(self, now: datetime) -> Job | None:
        """Claim the oldest claimable, available job of a live session."""

    @abstractmethod
    async def next_available_at(self) -> datetime | None:
        """Earliest available_at among claimable jobs of live sessions."""

    @abstractmethod
    async def list_jobs(
        self,
        session_id: str | None = None,
        stage_slug: str | None = None,
        iteration: int | None = None,
        parent_job_id: str | None = None,
        statuses: Iterable[str] | None = None,
        job_type: str | None = None,
    ) -> list[Job]: ...

    # --- Contributions ---

    @abstractmethod
    async def save_contribution(self, contribution: Contribution) -> Contribution:
        """Insert or replace by id; a latest edit supersedes its edit_key peers."""

    @abstractmethod
    async def get_contribution(self, contribution_id: str) -> Contribution | None: ...

    @abstractmethod
    async def find_contribution_by_path(self, storage_path: str) -> Contribution | None: ...

    @abstractmethod
    async def list_contributions(
        self,
        session_id: str,
        stage_slug: str | None = None,
        iteration: int | None = None,
        model_id: str | None = None,
        document_key: str | None = None,
        contribution_type: str | None = None,
        latest_only: bool = True,
    ) -> list[Contribution]: ...

    # --- Feedback ---

    @abstractmethod
    async def upsert_feedback(self, feedback: Feedback) -> Feedback:
        """Keep at most one record per (session, stage, iteration, model, key)."""

    @abstractmethod
    async def list_feedback(
        self,
        session_id: str,
        stage_slug: str | None = None,
        iteration: int | None = None,
        model_id: str | None = None,
        document_key: str | None = None,
    ) -> list[Feedback]: ...

    # --- Seed prompts ---

    @abstractmethod
    async def save_seed_prompt(self, seed: SeedPrompt) -> SeedPrompt: ...

    @abstractmethod
    async def get_seed_prompt(
        self, session_id: str, stage_slug: str, iteration: int
    ) -> SeedPrompt | None: ...

    async def close(self) -> None:
        """Release backend resources."""
