# src/storage/memory_state_store.py - v1
"""In-process state store (STATE_STORE_BACKEND=memory).

All mutations run under one asyncio.Lock, which gives the conditional
updates their atomicity within a single event loop. Records are copied
on the way in and out so callers never share mutable state.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Iterable

from dialectica.core.errors import ConcurrencyConflictError, NotFoundError
from dialectica.core.models import (
    Contribution,
    Feedback,
    Project,
    SeedPrompt,
    Session,
    utcnow,
)
from dialectica.jobs.models import CLAIMABLE_STATUSES, Job
from dialectica.jobs.transitions import check_transition, stale_job_outcome
from dialectica.storage.base_state_store import BaseStateStore


class MemoryStateStore(BaseStateStore):
    """Dictionary-backed store for tests and single-process runs."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._projects: dict[str, Project] = {}
        self._sessions: dict[str, Session] = {}
        self._jobs: dict[str, Job] = {}
        self._contributions: dict[str, Contribution] = {}
        self._feedback: dict[tuple[str, str, int, str, str], Feedback] = {}
        self._seeds: dict[tuple[str, str, int], SeedPrompt] = {}

    # --- Projects ---

    async def create_project(self, project: Project) -> Project:
        async with self._lock:
            self._projects[project.id] = project.model_copy(deep=True)
        return project

    async def get_project(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    # --- Sessions ---

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
        return session

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def list_sessions(self, project_id: str) -> list[Session]:
        sessions = [s for s in self._sessions.values() if s.project_id == project_id]
        sessions.sort(key=lambda s: s.created_at)
        return [s.model_copy(deep=True) for s in sessions]

    async def update_session(
        self, session_id: str, expected_version: int, **changes: Any
    ) -> Session:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFoundError(f"Session {session_id} not found")
            if current.version != expected_version:
                raise ConcurrencyConflictError(
                    f"Session {session_id} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            updated = current.model_copy(
                update={**changes, "version": current.version + 1, "updated_at": utcnow()},
                deep=True,
            )
            self._sessions[session_id] = updated
            return updated.model_copy(deep=True)

    # --- Jobs ---

    async def insert_jobs(self, jobs: Iterable[Job]) -> list[Job]:
        inserted = list(jobs)
        async with self._lock:
            for job in inserted:
                self._jobs[job.id] = job.model_copy(deep=True)
        return inserted

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def transition_job(
        self,
        job_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        **changes: Any,
    ) -> Job | None:
        allowed = set(from_statuses)
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")
            if current.status not in allowed:
                return None
            check_transition(current.status, to_status)
            updated = current.with_changes(**changes, status=to_status)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def requeue_stale_jobs(
        self, stale_before: datetime, now: datetime, error_details: dict[str, Any]
    ) -> list[Job]:
        moved: list[Job] = []
        async with self._lock:
            for job in list(self._jobs.values()):
                if job.status != "processing" or job.started_at is None:
                    continue
                if job.started_at > stale_before:
                    continue
                updated = stale_job_outcome(job, now, error_details)
                self._jobs[job.id] = updated
                moved.append(updated.model_copy(deep=True))
        return moved

    async def claim_next_job(self, now: datetime) -> Job | None:
        async with self._lock:
            for job in sorted(self._jobs.values(), key=lambda j: (j.created_at, j.id)):
                if job.status not in CLAIMABLE_STATUSES:
                    continue
                if job.available_at is not None and job.available_at > now:
                    continue
                session = self._sessions.get(job.session_id)
                if session is None or session.is_cancelled:
                    continue
                updated = job.with_changes(status="processing", started_at=now)
                self._jobs[job.id] = updated
                return updated.model_copy(deep=True)
        return None

    async def next_available_at(self) -> datetime | None:
        candidates = [
            job.available_at or job.created_at
            for job in self._jobs.values()
            if job.status in CLAIMABLE_STATUSES
            and (s := self._sessions.get(job.session_id)) is not None
            and not s.is_cancelled
        ]
        return min(candidates) if candidates else None

    async def list_jobs(
        self,
        session_id: str | None = None,
        stage_slug: str | None = None,
        iteration: int | None = None,
        parent_job_id: str | None = None,
        statuses: Iterable[str] | None = None,
        job_type: str | None = None,
    ) -> list[Job]:
        wanted = set(statuses) if statuses is not None else None
        result = [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if (session_id is None or job.session_id == session_id)
            and (stage_slug is None or job.stage_slug == stage_slug)
            and (iteration is None or job.iteration_number == iteration)
            and (parent_job_id is None or job.parent_job_id == parent_job_id)
            and (wanted is None or job.status in wanted)
            and (job_type is None or job.job_type == job_type)
        ]
        return sorted(result, key=lambda j: (j.created_at, j.id))

    # --- Contributions ---

    async def save_contribution(self, contribution: Contribution) -> Contribution:
        async with self._lock:
            if contribution.is_latest_edit:
                for other in self._contributions.values():
                    if (
                        other.id != contribution.id
                        and other.session_id == contribution.session_id
                        and other.edit_key == contribution.edit_key
                    ):
                        other.is_latest_edit = False
            self._contributions[contribution.id] = contribution.model_copy(deep=True)
        return contribution

    async def get_contribution(self, contribution_id: str) -> Contribution | None:
        c = self._contributions.get(contribution_id)
        return c.model_copy(deep=True) if c else None

    async def find_contribution_by_path(self, storage_path: str) -> Contribution | None:
        for c in self._contributions.values():
            if c.storage_path == storage_path:
                return c.model_copy(deep=True)
        return None

    async def list_contributions(
        self,
        session_id: str,
        stage_slug: str | None = None,
        iteration: int | None = None,
        model_id: str | None = None,
        document_key: str | None = None,
        contribution_type: str | None = None,
        latest_only: bool = True,
    ) -> list[Contribution]:
        result = [
            c.model_copy(deep=True)
            for c in self._contributions.values()
            if c.session_id == session_id
            and (stage_slug is None or c.stage_slug == stage_slug)
            and (iteration is None or c.iteration_number == iteration)
            and (model_id is None or c.model_id == model_id)
            and (document_key is None or c.document_key == document_key)
            and (contribution_type is None or c.contribution_type == contribution_type)
            and (not latest_only or c.is_latest_edit)
        ]
        return sorted(result, key=lambda c: (c.created_at, c.storage_path))

    # --- Feedback ---

    async def upsert_feedback(self, feedback: Feedback) -> Feedback:
        async with self._lock:
            existing = self._feedback.get(feedback.natural_key)
            if existing is not None:
                feedback = feedback.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": utcnow(),
                    }
                )
            self._feedback[feedback.natural_key] = feedback.model_copy(deep=True)
        return feedback

    async def list_feedback(
        self,
        session_id: str,
        stage_slug: str | None = None,
        iteration: int | None = None,
        model_id: str | None = None,
        document_key: str | None = None,
    ) -> list[Feedback]:
        result = [
            f.model_copy(deep=True)
            for f in self._feedback.values()
            if f.session_id == session_id
            and (stage_slug is None or f.stage_slug == stage_slug)
            and (iteration is None or f.iteration_number == iteration)
            and (model_id is None or f.model_id == model_id)
            and (document_key is None or f.document_key == document_key)
        ]
        return sorted(result, key=lambda f: (f.model_id, f.document_key))

    # --- Seed prompts ---

    async def save_seed_prompt(self, seed: SeedPrompt) -> SeedPrompt:
        async with self._lock:
            self._seeds[(seed.session_id, seed.stage_slug, seed.iteration_number)] = (
                seed.model_copy(deep=True)
            )
        return seed

    async def get_seed_prompt(
        self, session_id: str, stage_slug: str, iteration: int
    ) -> SeedPrompt | None:
        seed = self._seeds.get((session_id, stage_slug, iteration))
        return seed.model_copy(deep=True) if seed else None

