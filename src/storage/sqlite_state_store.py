# src/storage/sqlite_state_store.py - v1
"""SQLite-backed state store (STATE_STORE_BACKEND=sqlite).

Uses stdlib sqlite3. Each record is stored as its pydantic JSON in a
``data`` column next to the indexed columns used for filtering. Status
and version checks are part of the UPDATE's WHERE clause, so conditional
transitions stay atomic across processes sharing the database file.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
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

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    version INTEGER NOT NULL,
    is_cancelled INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration INTEGER NOT NULL,
    parent_job_id TEXT,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    available_at TEXT,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_session ON jobs(session_id, stage_slug, iteration);
CREATE INDEX IF NOT EXISTS idx_jobs_parent ON jobs(parent_job_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE TABLE IF NOT EXISTS contributions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration INTEGER NOT NULL,
    model_id TEXT NOT NULL,
    document_key TEXT NOT NULL,
    contribution_type TEXT NOT NULL,
    edit_key TEXT NOT NULL,
    is_latest INTEGER NOT NULL,
    storage_path TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contrib_session
    ON contributions(session_id, stage_slug, iteration);
CREATE INDEX IF NOT EXISTS idx_contrib_edit_key ON contributions(session_id, edit_key);
CREATE INDEX IF NOT EXISTS idx_contrib_path ON contributions(storage_path);
CREATE TABLE IF NOT EXISTS feedback (
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration INTEGER NOT NULL,
    model_id TEXT NOT NULL,
    document_key TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (session_id, stage_slug, iteration, model_id, document_key)
);
CREATE TABLE IF NOT EXISTS seed_prompts (
    session_id TEXT NOT NULL,
    stage_slug TEXT NOT NULL,
    iteration INTEGER NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (session_id, stage_slug, iteration)
);
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _in_clause(values: Iterable[str]) -> tuple[str, list[str]]:
    items = list(values)
    return ",".join("?" for _ in items), items


class SqliteStateStore(BaseStateStore):
    """SQLite state store for durable single-host deployments."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._lock = asyncio.Lock()

    # --- Projects ---

    async def create_project(self, project: Project) -> Project:
        async with self._lock:
            self._conn.execute(
                "INSERT INTO projects (id, user_id, data) VALUES (?, ?, ?)",
                (project.id, project.user_id, project.model_dump_json()),
            )
            self._conn.commit()
        return project

    async def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT data FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return Project.model_validate_json(row[0]) if row else None

    # --- Sessions ---

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            self._conn.execute(
                "INSERT INTO sessions (id, project_id, version, is_cancelled, data) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.project_id,
                    session.version,
                    int(session.is_cancelled),
                    session.model_dump_json(),
                ),
            )
            self._conn.commit()
        return session

    async def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT data FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return Session.model_validate_json(row[0]) if row else None

    async def list_sessions(self, project_id: str) -> list[Session]:
        rows = self._conn.execute(
            "SELECT data FROM sessions WHERE project_id = ? ORDER BY rowid", (project_id,)
        ).fetchall()
        return [Session.model_validate_json(r[0]) for r in rows]

    async def update_session(
        self, session_id: str, expected_version: int, **changes: Any
    ) -> Session:
        async with self._lock:
            current = await self.get_session(session_id)
            if current is None:
                raise NotFoundError(f"Session {session_id} not found")
            updated = Session.model_validate(
                {
                    **current.model_dump(),
                    **changes,
                    "version": expected_version + 1,
                    "updated_at": utcnow(),
                }
            )
            cursor = self._conn.execute(
                "UPDATE sessions SET version = ?, is_cancelled = ?, data = ? "
                "WHERE id = ? AND version = ?",
                (
                    updated.version,
                    int(updated.is_cancelled),
                    updated.model_dump_json(),
                    session_id,
                    expected_version,
                ),
            )
            self._conn.commit()
            if cursor.rowcount == 0:
                raise ConcurrencyConflictError(
                    f"Session {session_id} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            return updated

    # --- Jobs ---

    def _job_row(self, job: Job) -> tuple:
        return (
            job.id,
            job.session_id,
            job.stage_slug,
            job.iteration_number,
            job.parent_job_id,
            job.job_type,
            job.status,
            _ts(job.created_at),
            _ts(job.available_at),
            job.model_dump_json(),
        )

    async def insert_jobs(self, jobs: Iterable[Job]) -> list[Job]:
        inserted = list(jobs)
        async with self._lock:
            self._conn.executemany(
                "INSERT INTO jobs (id, session_id, stage_slug, iteration, parent_job_id, "
                "job_type, status, created_at, available_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._job_row(j) for j in inserted],
            )
            self._conn.commit()
        return inserted

    async def get_job(self, job_id: str) -> Job | None:
        row = self._conn.execute("SELECT data FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job.model_validate_json(row[0]) if row else None

    def _write_job_if(self, job: Job, expected_status: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE jobs SET status = ?, available_at = ?, data = ? "
            "WHERE id = ? AND status = ?",
            (job.status, _ts(job.available_at), job.model_dump_json(), job.id, expected_status),
        )
        self._conn.commit()
        return cursor.rowcount == 1

    async def transition_job(
        self,
        job_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        **changes: Any,
    ) -> Job | None:
        allowed = set(from_statuses)
        async with self._lock:
            current = await self.get_job(job_id)
            if current is None:
                raise NotFoundError(f"Job {job_id} not found")
            if current.status not in allowed:
                return None
            check_transition(current.status, to_status)
            updated = current.with_changes(**changes, status=to_status)
            if not self._write_job_if(updated, current.status):
                return None
            return updated

    async def requeue_stale_jobs(
        self, stale_before: datetime, now: datetime, error_details: dict[str, Any]
    ) -> list[Job]:
        moved: list[Job] = []
        async with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM jobs WHERE status = 'processing' ORDER BY created_at, id"
            ).fetchall()
            for (data,) in rows:
                job = Job.model_validate_json(data)
                if job.started_at is None or job.started_at > stale_before:
                    continue
                updated = stale_job_outcome(job, now, error_details)
                # the claim must be unchanged since it was read
                cursor = self._conn.execute(
                    "UPDATE jobs SET status = ?, available_at = ?, data = ? "
                    "WHERE id = ? AND data = ?",
                    (updated.status, _ts(updated.available_at), updated.model_dump_json(),
                     job.id, data),
                )
                self._conn.commit()
                if cursor.rowcount == 1:
                    moved.append(updated)
        return moved

    async def claim_next_job(self, now: datetime) -> Job | None:
        placeholders, statuses = _in_clause(sorted(CLAIMABLE_STATUSES))
        async with self._lock:
            rows = self._conn.execute(
                f"SELECT j.data FROM jobs j JOIN sessions s ON s.id = j.session_id "
                f"WHERE j.status IN ({placeholders}) "
                f"AND (j.available_at IS NULL OR j.available_at <= ?) "
                f"AND s.is_cancelled = 0 "
                f"ORDER BY j.created_at, j.id LIMIT 16",
                (*statuses, _ts(now)),
            ).fetchall()
            for (data,) in rows:
                job = Job.model_validate_json(data)
                claimed = job.with_changes(status="processing", started_at=now)
                if self._write_job_if(claimed, job.status):
                    return claimed
        return None

    async def next_available_at(self) -> datetime | None:
        placeholders, statuses = _in_clause(sorted(CLAIMABLE_STATUSES))
        row = self._conn.execute(
            f"SELECT MIN(COALESCE(j.available_at, j.created_at)) FROM jobs j "
            f"JOIN sessions s ON s.id = j.session_id "
            f"WHERE j.status IN ({placeholders}) AND s.is_cancelled = 0",
            statuses,
        ).fetchone()
        if not row or row[0] is None:
            return None
        return datetime.fromisoformat(row[0])

    async def list_jobs(
        self,
        session_id: str | None = None,
        stage_slug: str | None = None,
        iteration: int | None = None,
        parent_job_id: str | None = None,
        statuses: Iterable[str] | None = None,
        job_type: str | None = None,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("session_id", session_id),
            ("stage_slug", stage_slug),
            ("iteration", iteration),
            ("parent_job_id", parent_job_id),
            ("job_type", job_type),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if statuses is not None:
            placeholders, values = _in_clause(statuses)
            if not values:
                return []
            clauses.append(f"status IN ({placeholders})")
            params.extend(values)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT data FROM jobs {where} ORDER BY created_at, id", params
        ).fetchall()
        return [Job.model_validate_json(r[0]) for r in rows]

    # --- Contributions ---

    async def save_contribution(self, contribution: Contribution) -> Contribution:
        async with self._lock:
            if contribution.is_latest_edit:
                peers = self._conn.execute(
                    "SELECT data FROM contributions "
                    "WHERE session_id = ? AND edit_key = ? AND id != ? AND is_latest = 1",
                    (contribution.session_id, contribution.edit_key, contribution.id),
                ).fetchall()
                for (data,) in peers:
                    peer = Contribution.model_validate_json(data)
                    peer.is_latest_edit = False
                    self._conn.execute(
                        "UPDATE contributions SET is_latest = 0, data = ? WHERE id = ?",
                        (peer.model_dump_json(), peer.id),
                    )
            self._conn.execute(
                "INSERT OR REPLACE INTO contributions (id, session_id, stage_slug, "
                "iteration, model_id, document_key, contribution_type, edit_key, "
                "is_latest, storage_path, created_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    contribution.id,
                    contribution.session_id,
                    contribution.stage_slug,
                    contribution.iteration_number,
                    contribution.model_id,
                    contribution.document_key,
                    contribution.contribution_type,
                    contribution.edit_key,
                    int(contribution.is_latest_edit),
                    contribution.storage_path,
                    _ts(contribution.created_at),
                    contribution.model_dump_json(),
                ),
            )
            self._conn.commit()
        return contribution

    async def get_contribution(self, contribution_id: str) -> Contribution | None:
        row = self._conn.execute(
            "SELECT data FROM contributions WHERE id = ?", (contribution_id,)
        ).fetchone()
        return Contribution.model_validate_json(row[0]) if row else None

    async def find_contribution_by_path(self, storage_path: str) -> Contribution | None:
        row = self._conn.execute(
            "SELECT data FROM contributions WHERE storage_path = ?", (storage_path,)
        ).fetchone()
        return Contribution.model_validate_json(row[0]) if row else None

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
        clauses = ["session_id = ?"]
        params: list[Any] = [session_id]
        for column, value in (
            ("stage_slug", stage_slug),
            ("iteration", iteration),
            ("model_id", model_id),
            ("document_key", document_key),
            ("contribution_type", contribution_type),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if latest_only:
            clauses.append("is_latest = 1")
        rows = self._conn.execute(
            f"SELECT data FROM contributions WHERE {' AND '.join(clauses)} "
            f"ORDER BY created_at, storage_path",
            params,
        ).fetchall()
        return [Contribution.model_validate_json(r[0]) for r in rows]

    # --- Feedback ---

    async def upsert_feedback(self, feedback: Feedback) -> Feedback:
        async with self._lock:
            row = self._conn.execute(
                "SELECT data FROM feedback WHERE session_id = ? AND stage_slug = ? "
                "AND iteration = ? AND model_id = ? AND document_key = ?",
                feedback.natural_key,
            ).fetchone()
            if row:
                existing = Feedback.model_validate_json(row[0])
                feedback = feedback.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": utcnow(),
                    }
                )
            self._conn.execute(
                "INSERT OR REPLACE INTO feedback (session_id, stage_slug, iteration, "
                "model_id, document_key, data) VALUES (?, ?, ?, ?, ?, ?)",
                (*feedback.natural_key, feedback.model_dump_json()),
            )
            self._conn.commit()
        return feedback

    async def list_feedback(
        self,
        session_id: str,
        stage_slug: str | None = None,
        iteration: int | None = None,
        model_id: str | None = None,
        document_key: str | None = None,
    ) -> list[Feedback]:
        clauses = ["session_id = ?"]
        params: list[Any] = [session_id]
        for column, value in (
            ("stage_slug", stage_slug),
            ("iteration", iteration),
            ("model_id", model_id),
            ("document_key", document_key),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        rows = self._conn.execute(
            f"SELECT data FROM feedback WHERE {' AND '.join(clauses)} "
            f"ORDER BY model_id, document_key",
            params,
        ).fetchall()
        return [Feedback.model_validate_json(r[0]) for r in rows]

    # --- Seed prompts ---

    async def save_seed_prompt(self, seed: SeedPrompt) -> SeedPrompt:
        async with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO seed_prompts (session_id, stage_slug, iteration, data) "
                "VALUES (?, ?, ?, ?)",
                (seed.session_id, seed.stage_slug, seed.iteration_number, seed.model_dump_json()),
            )
            self._conn.commit()
        return seed

    async def get_seed_prompt(
        self, session_id: str, stage_slug: str, iteration: int
    ) -> SeedPrompt | None:
        row = self._conn.execute(
            "SELECT data FROM seed_prompts WHERE session_id = ? AND stage_slug = ? "
            "AND iteration = ?",
            (session_id, stage_slug, iteration),
        ).fetchone()
        return SeedPrompt.model_validate_json(row[0]) if row else None

    async def close(self) -> None:
        self._conn.close()

