# tests/unit/storage/test_unit_state_stores.py - v1
"""Tests for the memory and SQLite state stores.

Both backends run the same cases: conditional session updates, guarded
job transitions, atomic claims, latest-edit tracking and feedback upserts.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from dialectica.core.errors import ConcurrencyConflictError, NotFoundError
from dialectica.core.models import Contribution, Feedback, Project, SeedPrompt, Session, utcnow
from dialectica.jobs.models import Job, PlanPayload
from dialectica.jobs.transitions import InvalidTransitionError
from dialectica.storage.memory_state_store import MemoryStateStore
from dialectica.storage.sqlite_state_store import SqliteStateStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStateStore()
    return SqliteStateStore(tmp_path / "state.db")


async def _session(store, **overrides) -> Session:
    project = Project(user_id="u1", initial_prompt="x")
    await store.create_project(project)
    session = Session(
        project_id=project.id,
        status="pending_thesis",
        current_stage_id="stage-thesis",
        selected_model_ids=["m1"],
        **overrides,
    )
    return await store.create_session(session)


def _job(session_id: str, **overrides) -> Job:
    data = dict(
        job_type="PLAN",
        session_id=session_id,
        user_id="u1",
        stage_slug="thesis",
        iteration_number=1,
        payload=PlanPayload(model_id="m1", recipe_id="thesis_v1", recipe_version=1),
    )
    data.update(overrides)
    return Job(**data)


def _contribution(session_id: str, path: str, **overrides) -> Contribution:
    data = dict(
        session_id=session_id,
        project_id="p1",
        stage_slug="thesis",
        iteration_number=1,
        model_id="m1",
        model_slug="m1",
        contribution_type="thesis",
        document_key="business_case",
        storage_path=path,
        file_name=path.rsplit("/", 1)[-1],
        edit_key="thesis:1:m1:business_case:m1",
    )
    data.update(overrides)
    return Contribution(**data)


class TestSessions:
    @pytest.mark.asyncio
    async def test_update_bumps_version(self, store):
        session = await _session(store)
        updated = await store.update_session(session.id, 0, status="running_thesis")
        assert updated.version == 1
        assert (await store.get_session(session.id)).status == "running_thesis"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, store):
        session = await _session(store)
        await store.update_session(session.id, 0, status="running_thesis")
        with pytest.raises(ConcurrencyConflictError):
            await store.update_session(session.id, 0, status="thesis_completed")

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        with pytest.raises(NotFoundError):
            await store.update_session("nope", 0, status="x")


class TestJobs:
    @pytest.mark.asyncio
    async def test_transition_guarded_by_status(self, store):
        session = await _session(store)
        job = _job(session.id)
        await store.insert_jobs([job])
        assert await store.transition_job(job.id, ["processing"], "completed") is None
        moved = await store.transition_job(job.id, ["pending"], "processing", attempt_count=1)
        assert moved.status == "processing"
        assert moved.attempt_count == 1

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, store):
        session = await _session(store)
        job = _job(session.id)
        await store.insert_jobs([job])
        first = await store.claim_next_job(utcnow())
        second = await store.claim_next_job(utcnow())
        assert first.id == job.id
        assert first.status == "processing"
        assert first.started_at is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_claim_respects_available_at(self, store):
        session = await _session(store)
        later = utcnow() + timedelta(seconds=60)
        job = _job(session.id, status="retrying", available_at=later)
        await store.insert_jobs([job])
        assert await store.claim_next_job(utcnow()) is None
        assert await store.next_available_at() == later
        assert (await store.claim_next_job(later)).id == job.id

    @pytest.mark.asyncio
    async def test_cancelled_sessions_are_skipped(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id)])
        await store.update_session(session.id, 0, is_cancelled=True)
        assert await store.claim_next_job(utcnow()) is None
        assert await store.next_available_at() is None

    @pytest.mark.asyncio
    async def test_waiting_parent_not_claimed(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id, status="waiting_for_children")])
        assert await store.claim_next_job(utcnow()) is None

    @pytest.mark.asyncio
    async def test_list_filters(self, store):
        session = await _session(store)
        parent = _job(session.id)
        child = _job(session.id, parent_job_id=parent.id, stage_slug="antithesis")
        await store.insert_jobs([parent, child])
        assert [j.id for j in await store.list_jobs(parent_job_id=parent.id)] == [child.id]
        assert [j.id for j in await store.list_jobs(stage_slug="thesis")] == [parent.id]
        assert await store.list_jobs(statuses=["failed"]) == []

    @pytest.mark.asyncio
    async def test_transition_outside_graph_rejected(self, store):
        session = await _session(store)
        job = _job(session.id)
        await store.insert_jobs([job])
        with pytest.raises(InvalidTransitionError):
            await store.transition_job(job.id, ["pending"], "completed")
        assert (await store.get_job(job.id)).status == "pending"


class TestStaleClaims:
    DETAILS = {"type": "ClaimExpired", "category": "timeout", "message": "lost"}

    @pytest.mark.asyncio
    async def test_fresh_claim_untouched(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id)])
        claimed = await store.claim_next_job(utcnow())
        now = utcnow()
        assert await store.requeue_stale_jobs(now - timedelta(minutes=10), now, self.DETAILS) == []
        assert (await store.get_job(claimed.id)).status == "processing"

    @pytest.mark.asyncio
    async def test_stale_claim_becomes_next_attempt(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id)])
        claimed = await store.claim_next_job(utcnow() - timedelta(hours=1))
        now = utcnow()
        (moved,) = await store.requeue_stale_jobs(now - timedelta(minutes=10), now, self.DETAILS)
        assert moved.id == claimed.id
        assert moved.status == "retrying"
        assert moved.attempt_count == 1
        assert moved.available_at == now
        assert moved.error_details["type"] == "ClaimExpired"
        assert moved.error_details["attempt_count"] == 0
        again = await store.claim_next_job(now)
        assert again.id == claimed.id
        assert again.attempt_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_claim_fails(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id, max_retries=1, attempt_count=1)])
        await store.claim_next_job(utcnow() - timedelta(hours=1))
        now = utcnow()
        (moved,) = await store.requeue_stale_jobs(now - timedelta(minutes=10), now, self.DETAILS)
        assert moved.status == "failed"
        assert moved.completed_at == now
        assert moved.attempt_count == 1
        assert await store.claim_next_job(now) is None

    @pytest.mark.asyncio
    async def test_only_processing_jobs_considered(self, store):
        session = await _session(store)
        await store.insert_jobs([_job(session.id, status="waiting_for_children")])
        now = utcnow() + timedelta(hours=1)
        assert await store.requeue_stale_jobs(now, now, self.DETAILS) == []


class TestSessionListing:
    @pytest.mark.asyncio
    async def test_sessions_of_project(self, store):
        first = await _session(store)
        second = await store.create_session(
            Session(
                project_id=first.project_id,
                status="pending_thesis",
                current_stage_id="stage-thesis",
            )
        )
        await _session(store)
        listed = await store.list_sessions(first.project_id)
        assert [s.id for s in listed] == [first.id, second.id]
        assert await store.list_sessions("missing") == []

class TestContributions:
    @pytest.mark.asyncio
    async def test_latest_edit_supersedes(self, store):
        session = await _session(store)
        original = _contribution(session.id, "a/documents/m1_0_business_case.md")
        await store.save_contribution(original)
        edit = _contribution(
            session.id, "a/documents/m1_0_business_case__edit2.md", edit_version=2
        )
        await store.save_contribution(edit)

        latest = await store.list_contributions(session.id, stage_slug="thesis")
        assert [c.id for c in latest] == [edit.id]
        everything = await store.list_contributions(session.id, latest_only=False)
        assert len(everything) == 2
        assert (await store.get_contribution(original.id)).is_latest_edit is False

    @pytest.mark.asyncio
    async def test_find_by_path(self, store):
        session = await _session(store)
        c = _contribution(session.id, "a/b.md")
        await store.save_contribution(c)
        assert (await store.find_contribution_by_path("a/b.md")).id == c.id
        assert await store.find_contribution_by_path("a/c.md") is None

    @pytest.mark.asyncio
    async def test_filter_by_type_and_model(self, store):
        session = await _session(store)
        await store.save_contribution(_contribution(session.id, "a/1.md"))
        await store.save_contribution(
            _contribution(
                session.id, "a/2.json", model_id="m2", contribution_type="header_context",
                edit_key="other",
            )
        )
        headers = await store.list_contributions(session.id, contribution_type="header_context")
        assert [c.model_id for c in headers] == ["m2"]
        assert len(await store.list_contributions(session.id, model_id="m1")) == 1


class TestFeedbackAndSeeds:
    @pytest.mark.asyncio
    async def test_feedback_upsert_keeps_one_record(self, store):
        session = await _session(store)

        def fb(content: str) -> Feedback:
            return Feedback(
                session_id=session.id,
                project_id="p1",
                stage_slug="thesis",
                iteration_number=1,
                model_id="m1",
                document_key="business_case",
                user_id="u1",
                content=content,
                storage_path="x",
            )

        first = await store.upsert_feedback(fb("first"))
        second = await store.upsert_feedback(fb("second"))
        records = await store.list_feedback(session.id, stage_slug="thesis")
        assert [r.content for r in records] == ["second"]
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_seed_prompt_roundtrip(self, store):
        session = await _session(store)
        seed = SeedPrompt(
            session_id=session.id,
            stage_slug="thesis",
            iteration_number=1,
            storage_path="p/seed_prompt.md",
            content="hello",
            metadata={"source_stage": None},
        )
        await store.save_seed_prompt(seed)
        loaded = await store.get_seed_prompt(session.id, "thesis", 1)
        assert loaded.content == "hello"
        assert await store.get_seed_prompt(session.id, "thesis", 2) is None
