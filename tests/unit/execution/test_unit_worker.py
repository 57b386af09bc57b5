# tests/unit/execution/test_unit_worker.py - v1
"""Tests for execution/worker.py and execution/completion.py.

Drives the thesis stage through the worker pool with scripted fake model
failures and checks retries, continuations and the parent barrier.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from dialectica.core.errors import ConcurrencyConflictError, TransientModelError
from dialectica.core.models import HEADER_CONTEXT, utcnow

USER_ID = "user-1"


async def _run_thesis(service, session, max_jobs=None):
    await service.generate_contributions(session.id, USER_ID, "thesis", 1)
    processed = await service.run_until_idle(max_jobs=max_jobs)
    return processed, await service.state.get_session(session.id)


def _execute_jobs(jobs, model_id: str):
    return [j for j in jobs if j.job_type == "EXECUTE" and j.model_id == model_id]


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_processes_every_job(self, service, session):
        processed, after = await _run_thesis(service, session)
        # 3 PLAN jobs claimed twice (header level, document level) + 3 headers + 12 documents
        assert processed == 21
        assert after.status == "thesis_completed"

    @pytest.mark.asyncio
    async def test_max_jobs_limits_claims(self, service, session):
        processed, after = await _run_thesis(service, session, max_jobs=1)
        assert processed == 1
        assert after.status == "running_thesis"

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, service, session, fake_clients):
        fake_clients["model-a"].errors = [TransientModelError("overloaded")]
        _, after = await _run_thesis(service, session)
        assert after.status == "thesis_completed"

        jobs = await service.state.list_jobs(session_id=session.id)
        header = next(
            j for j in _execute_jobs(jobs, "model-a")
            if j.payload.output_type == "header_context"
        )
        assert header.status == "completed"
        assert header.attempt_count == 1
        assert header.error_details["category"] == "transient_model"
        docs = await service.state.list_contributions(session.id, model_id="model-a")
        assert len([d for d in docs if d.document_key != HEADER_CONTEXT]) == 4

    @pytest.mark.asyncio
    async def test_retries_exhausted_fail_job(self, service, session, fake_clients):
        fake_clients["model-a"].errors = [TransientModelError("down")] * 3
        _, after = await _run_thesis(service, session)
        jobs = await service.state.list_jobs(session_id=session.id)
        header = _execute_jobs(jobs, "model-a")[0]
        assert header.status == "failed"
        assert header.attempt_count == 2
        assert after.status == "thesis_completed"

    @pytest.mark.asyncio
    async def test_truncated_document_continued(self, service, session, fake_clients):
        client = fake_clients["model-b"]
        client.truncate_keys = {"feature_spec"}
        await _run_thesis(service, session)

        assert client.document_calls.count("feature_spec") == 2
        docs = await service.state.list_contributions(
            session.id, model_id="model-b", document_key="feature_spec"
        )
        content = await service.get_contribution_content(docs[0].id, USER_ID)
        assert content == (
            "# feature_spec\n\nWritten by model-b. This section argues the position in detail.\n"
        )

    @pytest.mark.asyncio
    async def test_auth_error_fails_without_retry(self, service, session, fake_clients):
        fake_clients["model-a"].errors = [
            ValueError("Error code: 401 - Incorrect API key provided")
        ]
        _, after = await _run_thesis(service, session)
        jobs = await service.state.list_jobs(session_id=session.id)
        header = _execute_jobs(jobs, "model-a")[0]
        assert header.status == "failed"
        assert header.attempt_count == 0
        assert header.error_details["category"] == "unknown"
        assert len(fake_clients["model-a"].calls) == 1
        assert after.status == "thesis_completed"

    @pytest.mark.asyncio
    async def test_task_error_does_not_stop_other_jobs(self, service, session, monkeypatch):
        original = service.state_machine.aggregate_completion
        calls = {"n": 0}

        async def flaky(session_id, stage_slug, iteration):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrencyConflictError("simulated concurrent writer")
            return await original(session_id, stage_slug, iteration)

        monkeypatch.setattr(service.state_machine, "aggregate_completion", flaky)
        processed, after = await _run_thesis(service, session)
        assert processed == 21
        assert after.status == "thesis_completed"
        assert await service.state.list_jobs(session_id=session.id, statuses=["processing"]) == []


class TestAbandonedClaims:
    @pytest.mark.asyncio
    async def test_crashed_plan_is_claimed_again(self, service, session):
        await service.generate_contributions(session.id, USER_ID, "thesis", 1)
        # a worker that claimed this job an hour ago and never reported back
        lost = await service.state.claim_next_job(utcnow() - timedelta(hours=1))

        await service.run_until_idle()
        after = await service.state.get_session(session.id)
        assert after.status == "thesis_completed"

        plan = await service.state.get_job(lost.id)
        assert plan.status == "completed"
        assert plan.attempt_count == 1
        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        assert set(docs.by_model()) == {"model-a", "model-b", "model-c"}

    @pytest.mark.asyncio
    async def test_recent_claim_left_alone(self, service, session):
        await service.generate_contributions(session.id, USER_ID, "thesis", 1)
        await service.state.claim_next_job(utcnow())
        assert await service.pool.recover_stale_jobs() == []

    @pytest.mark.asyncio
    async def test_exhausted_claim_fails_parent(self, service, session):
        await service.generate_contributions(session.id, USER_ID, "thesis", 1)
        await service.run_until_idle(max_jobs=3)
        pending = await service.state.list_jobs(session_id=session.id, statuses=["pending"])
        child = next(j for j in pending if j.model_id == "model-a")
        await service.state.transition_job(
            child.id,
            ["pending"],
            "processing",
            attempt_count=2,
            started_at=utcnow() - timedelta(hours=1),
        )

        await service.run_until_idle()
        failed = await service.state.get_job(child.id)
        assert failed.status == "failed"
        assert failed.error_details["type"] == "ClaimExpired"
        parent = await service.state.get_job(child.parent_job_id)
        assert parent.status == "failed"
        assert parent.error_details["type"] == "ChildJobsFailed"

        after = await service.state.get_session(session.id)
        assert after.status == "thesis_completed"
        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        assert set(docs.by_model()) == {"model-b", "model-c"}


class TestCompletionBarrier:
    @pytest.mark.asyncio
    async def test_failed_child_fails_parent_but_stage_completes(
        self, service, session, fake_clients
    ):
        fake_clients["model-c"].bad_header = True
        _, after = await _run_thesis(service, session)

        plans = await service.state.list_jobs(session_id=session.id, job_type="PLAN")
        by_model = {p.model_id: p for p in plans}
        assert by_model["model-c"].status == "failed"
        assert by_model["model-c"].error_details["type"] == "ChildJobsFailed"
        assert by_model["model-a"].status == "completed"
        assert after.status == "thesis_completed"

        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        assert set(docs.by_model()) == {"model-a", "model-b"}

    @pytest.mark.asyncio
    async def test_parent_waits_for_children(self, service, session):
        await service.generate_contributions(session.id, USER_ID, "thesis", 1)
        await service.run_until_idle(max_jobs=3)
        plans = await service.state.list_jobs(session_id=session.id, job_type="PLAN")
        assert {p.status for p in plans} == {"waiting_for_children"}
        assert await service.watcher.on_job_transition(plans[0]) is None
