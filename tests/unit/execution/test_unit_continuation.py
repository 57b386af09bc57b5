# tests/unit/execution/test_unit_continuation.py - v1
"""Tests for execution/continuation.py.

Jobs are inserted in ``processing`` directly; the manager only moves them.
"""

from __future__ import annotations

import pytest

from dialectica.core.errors import ResponseContractError, TransientModelError
from dialectica.execution.continuation import ContinuationManager
from dialectica.execution.executor import ExecutionResult
from dialectica.jobs.models import ExecutePayload, Job, PlanPayload, PlanUnit


@pytest.fixture
def manager(state, settings):
    return ContinuationManager(state, settings)


def _execute_job(**overrides) -> Job:
    data = dict(
        job_type="EXECUTE",
        session_id="s1",
        user_id="u1",
        stage_slug="thesis",
        iteration_number=1,
        status="processing",
        max_retries=2,
        payload=ExecutePayload(
            model_id="m1",
            recipe_id="thesis_v1",
            recipe_version=1,
            step_slug="thesis_generate_documents",
            document_key="business_case",
            output_type="document",
            unit=PlanUnit(model_id="m1", unit_key="m1"),
        ),
    )
    data.update(overrides)
    return Job(**data)


async def _insert(state, job: Job) -> Job:
    await state.insert_jobs([job])
    return job


class TestRecordSuccess:
    @pytest.mark.asyncio
    async def test_completes_and_accumulates_tokens(self, manager, state):
        job = await _insert(state, _execute_job(results={"tokens_input": 5, "tokens_output": 7}))
        result = ExecutionResult(
            status="completed", contribution_ids=["c1"], tokens_input=1, tokens_output=2,
            finish_reason="stop",
        )
        done = await manager.record_success(job, result)
        assert done.status == "completed"
        assert done.completed_at is not None
        assert done.results["contribution_ids"] == ["c1"]
        assert done.results["tokens_input"] == 6
        assert done.results["tokens_output"] == 9

    @pytest.mark.asyncio
    async def test_lost_race_returns_none(self, manager, state):
        job = await _insert(state, _execute_job(status="failed"))
        result = ExecutionResult(status="completed")
        assert await manager.record_success(job, result) is None


class TestRecordContinuation:
    @pytest.mark.asyncio
    async def test_requeues_with_partial(self, manager, state):
        job = await _insert(state, _execute_job())
        result = ExecutionResult(
            status="needs_continuation", content="half", finish_reason="length", truncated=True
        )
        queued = await manager.record_continuation(job, result)
        assert queued.status == "pending_continuation"
        assert queued.payload.continuation_count == 1
        assert queued.results["partial_content"] == "half"
        assert queued.available_at is not None

    @pytest.mark.asyncio
    async def test_plan_job_rejected(self, manager):
        job = Job(
            job_type="PLAN", session_id="s1", user_id="u1", stage_slug="thesis",
            iteration_number=1, status="processing",
            payload=PlanPayload(model_id="m1", recipe_id="thesis_v1", recipe_version=1),
        )
        with pytest.raises(TypeError):
            await manager.record_continuation(job, ExecutionResult(status="needs_continuation"))


class TestRecordFailure:
    @pytest.mark.asyncio
    async def test_transient_error_retries(self, manager, state):
        job = await _insert(state, _execute_job())
        retried = await manager.record_failure(job, TransientModelError("busy"))
        assert retried.status == "retrying"
        assert retried.attempt_count == 1
        assert retried.error_details["category"] == "transient_model"
        assert retried.available_at is not None

    @pytest.mark.asyncio
    async def test_rate_limit_retries(self, manager, state):
        job = await _insert(state, _execute_job())
        retried = await manager.record_failure(job, RuntimeError("HTTP 429 Too Many Requests"))
        assert retried.status == "retrying"
        assert retried.error_details["category"] == "rate_limit"

    @pytest.mark.asyncio
    async def test_unrecognised_error_fails_immediately(self, manager, state):
        job = await _insert(state, _execute_job())
        failed = await manager.record_failure(
            job, ValueError("Error code: 401 - Incorrect API key provided")
        )
        assert failed.status == "failed"
        assert failed.attempt_count == 0
        assert failed.error_details["category"] == "unknown"

    @pytest.mark.asyncio
    async def test_contract_error_fails_immediately(self, manager, state):
        job = await _insert(state, _execute_job())
        failed = await manager.record_failure(
            job, ResponseContractError("bad header", missing=["feature_spec"])
        )
        assert failed.status == "failed"
        assert failed.error_details["type"] == "ResponseContractError"
        assert failed.error_details["category"] == "validation"
        assert failed.error_details["details"]["details"]["missing"] == ["feature_spec"]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, manager, state):
        job = await _insert(state, _execute_job(attempt_count=2))
        failed = await manager.record_failure(job, TransientModelError("busy"))
        assert failed.status == "failed"
        assert failed.error_details["attempt_count"] == 2
