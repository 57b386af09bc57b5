# tests/integration/test_int_dialectic_flow.py - v1
"""End-to-end scenario: three fake models through thesis, antithesis and synthesis.

Runs the real planner, executor, worker pool and state machine against the
in-memory state store (and once against SQLite) with a temp-dir blob store.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import pytest

from dialectica.api.facade import DialecticService
from dialectica.config.recipes import ANTITHESIS_KEYS, THESIS_KEYS
from dialectica.core.models import HEADER_CONTEXT
from dialectica.stages.models import DocumentResponse
from dialectica.storage.local_blob_store import LocalBlobStore
from dialectica.storage.sqlite_state_store import SqliteStateStore

USER_ID = "user-1"
MODELS = ["model-a", "model-b", "model-c"]


async def _run_stage(service: DialecticService, session_id: str, stage: str, iteration: int = 1):
    await service.generate_contributions(session_id, USER_ID, stage, iteration)
    await service.run_until_idle()
    return await service.state.get_session(session_id)


async def _headers(service: DialecticService, session_id: str, stage: str):
    return await service.state.list_contributions(
        session_id, stage_slug=stage, iteration=1, contribution_type=HEADER_CONTEXT
    )


class TestThesisStage:
    @pytest.mark.asyncio
    async def test_three_models_produce_twelve_documents(self, service, session):
        after = await _run_stage(service, session.id, "thesis")

        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        assert len(docs.contributions) == 12
        assert {m: len(c) for m, c in docs.by_model().items()} == {m: 4 for m in MODELS}
        per_key = Counter(c.document_key for c in docs.contributions)
        assert per_key == {k: 3 for k in THESIS_KEYS}

        headers = await _headers(service, session.id, "thesis")
        assert len(headers) == 3
        assert {h.model_id for h in headers} == set(MODELS)

        assert after.status == "thesis_completed"
        assert after.current_stage_id == "stage-thesis"

    @pytest.mark.asyncio
    async def test_documents_reference_own_header_context(self, service, session):
        await _run_stage(service, session.id, "thesis")
        headers = {h.id: h for h in await _headers(service, session.id, "thesis")}
        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        for doc in docs.contributions:
            assert doc.source_document_id in headers
            assert headers[doc.source_document_id].model_id == doc.model_id

    @pytest.mark.asyncio
    async def test_progress_reports_all_jobs_terminal(self, service, session):
        await _run_stage(service, session.id, "thesis")
        progress = await service.get_stage_progress(
            session.id, USER_ID, "thesis", 1, include_graph=True
        )
        # 3 PLAN + 3 header + 12 document jobs
        assert progress.total_jobs == 18
        assert progress.is_complete
        assert progress.by_status == {"completed": 18}
        assert progress.documents == 12
        assert progress.graph is not None

    @pytest.mark.asyncio
    async def test_artifacts_written_to_blob_store(self, service, session, tmp_path: Path):
        await _run_stage(service, session.id, "thesis")
        docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
        for doc in docs.contributions:
            assert await service.artifacts.blobs.exists(doc.storage_path)
            assert doc.raw_response_path is not None
            assert await service.artifacts.blobs.exists(doc.raw_response_path)
        content = await service.get_contribution_content(docs.contributions[0].id, USER_ID)
        assert content.startswith("# ")


class TestStageSubmission:
    @pytest.mark.asyncio
    async def test_submit_moves_to_pending_antithesis(self, service, session):
        await _run_stage(service, session.id, "thesis")
        advanced = await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)

        assert advanced.status == "pending_antithesis"
        assert advanced.current_stage_id == "stage-antithesis"
        seed = await service.state.get_seed_prompt(session.id, "antithesis", 1)
        assert seed is not None
        assert "business_case" in seed.content

    @pytest.mark.asyncio
    async def test_double_submission_does_not_advance_twice(self, service, session):
        await _run_stage(service, session.id, "thesis")
        first = await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)
        second = await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)

        assert second.status == first.status == "pending_antithesis"
        assert second.current_stage_id == first.current_stage_id
        assert second.version == first.version

    @pytest.mark.asyncio
    async def test_feedback_per_model_survives_advancement(self, service, session):
        await _run_stage(service, session.id, "thesis")
        await service.submit_stage_responses(
            session.id,
            USER_ID,
            "thesis",
            1,
            responses=[
                DocumentResponse(
                    model_id="model-a", document_key="business_case", content="A: cut scope"
                ),
                DocumentResponse(
                    model_id="model-b", document_key="business_case", content="B: add pricing"
                ),
            ],
        )

        a = await service.state.list_feedback(
            session.id, stage_slug="thesis", iteration=1, model_id="model-a"
        )
        b = await service.state.list_feedback(
            session.id, stage_slug="thesis", iteration=1, model_id="model-b"
        )
        assert [f.content for f in a] == ["A: cut scope"]
        assert [f.content for f in b] == ["B: add pricing"]

    @pytest.mark.asyncio
    async def test_generate_for_wrong_stage_is_rejected(self, service, session):
        from dialectica.core.errors import StageMismatchError

        with pytest.raises(StageMismatchError):
            await service.generate_contributions(session.id, USER_ID, "antithesis", 1)


class TestAntithesisStage:
    @pytest.mark.asyncio
    async def test_critique_cardinality(self, service, session):
        await _run_stage(service, session.id, "thesis")
        await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)
        after = await _run_stage(service, session.id, "antithesis")

        headers = await _headers(service, session.id, "antithesis")
        assert len(headers) == 9
        assert Counter(h.model_id for h in headers) == {m: 3 for m in MODELS}

        docs = await service.list_stage_documents(session.id, USER_ID, "antithesis", 1)
        assert len(docs.contributions) == 54
        assert {m: len(c) for m, c in docs.by_model().items()} == {m: 18 for m in MODELS}
        assert Counter(c.document_key for c in docs.contributions) == {
            k: 9 for k in ANTITHESIS_KEYS
        }
        assert after.status == "antithesis_completed"

    @pytest.mark.asyncio
    async def test_critiques_stay_on_their_source_lineage(self, service, session):
        await _run_stage(service, session.id, "thesis")
        await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)
        await _run_stage(service, session.id, "antithesis")

        headers = {h.id: h for h in await _headers(service, session.id, "antithesis")}
        docs = await service.list_stage_documents(session.id, USER_ID, "antithesis", 1)
        pairs = Counter()
        for doc in docs.contributions:
            header = headers[doc.source_document_id]
            assert header.model_id == doc.model_id
            assert doc.source_anchor_model_id == header.source_anchor_model_id
            assert doc.lineage_model_id == doc.source_anchor_model_id
            pairs[(doc.model_id, doc.source_anchor_model_id)] += 1
        assert pairs == {(m, s): 6 for m in MODELS for s in MODELS}

    @pytest.mark.asyncio
    async def test_json_critique_is_pretty_printed(self, service, session):
        await _run_stage(service, session.id, "thesis")
        await service.submit_stage_responses(session.id, USER_ID, "thesis", 1)
        await _run_stage(service, session.id, "antithesis")

        docs = await service.state.list_contributions(
            session.id, stage_slug="antithesis", document_key="comparison_vector"
        )
        assert len(docs) == 9
        assert all(d.mime_type == "application/json" for d in docs)
        content = await service.artifacts.read_text(docs[0].storage_path)
        assert content.startswith("{\n")

    @pytest.mark.asyncio
    async def test_critique_inputs_scoped_to_executing_model(self, service, session):
        await _run_stage(service, session.id, "thesis")
        await service.submit_stage_responses(
            session.id,
            USER_ID,
            "thesis",
            1,
            responses=[
                DocumentResponse(
                    model_id="model-a", document_key="feature_spec", content="note-for-a"
                ),
                DocumentResponse(
                    model_id="model-b", document_key="feature_spec", content="note-for-b"
                ),
            ],
        )
        current = await service.state.get_session(session.id)
        project = await service.state.get_project(session.project_id)
        step = service.registry.step("antithesis_v1", "antithesis_planner_header")

        scoped = await service.gatherer.gather(step, project, current, 1, model_id="model-a")
        assert [f.content for f in scoped.feedback()] == ["note-for-a"]
        assert len(scoped.documents()) == 12

        everyone = await service.gatherer.gather(step, project, current, 1)
        assert sorted(f.content for f in everyone.feedback()) == ["note-for-a", "note-for-b"]


class TestSynthesisStage:
    @pytest.mark.asyncio
    async def test_pairwise_reduce_and_final_counts(self, service, session):
        for stage in ("thesis", "antithesis"):
            await _run_stage(service, session.id, stage)
            await service.submit_stage_responses(session.id, USER_ID, stage, 1)
        after = await _run_stage(service, session.id, "synthesis")

        pairwise = await service.state.list_contributions(
            session.id, stage_slug="synthesis", contribution_type="pairwise_synthesis_chunk"
        )
        reduced = await service.state.list_contributions(
            session.id, stage_slug="synthesis", contribution_type="reduced_synthesis"
        )
        final = await service.list_stage_documents(session.id, USER_ID, "synthesis", 1)
        headers = await _headers(service, session.id, "synthesis")

        assert len(headers) == 3
        assert len(pairwise) == 108
        assert len(reduced) == 36
        assert len(final.contributions) == 9
        assert Counter(c.model_id for c in pairwise) == {m: 36 for m in MODELS}
        assert {c.lineage_model_id for c in reduced} == set(MODELS)
        assert after.status == "synthesis_completed"


class TestSqliteBackend:
    @pytest.mark.asyncio
    async def test_thesis_stage_on_sqlite(self, settings, catalog, tmp_path: Path):
        state = SqliteStateStore(tmp_path / "dialectica.db")
        service = DialecticService(settings, state, LocalBlobStore(tmp_path / "blobs"), catalog)
        try:
            project = await service.create_project(USER_ID, "Plan a community garden.")
            session = await service.start_session(project.id, USER_ID, MODELS)
            after = await _run_stage(service, session.id, "thesis")

            docs = await service.list_stage_documents(session.id, USER_ID, "thesis", 1)
            assert len(docs.contributions) == 12
            assert after.status == "thesis_completed"
        finally:
            await service.close()
