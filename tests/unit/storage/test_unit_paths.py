# tests/unit/storage/test_unit_paths.py - v1
"""Tests for storage/paths.py - deterministic artifact layout."""

from __future__ import annotations

import pytest

from dialectica.storage.paths import (
    FileType,
    PathContext,
    construct_storage_path,
    deconstruct_storage_path,
    sanitize_slug,
    short_session_id,
)

SESSION = "0f8e2c1a-aaaa-bbbb-cccc-1234567890ab"


def _ctx(file_type: FileType, **fields) -> PathContext:
    base = dict(
        project_id="proj1",
        session_id=SESSION,
        iteration=1,
        stage_slug="antithesis",
        stage_order=2,
        file_type=file_type,
    )
    base.update(fields)
    return PathContext(**base)


class TestConstruct:
    def test_stage_directory(self):
        path = construct_storage_path(_ctx(FileType.SEED_PROMPT))
        assert path.full == "proj1/session_0f8e2c1a/iteration_1/2_antithesis/seed_prompt.md"

    def test_plain_document(self):
        path = construct_storage_path(
            _ctx(
                FileType.MODEL_CONTRIBUTION,
                stage_slug="thesis",
                stage_order=1,
                model_slug="gpt-4o",
                attempt_count=0,
                document_key="business_case",
            )
        )
        assert path.directory.endswith("/1_thesis/documents")
        assert path.file_name == "gpt-4o_0_business_case.md"

    def test_critique_name(self):
        path = construct_storage_path(
            _ctx(
                FileType.MODEL_CONTRIBUTION,
                model_slug="claude",
                attempt_count=1,
                document_key="risk_register",
                naming="critique",
                source_model_slug="gpt-4o",
                source_anchor_type="thesis",
                source_attempt_count=0,
            )
        )
        assert path.file_name == "claude_critiquing_(gpt-4o's_thesis_0)_1_risk_register.md"

    def test_header_context_under_work(self):
        path = construct_storage_path(_ctx(FileType.HEADER_CONTEXT, model_slug="claude"))
        assert path.directory.endswith("/_work/context")
        assert path.file_name == "claude_0_header_context.json"

    def test_work_product_raw_response(self):
        path = construct_storage_path(
            _ctx(
                FileType.RAW_RESPONSE,
                stage_slug="synthesis",
                stage_order=3,
                model_slug="m",
                document_key="synthesis_pairwise_business_case",
                naming="pairwise",
                source_model_slug="a",
                paired_model_slug="b",
                source_anchor_type="thesis",
                work_product=True,
            )
        )
        assert path.directory.endswith("/_work/raw_responses")
        assert path.file_name.startswith("m_synthesizing_a_with_b_on_thesis_0_")

    def test_missing_identifier(self):
        with pytest.raises(ValueError, match="source_model_slug"):
            construct_storage_path(
                _ctx(
                    FileType.MODEL_CONTRIBUTION,
                    model_slug="m",
                    document_key="k",
                    naming="critique",
                )
            )


class TestDeconstruct:
    @pytest.mark.parametrize(
        "fields",
        [
            dict(naming="model"),
            dict(
                naming="critique",
                source_model_slug="gpt-4o",
                source_anchor_type="business_case",
                source_attempt_count=2,
            ),
            dict(
                naming="pairwise",
                source_model_slug="a",
                paired_model_slug="b",
                source_anchor_type="thesis",
                work_product=True,
            ),
            dict(naming="reduce", source_model_slug="a", source_anchor_type="thesis"),
        ],
    )
    def test_reverses_contribution_paths(self, fields):
        ctx = _ctx(
            FileType.MODEL_CONTRIBUTION,
            model_slug="claude",
            attempt_count=3,
            document_key="risk_register",
            edit_version=2,
            **fields,
        )
        parsed = deconstruct_storage_path(construct_storage_path(ctx).full)
        assert parsed.file_type is FileType.MODEL_CONTRIBUTION
        assert parsed.model_slug == "claude"
        assert parsed.attempt_count == 3
        assert parsed.document_key == "risk_register"
        assert parsed.source_model_slug == fields.get("source_model_slug")
        assert parsed.paired_model_slug == fields.get("paired_model_slug")
        assert parsed.work_product == fields.get("work_product", False)
        assert parsed.edit_version == 2
        assert parsed.stage_order == 2

    def test_critique_source_attempt(self):
        ctx = _ctx(
            FileType.MODEL_CONTRIBUTION,
            model_slug="claude",
            document_key="risk_register",
            naming="critique",
            source_model_slug="gpt-4o",
            source_anchor_type="thesis",
            source_attempt_count=4,
        )
        parsed = deconstruct_storage_path(construct_storage_path(ctx).full)
        assert parsed.source_attempt_count == 4
        assert parsed.source_anchor_type == "thesis"

    def test_feedback_path(self):
        ctx = _ctx(FileType.DOCUMENT_FEEDBACK, model_slug="claude", document_key="risk_register")
        parsed = deconstruct_storage_path(construct_storage_path(ctx).full)
        assert parsed.file_type is FileType.DOCUMENT_FEEDBACK
        assert parsed.document_key == "risk_register"

    def test_not_an_artifact(self):
        with pytest.raises(ValueError):
            deconstruct_storage_path("somewhere/else.md")


class TestSlugs:
    def test_sanitize(self):
        assert sanitize_slug("OpenAI GPT_4o") == "openai-gpt-4o"

    def test_empty_slug(self):
        with pytest.raises(ValueError):
            sanitize_slug("___")

    def test_short_session_id(self):
        assert short_session_id(SESSION) == "0f8e2c1a"
