# tests/unit/core/test_unit_models.py - v1
"""Tests for core/models.py - process template navigation and records."""

from __future__ import annotations

import pytest

from dialectica.config.recipes import default_process_template
from dialectica.core.models import HEADER_CONTEXT, Contribution, Feedback


def _contribution(**overrides) -> Contribution:
    data = dict(
        session_id="s1",
        project_id="p1",
        stage_slug="thesis",
        iteration_number=1,
        model_id="m1",
        model_slug="m1",
        contribution_type="thesis",
        document_key="business_case",
        storage_path="p1/x.md",
        file_name="x.md",
        edit_key="k",
    )
    data.update(overrides)
    return Contribution(**data)


class TestProcessTemplate:
    def test_stage_lookup(self):
        template = default_process_template()
        assert template.stage("synthesis").directory_order == 3
        assert template.stage_by_id("stage-antithesis").slug == "antithesis"

    def test_unknown_stage_raises_key_error(self):
        with pytest.raises(KeyError):
            default_process_template().stage("nope")

    def test_next_stage_follows_transitions(self):
        template = default_process_template()
        assert template.next_stage("thesis").slug == "antithesis"
        assert template.next_stage("parenthesis").slug == "paralysis"
        assert template.next_stage("paralysis") is None

    def test_position(self):
        template = default_process_template()
        assert [template.position(s.slug) for s in template.stages] == [0, 1, 2, 3, 4]


class TestContribution:
    def test_header_flag(self):
        assert _contribution(contribution_type=HEADER_CONTEXT).is_header_context
        assert not _contribution().is_header_context

    def test_defaults(self):
        c = _contribution()
        assert c.is_latest_edit is True
        assert c.edit_version == 1
        assert c.mime_type == "text/markdown"
        assert c.id


class TestFeedback:
    def test_natural_key(self):
        fb = Feedback(
            session_id="s1",
            project_id="p1",
            stage_slug="thesis",
            iteration_number=2,
            model_id="m1",
            document_key="business_case",
            user_id="u",
            content="good",
            storage_path="x",
        )
        assert fb.natural_key == ("s1", "thesis", 2, "m1", "business_case")
