# tests/unit/jobs/test_unit_graph.py - v1
"""Tests for jobs/graph.py - job tree progress summaries."""

from __future__ import annotations

from dialectica.jobs.graph import build_job_graph, export_node_link, root_jobs, summarize_progress
from dialectica.jobs.models import ExecutePayload, Job, PlanPayload, PlanUnit


def _plan(status: str = "waiting_for_children") -> Job:
    return Job(
        job_type="PLAN",
        session_id="s1",
        user_id="u1",
        stage_slug="thesis",
        iteration_number=1,
        status=status,
        payload=PlanPayload(model_id="m1", recipe_id="thesis_v1", recipe_version=1),
    )


def _child(parent: Job, key: str, status: str) -> Job:
    return Job(
        job_type="EXECUTE",
        parent_job_id=parent.id,
        session_id="s1",
        user_id="u1",
        stage_slug="thesis",
        iteration_number=1,
        status=status,
        payload=ExecutePayload(
            model_id="m1",
            recipe_id="thesis_v1",
            recipe_version=1,
            step_slug="thesis_generate_documents",
            document_key=key,
            output_type="document",
            unit=PlanUnit(model_id="m1", unit_key="m1"),
        ),
    )


class TestJobGraph:
    def test_edges_and_roots(self):
        parent = _plan()
        children = [_child(parent, "a", "completed"), _child(parent, "b", "failed")]
        graph = build_job_graph([parent, *children])
        assert graph.number_of_edges() == 2
        assert root_jobs(graph) == [parent.id]

    def test_summary(self):
        parent = _plan()
        children = [
            _child(parent, "a", "completed"),
            _child(parent, "b", "failed"),
            _child(parent, "c", "processing"),
        ]
        summary = summarize_progress(build_job_graph([parent, *children]))
        assert summary["total_jobs"] == 4
        assert summary["terminal_jobs"] == 2
        assert summary["is_complete"] is False
        assert summary["by_step"]["thesis_generate_documents"] == {
            "completed": 1,
            "failed": 1,
            "processing": 1,
        }
        assert summary["failed_job_ids"] == [children[1].id]
        assert summary["max_depth"] == 1

    def test_empty_graph(self):
        summary = summarize_progress(build_job_graph([]))
        assert summary["total_jobs"] == 0
        assert summary["is_complete"] is False

    def test_node_link_export(self):
        parent = _plan("completed")
        data = export_node_link(build_job_graph([parent]))
        assert data["nodes"][0]["id"] == parent.id
