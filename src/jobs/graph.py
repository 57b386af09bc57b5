# src/jobs/graph.py - v1
"""Job tree inspection with networkx.

Builds a directed parent -> child graph of a session's jobs for progress
reporting and node-link export.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

import networkx as nx

from dialectica.jobs.models import Job


def build_job_graph(jobs: Iterable[Job]) -> nx.DiGraph:
    """Directed graph with one node per job and an edge per ownership link."""
    graph = nx.DiGraph()
    job_list = list(jobs)
    for job in job_list:
        step = job.payload.step_slug if job.payload.kind == "execute" else None
        graph.add_node(
            job.id,
            job_type=job.job_type,
            status=job.status,
            stage_slug=job.stage_slug,
            iteration=job.iteration_number,
            model_id=job.model_id,
            step_slug=step,
            document_key=getattr(job.payload, "document_key", None),
            attempt_count=job.attempt_count,
        )
    for job in job_list:
        if job.parent_job_id and job.parent_job_id in graph:
            graph.add_edge(job.parent_job_id, job.id)
    return graph


def root_jobs(graph: nx.DiGraph) -> list[str]:
    return sorted(n for n in graph.nodes if graph.in_degree(n) == 0)


def summarize_progress(graph: nx.DiGraph) -> dict[str, Any]:
    """Counts by status, by step and by model, plus failed job ids."""
    by_status: Counter[str] = Counter()
    by_step: dict[str, Counter[str]] = {}
    by_model: dict[str, Counter[str]] = {}
    failed: list[str] = []
    for node, data in graph.nodes(data=True):
        status = data["status"]
        by_status[status] += 1
        if data["job_type"] == "EXECUTE":
            by_step.setdefault(data["step_slug"], Counter())[status] += 1
            by_model.setdefault(data["model_id"], Counter())[status] += 1
        if status == "failed":
            failed.append(node)

    total = graph.number_of_nodes()
    terminal = by_status["completed"] + by_status["failed"]
    return {
        "total_jobs": total,
        "terminal_jobs": terminal,
        "is_complete": total > 0 and terminal == total,
        "by_status": dict(by_status),
        "by_step": {k: dict(v) for k, v in sorted(by_step.items())},
        "by_model": {k: dict(v) for k, v in sorted(by_model.items())},
        "failed_job_ids": sorted(failed),
        "roots": root_jobs(graph),
        "max_depth": nx.dag_longest_path_length(graph) if total else 0,
    }


def export_node_link(graph: nx.DiGraph) -> dict[str, Any]:
    """JSON-serializable node-link representation."""
    return nx.node_link_data(graph)
