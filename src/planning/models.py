# src/planning/models.py - v1
"""Planner results."""

from __future__ import annotations

from pydantic import BaseModel, Field

from dialectica.jobs.models import Job


class PlanningResult(BaseModel):
    """Outcome of planning one recipe level for a PLAN job.

    ``job`` is the PLAN job after its transition, or None when it had
    already left ``processing`` (for example an operator failed it).
    """

    job: Job | None = None
    level: int
    children: list[Job] = Field(default_factory=list)
    skipped_steps: list[str] = Field(default_factory=list)
    completed: bool = False
