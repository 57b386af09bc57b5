# src/api/models.py - v1
"""Service-level request and result models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from dialectica.core.models import Contribution, Feedback, Project, SeedPrompt, Session
from dialectica.jobs.models import Job
from dialectica.stages.models import DocumentResponse


class StageDocumentFeedback(DocumentResponse):
    """Feedback on one model's document, submitted while reviewing a stage."""

    session_id: str
    stage_slug: str
    iteration: int


class SubmitStageResponsesRequest(BaseModel):
    """Close a completed stage: per-document feedback plus free-form notes."""

    session_id: str
    stage_slug: str
    iteration: int
    responses: list[DocumentResponse] = Field(default_factory=list)
    stage_feedback: str | None = None


class ContributionEditRequest(BaseModel):
    contribution_id: str
    content: str = Field(min_length=1)


class GenerateContributionsResult(BaseModel):
    """Session after the stage was started and its root PLAN jobs."""

    session: Session
    jobs: list[Job]


class StageProgress(BaseModel):
    """Job counts of one stage iteration."""

    session_id: str
    stage_slug: str
    iteration: int
    session_status: str
    total_jobs: int = 0
    terminal_jobs: int = 0
    is_complete: bool = False
    by_status: dict[str, int] = Field(default_factory=dict)
    by_step: dict[str, dict[str, int]] = Field(default_factory=dict)
    by_model: dict[str, dict[str, int]] = Field(default_factory=dict)
    failed_job_ids: list[str] = Field(default_factory=list)
    documents: int = 0
    graph: dict[str, Any] | None = None


class StageDocuments(BaseModel):
    """Latest contributions of one stage iteration, headers excluded unless asked."""

    session_id: str
    stage_slug: str
    iteration: int
    contributions: list[Contribution] = Field(default_factory=list)

    def by_model(self) -> dict[str, list[Contribution]]:
        grouped: dict[str, list[Contribution]] = {}
        for c in self.contributions:
            grouped.setdefault(c.model_id, []).append(c)
        return grouped


class SessionManifest(BaseModel):
    session: Session
    contributions: list[Contribution] = Field(default_factory=list)
    feedback: list[Feedback] = Field(default_factory=list)
    seed_prompts: list[SeedPrompt] = Field(default_factory=list)


class ProjectManifest(BaseModel):
    """Everything a project export carries besides the artifact files."""

    project: Project
    sessions: list[SessionManifest] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    exported_at: datetime
