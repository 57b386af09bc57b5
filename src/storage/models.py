# src/storage/models.py - v1
"""Storage request models: ContributionUpload, FeedbackUpload."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from dialectica.core.models import AIModel, Stage


class ContributionUpload(BaseModel):
    """Everything needed to place and register one produced artifact."""

    project_id: str
    session_id: str
    stage: Stage
    iteration: int
    model: AIModel
    contribution_type: str
    document_key: str
    content: str
    edit_key: str
    attempt_count: int = 0
    naming: Literal["model", "critique", "pairwise", "reduce"] = "model"
    work_product: bool = False
    file_format: Literal["md", "json"] = "md"
    raw_response: dict[str, Any] | None = None
    user_id: str | None = None
    source_document_id: str | None = None
    source_document_ids: list[str] = Field(default_factory=list)
    source_model_ids: list[str] = Field(default_factory=list)
    source_anchor_type: str | None = None
    source_anchor_model_id: str | None = None
    source_anchor_model_slug: str | None = None
    source_attempt_count: int = 0
    paired_model_id: str | None = None
    paired_model_slug: str | None = None
    lineage_model_id: str | None = None
    tokens_used_input: int = 0
    tokens_used_output: int = 0
    truncated: bool = False


class FeedbackUpload(BaseModel):
    """User feedback on one model's document."""

    project_id: str
    session_id: str
    stage: Stage
    iteration: int
    model: AIModel
    document_key: str
    user_id: str
    content: str
    feedback_type: str = "user_feedback"
