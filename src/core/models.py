# src/core/models.py - v1
"""Core domain models: projects, sessions, stages, contributions, feedback.

Stages and process templates are configuration and never change at
runtime. Sessions are mutated only through conditional updates keyed on
their version counter.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


HEADER_CONTEXT = "header_context"


class AIModel(BaseModel):
    """A model that can be selected for a session."""

    id: str
    slug: str
    provider: str
    api_model: str
    display_name: str = ""
    max_output_tokens: int = 4096
    is_active: bool = True


class Project(BaseModel):
    """User-owned container for sessions. Immutable except status."""

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = ""
    initial_prompt: str = ""
    initial_prompt_resource: str | None = None
    domain: str = "software_development"
    domain_overlay_values: dict[str, str] = Field(default_factory=dict)
    process_template_id: str = "dialectic_default"
    status: Literal["active", "archived"] = "active"
    created_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """One run of a project's process template."""

    id: str = Field(default_factory=new_id)
    project_id: str
    status: str
    current_stage_id: str
    iteration_count: int = 1
    selected_model_ids: list[str] = Field(default_factory=list)
    is_cancelled: bool = False
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Stage(BaseModel):
    """Configured pipeline stage. Read-only at runtime."""

    id: str
    slug: str
    display_name: str
    directory_order: int
    recipe_id: str
    seed_template: str
    description: str = ""
    domain_overlays: dict[str, dict[str, str]] = Field(default_factory=dict)


class StageTransition(BaseModel):
    source_slug: str
    target_slug: str


class ProcessTemplate(BaseModel):
    """Ordered stages plus the transition graph between them."""

    id: str
    name: str
    stages: list[Stage]
    transitions: list[StageTransition]
    starting_stage_slug: str

    def stage(self, slug: str) -> Stage:
        for stage in self.stages:
            if stage.slug == slug:
                return stage
        raise KeyError(slug)

    def stage_by_id(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)

    def next_stage(self, slug: str) -> Stage | None:
        """Follow the transition graph; None when the stage is terminal."""
        for transition in self.transitions:
            if transition.source_slug == slug:
                return self.stage(transition.target_slug)
        return None

    def position(self, slug: str) -> int:
        """Zero-based position of a stage along the transition chain."""
        order: list[str] = [self.starting_stage_slug]
        while True:
            nxt = self.next_stage(order[-1])
            if nxt is None or nxt.slug in order:
                break
            order.append(nxt.slug)
        return order.index(slug)


class Contribution(BaseModel):
    """A produced artifact registered against a session stage."""

    id: str = Field(default_factory=new_id)
    session_id: str
    project_id: str
    stage_slug: str
    iteration_number: int
    model_id: str
    model_slug: str
    contribution_type: str
    document_key: str
    storage_path: str
    file_name: str
    mime_type: str = "text/markdown"
    size_bytes: int = 0
    raw_response_path: str | None = None
    attempt_count: int = 0
    edit_key: str
    edit_version: int = 1
    is_latest_edit: bool = True
    user_id: str | None = None
    source_document_id: str | None = None
    source_document_ids: list[str] = Field(default_factory=list)
    source_model_ids: list[str] = Field(default_factory=list)
    source_anchor_type: str | None = None
    source_anchor_model_id: str | None = None
    paired_model_id: str | None = None
    lineage_model_id: str | None = None
    tokens_used_input: int = 0
    tokens_used_output: int = 0
    truncated: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_header_context(self) -> bool:
        return self.contribution_type == HEADER_CONTEXT


class Feedback(BaseModel):
    """User feedback on one model's document. One current record per key."""

    id: str = Field(default_factory=new_id)
    session_id: str
    project_id: str
    stage_slug: str
    iteration_number: int
    model_id: str
    document_key: str
    user_id: str
    feedback_type: str = "user_feedback"
    content: str
    storage_path: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def natural_key(self) -> tuple[str, str, int, str, str]:
        return (
            self.session_id,
            self.stage_slug,
            self.iteration_number,
            self.model_id,
            self.document_key,
        )


class SeedPrompt(BaseModel):
    """Persisted seed prompt for a stage iteration."""

    session_id: str
    stage_slug: str
    iteration_number: int
    storage_path: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
