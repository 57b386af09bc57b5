# src/jobs/models.py - v1
"""Job records and their validated payloads.

The payload is a tagged union discriminated by ``kind``; a Job whose
job_type disagrees with its payload kind is rejected at creation time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator

from dialectica.core.models import new_id, utcnow

JobStatus = Literal[
    "pending",
    "processing",
    "retrying",
    "pending_continuation",
    "pending_next_step",
    "waiting_for_children",
    "completed",
    "failed",
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
CLAIMABLE_STATUSES: frozenset[str] = frozenset(
    {"pending", "retrying", "pending_continuation", "pending_next_step"}
)


class PlanUnit(BaseModel):
    """One unit of planned work produced by a granularity strategy."""

    model_id: str
    unit_key: str
    source_document_ids: list[str] = Field(default_factory=list)
    header_context_id: str | None = None
    source_model_ids: list[str] = Field(default_factory=list)
    source_anchor_type: str | None = None
    source_anchor_model_id: str | None = None
    source_attempt_count: int = 0
    paired_model_id: str | None = None
    lineage_model_id: str | None = None


class PlanPayload(BaseModel):
    """Payload of a stage PLAN job: walks the recipe levels for one model."""

    kind: Literal["plan"] = "plan"
    model_id: str
    recipe_id: str
    recipe_version: int
    next_level: int = 0
    wallet_id: str | None = None


class ExecutePayload(BaseModel):
    """Payload of an EXECUTE job: one document key for one plan unit."""

    kind: Literal["execute"] = "execute"
    model_id: str
    recipe_id: str
    recipe_version: int
    step_slug: str
    document_key: str
    output_type: Literal["header_context", "document"]
    unit: PlanUnit
    continuation_count: int = 0
    wallet_id: str | None = None


JobPayload = Annotated[Union[PlanPayload, ExecutePayload], Field(discriminator="kind")]


class Job(BaseModel):
    """Durable job record. Never deleted; the table is the audit trail."""

    id: str = Field(default_factory=new_id)
    job_type: Literal["PLAN", "EXECUTE"]
    parent_job_id: str | None = None
    session_id: str
    user_id: str
    stage_slug: str
    iteration_number: int
    status: JobStatus = "pending"
    attempt_count: int = 0
    max_retries: int = 3
    payload: JobPayload
    results: dict[str, Any] = Field(default_factory=dict)
    error_details: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    available_at: datetime | None = None

    @model_validator(mode="after")
    def _payload_matches_type(self) -> Job:
        expected = "plan" if self.job_type == "PLAN" else "execute"
        if self.payload.kind != expected:
            raise ValueError(
                f"{self.job_type} job cannot carry a {self.payload.kind!r} payload"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def model_id(self) -> str:
        return self.payload.model_id

    def with_changes(self, **changes: Any) -> Job:
        """Validated copy with changes applied (payload may be a model or dict)."""
        data = self.model_dump()
        for key, value in changes.items():
            data[key] = value.model_dump() if isinstance(value, BaseModel) else value
        return Job.model_validate(data)
