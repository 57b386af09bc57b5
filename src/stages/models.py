# src/stages/models.py - v1
"""Stage submission types."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DocumentResponse(BaseModel):
    """User feedback on one model's document of a completed stage."""

    model_id: str
    document_key: str
    content: str = Field(min_length=1)
    feedback_type: str = "user_feedback"
