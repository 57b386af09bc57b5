# src/rag/models.py - v1
"""RAG result types."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One chunk returned by a similarity query."""

    source_type: str = "chunk"
    source_id: str
    content: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexResult(BaseModel):
    """Outcome of indexing one contribution."""

    success: bool
    chunks_indexed: int = 0
    tokens_used: int = 0
    error: str | None = None
