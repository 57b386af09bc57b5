# src/gathering/models.py - v1
"""Resolved inputs handed to planners and prompt assembly."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from dialectica.core.models import Contribution

SourceType = Literal["document", "contribution", "feedback", "seed_prompt", "header_context"]


class SourceDocument(BaseModel):
    """One resolved input.

    ``id`` is the contribution id for documents and header contexts, the
    feedback id for feedback and ``seed:{stage}`` for seed prompts.
    """

    id: str
    source_type: SourceType
    stage_slug: str
    document_key: str
    model_id: str | None = None
    content: str = ""
    storage_path: str = ""
    iteration: int = 1
    attempt_count: int = 0
    is_anchor: bool = False
    contribution: Contribution | None = None

    @property
    def lineage_model_id(self) -> str | None:
        if self.contribution is None:
            return None
        return self.contribution.lineage_model_id or self.contribution.source_anchor_model_id


class SourceDocuments(BaseModel):
    """Ordered bag of resolved inputs with small query helpers."""

    items: list[SourceDocument] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def extend(self, docs: list[SourceDocument]) -> None:
        self.items.extend(docs)

    def of_type(self, *source_types: str) -> list[SourceDocument]:
        return [d for d in self.items if d.source_type in source_types]

    def anchors(self) -> list[SourceDocument]:
        return [d for d in self.items if d.is_anchor]

    def header_contexts(self) -> list[SourceDocument]:
        return self.of_type("header_context")

    def feedback(self) -> list[SourceDocument]:
        return self.of_type("feedback")

    def seed_prompt(self) -> SourceDocument | None:
        seeds = self.of_type("seed_prompt")
        return seeds[0] if seeds else None

    def documents(self) -> list[SourceDocument]:
        return self.of_type("document", "contribution")

    def ids(self) -> list[str]:
        return [d.id for d in self.items]
