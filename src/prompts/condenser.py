# src/prompts/condenser.py - v1
"""Keep assembled prompts under the token budget.

Sources are condensed largest first. When an indexer is available a source
is replaced by the chunks most relevant to the current task; otherwise it
is cut to its share of the budget and marked as truncated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dialectica.rag.indexer import DocumentIndexer

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n[... content truncated to fit the prompt budget ...]"


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    return len(text) // CHARS_PER_TOKEN


@dataclass
class PromptSection:
    """One source block of a prompt, condensable independently."""

    label: str
    content: str
    source_id: str | None = None
    condensed: bool = False


class PromptCondenser:
    """Shrinks prompt sections until the prompt fits ``max_tokens``."""

    def __init__(
        self,
        max_tokens: int,
        indexer: DocumentIndexer | None = None,
        top_k: int = 8,
    ) -> None:
        self._max_tokens = max_tokens
        self._indexer = indexer
        self._top_k = top_k

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    async def condense(
        self,
        sections: list[PromptSection],
        fixed_tokens: int,
        session_id: str,
        query: str,
    ) -> list[PromptSection]:
        """Condense sections in place; ``fixed_tokens`` is the non-source overhead."""
        budget = self._max_tokens - fixed_tokens

        def total() -> int:
            return sum(estimate_tokens(s.content) for s in sections)

        if total() <= budget:
            return sections

        logger.info(
            "Prompt over budget (%d > %d tokens), condensing %d sources",
            total() + fixed_tokens, self._max_tokens, len(sections),
        )
        for section in sorted(sections, key=lambda s: len(s.content), reverse=True):
            if total() <= budget:
                break
            share = max(budget // max(len(sections), 1), 1)
            if self._indexer is not None and section.source_id:
                results = await self._indexer.retrieve(
                    session_id, query, top_k=self._top_k, source_contribution_id=section.source_id
                )
                if results:
                    excerpt = "\n\n".join(r.content for r in results)
                    section.content = _truncate(f"[Relevant excerpts]\n\n{excerpt}", share)
                    section.condensed = True
                    continue
            section.content = _truncate(section.content, share)
            section.condensed = True
        return sections


def _truncate(text: str, max_tokens: int) -> str:
    limit = max_tokens * CHARS_PER_TOKEN
    if len(text) <= limit:
        return text
    return text[: max(limit - len(TRUNCATION_MARKER), 0)] + TRUNCATION_MARKER
