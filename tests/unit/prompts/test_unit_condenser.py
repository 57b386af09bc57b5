# tests/unit/prompts/test_unit_condenser.py - v1
"""Tests for prompts/condenser.py."""

from __future__ import annotations

import pytest

from dialectica.prompts.condenser import (
    TRUNCATION_MARKER,
    PromptCondenser,
    PromptSection,
    estimate_tokens,
)
from dialectica.rag.models import SearchResult


class FakeIndexer:
    def __init__(self, results=None):
        self.results = results or []
        self.queries: list[tuple[str, str, str | None]] = []

    async def retrieve(self, session_id, query, top_k=8, source_contribution_id=None):
        self.queries.append((session_id, query, source_contribution_id))
        return self.results


class TestEstimateTokens:
    def test_four_chars_per_token(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcdefgh") == 2


class TestCondense:
    @pytest.mark.asyncio
    async def test_under_budget_untouched(self):
        sections = [PromptSection(label="a", content="short")]
        out = await PromptCondenser(max_tokens=100).condense(sections, 10, "s", "q")
        assert out[0].content == "short"
        assert out[0].condensed is False

    @pytest.mark.asyncio
    async def test_largest_truncated_first(self):
        big = PromptSection(label="big", content="b" * 4000)
        small = PromptSection(label="small", content="s" * 200)
        out = await PromptCondenser(max_tokens=600).condense([small, big], 0, "s", "q")
        assert big.condensed is True
        assert big.content.endswith(TRUNCATION_MARKER)
        assert small.condensed is False
        assert sum(estimate_tokens(s.content) for s in out) <= 600

    @pytest.mark.asyncio
    async def test_indexer_excerpts_replace_content(self):
        indexer = FakeIndexer(
            [SearchResult(source_id="c1", content="relevant chunk", score=0.9)]
        )
        section = PromptSection(label="doc", content="z" * 8000, source_id="c1")
        condenser = PromptCondenser(max_tokens=500, indexer=indexer)
        await condenser.condense([section], 0, "sess", "risks")
        assert section.content.startswith("[Relevant excerpts]")
        assert "relevant chunk" in section.content
        assert indexer.queries == [("sess", "risks", "c1")]

    @pytest.mark.asyncio
    async def test_indexer_without_results_falls_back_to_truncation(self):
        section = PromptSection(label="doc", content="z" * 8000, source_id="c1")
        condenser = PromptCondenser(max_tokens=500, indexer=FakeIndexer())
        await condenser.condense([section], 0, "sess", "risks")
        assert section.content.endswith(TRUNCATION_MARKER)
