# src/llm/models.py - v1
"""Adapter-level types: Message, LLMResponse."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

TRUNCATION_FINISH_REASONS: frozenset[str] = frozenset({"length", "max_tokens", "incomplete"})


class Message(BaseModel):
    """Single message in a conversation."""

    role: Literal["user", "assistant", "system"]
    content: str


class LLMResponse(BaseModel):
    """Normalized response from any provider."""

    content: str
    finish_reason: str | None = None
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    model: str
    provider: str
    latency_ms: int
    raw_response: Any = None

    @property
    def truncated(self) -> bool:
        return (self.finish_reason or "").lower() in TRUNCATION_FINISH_REASONS

    def raw_as_dict(self) -> dict[str, Any]:
        """JSON-safe view of the provider payload for raw response files."""
        raw = self.raw_response
        if raw is None:
            return {"content": self.content, "finish_reason": self.finish_reason}
        if isinstance(raw, dict):
            return raw
        dump = getattr(raw, "model_dump", None)
        if callable(dump):
            return dump(mode="json")
        return {"repr": repr(raw)}
