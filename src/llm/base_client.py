# src/llm/base_client.py - v1
"""Abstract model adapter interface.

Adapters normalize provider responses into LLMResponse, including the
finish reason the executor uses to detect truncated output.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dialectica.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all model providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Text completion."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, openai)."""
