# src/rag/embeddings/openai_embedder.py - v1
"""OpenAI embedding adapter (text-embedding-3-small / -large)."""

from __future__ import annotations

import logging

from dialectica.llm.retry import RetryConfig, with_retry
from dialectica.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)


class OpenAIEmbedder(BaseEmbedder):
    """Embeddings via the OpenAI API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimensions: int = 1536,
        retry: RetryConfig | None = None,
    ) -> None:
        self._model = model
        self._retry = retry or RetryConfig(max_retries=2, base_delay_s=1.0)
        self._api_key = api_key
        self._dimensions = dimensions
        self.__client = None
        self.tokens_used = 0

    @property
    def _client(self):
        if self.__client is None:
            try:
                import openai
            except ImportError as e:
                raise ImportError("openai package required: pip install openai") from e
            self.__client = openai.AsyncOpenAI(api_key=self._api_key or "")
        return self.__client

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        response = await with_retry(
            self._client.embeddings.create,
            input=texts,
            model=self._model,
            dimensions=self._dimensions,
            operation="embed",
            config=self._retry,
        )
        if response.usage is not None:
            self.tokens_used += response.usage.total_tokens
        return [item.embedding for item in response.data]

    async def embed_query(self, query: str) -> list[float]:
        vectors = await self.embed_texts([query])
        return vectors[0]

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model
