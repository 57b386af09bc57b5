# src/rag/vector_store/base_vector_store.py - v1
"""Abstract vector store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from dialectica.rag.models import SearchResult


class BaseVectorStore(ABC):
    """Unified interface for vector store backends."""

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        """Insert or update vectors with their documents and metadata."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        query_embedding: list[float],
        top_k: int = 10,
        filter: dict | None = None,
    ) -> list[SearchResult]:
        """Query vectors by similarity."""

    @abstractmethod
    async def delete(self, collection: str, ids: list[str]) -> None: ...

    @abstractmethod
    async def count(self, collection: str) -> int: ...

    @property
    @abstractmethod
    def provider_name(self) -> str: ...
