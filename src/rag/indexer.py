# src/rag/indexer.py - v1
"""Contribution indexer for prompt condensation.

Large contributions are split into paragraph-packed chunks, embedded and
upserted into the vector store, tagged with their session and source
contribution. Indexing is best effort: a failure is reported in the
IndexResult and logged, never raised to the executing job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dialectica.rag.models import IndexResult, SearchResult

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.rag.embeddings.base_embedder import BaseEmbedder
    from dialectica.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


def split_into_chunks(content: str, max_chars: int) -> list[str]:
    """Pack paragraphs into chunks of at most ``max_chars`` characters.

    A single paragraph longer than the limit is hard-split.
    """
    chunks: list[str] = []
    current = ""
    for paragraph in (p.strip() for p in content.split("\n\n")):
        if not paragraph:
            continue
        while len(paragraph) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:max_chars])
            paragraph = paragraph[max_chars:]
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) > max_chars:
            chunks.append(current)
            current = paragraph
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class DocumentIndexer:
    """Embeds contributions into one collection, filtered by session on retrieval."""

    def __init__(
        self,
        vector_store: BaseVectorStore,
        embedder: BaseEmbedder,
        collection: str = "dialectic_documents",
        chunk_chars: int = 2000,
        min_chars: int = 4000,
    ) -> None:
        self._store = vector_store
        self._embedder = embedder
        self._collection = collection
        self._chunk_chars = chunk_chars
        self._min_chars = min_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> DocumentIndexer | None:
        """Indexer wired from settings, or None when RAG is disabled."""
        if not settings.rag_enabled:
            return None
        from dialectica.rag.embeddings.embedder_factory import create_embedder
        from dialectica.rag.vector_store.vector_store_factory import create_vector_store

        store = create_vector_store(settings)
        if store is None:
            return None
        return cls(
            store,
            create_embedder(settings),
            collection=settings.vector_db_collection,
            chunk_chars=settings.rag_chunk_chars,
            min_chars=settings.rag_index_min_chars,
        )

    def should_index(self, content: str) -> bool:
        return len(content) >= self._min_chars

    async def index_document(
        self,
        session_id: str,
        source_contribution_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> IndexResult:
        """Chunk, embed and upsert one contribution."""
        chunks = split_into_chunks(content, self._chunk_chars)
        if not chunks:
            return IndexResult(success=True)
        base_meta = {
            **{k: v for k, v in (metadata or {}).items() if v is not None},
            "session_id": session_id,
            "source_contribution_id": source_contribution_id,
            "source_type": "contribution_chunk",
        }
        try:
            before = getattr(self._embedder, "tokens_used", 0)
            vectors = await self._embedder.embed_texts(chunks)
            await self._store.upsert(
                collection=self._collection,
                ids=[f"{source_contribution_id}:{i}" for i in range(len(chunks))],
                embeddings=vectors,
                documents=chunks,
                metadatas=[{**base_meta, "chunk_index": i} for i in range(len(chunks))],
            )
        except Exception as e:
            logger.warning("Indexing of %s failed: %s", source_contribution_id, e)
            return IndexResult(success=False, error=str(e))

        tokens = getattr(self._embedder, "tokens_used", 0) - before
        logger.info(
            "Indexed contribution %s: %d chunks", source_contribution_id, len(chunks)
        )
        return IndexResult(success=True, chunks_indexed=len(chunks), tokens_used=tokens)

    async def retrieve(
        self,
        session_id: str,
        query: str,
        top_k: int = 8,
        source_contribution_id: str | None = None,
    ) -> list[SearchResult]:
        """Most similar chunks of the session; empty on failure."""
        where: dict[str, Any] = {"session_id": session_id}
        if source_contribution_id:
            where = {
                "$and": [
                    {"session_id": session_id},
                    {"source_contribution_id": source_contribution_id},
                ]
            }
        try:
            vector = await self._embedder.embed_query(query)
            return await self._store.query(
                self._collection, vector, top_k=top_k, filter=where
            )
        except Exception as e:
            logger.warning("Retrieval for session %s failed: %s", session_id, e)
            return []
