# src/rag/vector_store/chromadb_store.py - v1
"""ChromaDB vector store adapter (local persistent or remote HTTP)."""

from __future__ import annotations

import logging
from pathlib import Path

from dialectica.rag.models import SearchResult
from dialectica.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class ChromaDBStore(BaseVectorStore):
    """Vector store backed by ChromaDB."""

    def __init__(
        self,
        persist_path: str | Path | None = None,
        host: str | None = None,
        port: int = 8000,
    ) -> None:
        try:
            import chromadb
        except ImportError as e:
            raise ImportError("chromadb package required: pip install chromadb") from e

        if host:
            self._client = chromadb.HttpClient(host=host, port=port)
        elif persist_path:
            self._client = chromadb.PersistentClient(path=str(Path(persist_path).expanduser()))
        else:
            self._client = chromadb.Client()

    async def upsert(
        self,
        collection: str,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        col = self._client.get_or_create_collection(collection)
        col.upsert(ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas)

    async def query(
        self,
        collection: str,
        query_embedding: list[float],
        top_k: int = 10,
        filter: dict | None = None,
    ) -> list[SearchResult]:
        col = self._client.get_or_create_collection(collection)
        kwargs: dict = {
            "query_embeddings": [query_embedding],
            "n_results": top_k,
            "include": ["documents", "metadatas", "distances"],
        }
        if filter:
            kwargs["where"] = filter
        results = col.query(**kwargs)

        search_results: list[SearchResult] = []
        if results["ids"] and results["ids"][0]:
            for i, doc_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                meta = results["metadatas"][0][i] if results["metadatas"] else {}
                search_results.append(
                    SearchResult(
                        source_type=(meta or {}).get("source_type", "chunk"),
                        source_id=doc_id,
                        content=results["documents"][0][i] if results["documents"] else "",
                        score=1.0 - distance,
                        metadata=meta or {},
                    )
                )
        return search_results

    async def delete(self, collection: str, ids: list[str]) -> None:
        col = self._client.get_or_create_collection(collection)
        col.delete(ids=ids)

    async def count(self, collection: str) -> int:
        col = self._client.get_or_create_collection(collection)
        return col.count()

    @property
    def provider_name(self) -> str:
        return "chromadb"
