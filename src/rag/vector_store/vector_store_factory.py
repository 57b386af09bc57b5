# src/rag/vector_store/vector_store_factory.py - v1
"""Factory: instantiate the configured vector store."""

from __future__ import annotations

import logging

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError
from dialectica.rag.vector_store.base_vector_store import BaseVectorStore

logger = logging.getLogger(__name__)


class UnsupportedVectorStoreError(ConfigurationError):
    """Raised when a vector store type is not supported."""


def create_vector_store(settings: Settings) -> BaseVectorStore | None:
    """Vector store named by VECTOR_DB_TYPE; None when it is 'none'."""
    db_type = settings.vector_db_type
    if db_type == "none":
        return None

    if db_type == "chromadb":
        from dialectica.rag.vector_store.chromadb_store import ChromaDBStore

        url = settings.vector_db_url
        if url:
            address = url.split("://")[-1].rstrip("/")
            host, _, port = address.partition(":")
            return ChromaDBStore(host=host, port=int(port) if port else 8000)
        return ChromaDBStore(persist_path=settings.vector_db_path)

    raise UnsupportedVectorStoreError(
        f"Unsupported vector store type: {db_type!r}. Available: chromadb"
    )
