# src/rag/embeddings/embedder_factory.py - v1
"""Factory: instantiate the configured embedding provider."""

from __future__ import annotations

import importlib
import logging

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError
from dialectica.llm.retry import RetryConfig
from dialectica.rag.embeddings.base_embedder import BaseEmbedder

logger = logging.getLogger(__name__)

_PROVIDER_REGISTRY: dict[str, str] = {
    "openai": "dialectica.rag.embeddings.openai_embedder.OpenAIEmbedder",
}


class UnsupportedEmbeddingProviderError(ConfigurationError):
    """Raised when an embedding provider is not registered."""


def create_embedder(settings: Settings) -> BaseEmbedder:
    """Instantiate the provider named by EMBEDDING_PROVIDER."""
    provider = settings.embedding_provider
    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedEmbeddingProviderError(
            f"Unsupported embedding provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    module_path, class_name = _PROVIDER_REGISTRY[provider].rsplit(".", 1)
    cls = getattr(importlib.import_module(module_path), class_name)

    kwargs: dict = {
        "model": settings.embedding_model,
        "dimensions": settings.embedding_dimensions,
    }
    if provider == "openai":
        kwargs["api_key"] = settings.openai_api_key
        kwargs["retry"] = RetryConfig(
            max_retries=settings.job_max_retries,
            base_delay_s=settings.retry_base_delay_s,
            max_delay_s=settings.retry_max_delay_s,
        )

    logger.debug("Creating embedder: provider=%s", provider)
    return cls(**kwargs)


def register_embedding_provider(name: str, class_path: str) -> None:
    """Register a custom embedding provider."""
    _PROVIDER_REGISTRY[name] = class_path
