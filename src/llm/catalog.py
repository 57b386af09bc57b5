# src/llm/catalog.py - v1
"""Catalog of selectable models and their adapters.

Adapters are created on first use so that a catalog can be built, and
sessions validated, without any provider SDK installed.
"""

from __future__ import annotations

import logging

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError, NotFoundError
from dialectica.core.models import AIModel
from dialectica.llm.base_client import BaseLLMClient
from dialectica.llm.client_factory import create_llm_client
from dialectica.storage.paths import sanitize_slug

logger = logging.getLogger(__name__)


class ModelCatalog:
    """Registered models keyed by id, each with a lazily created client."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._models: dict[str, AIModel] = {}
        self._clients: dict[str, BaseLLMClient] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelCatalog:
        """One model per DIALECTIC_MODELS entry, slugged as ``provider-model``."""
        catalog = cls(settings)
        for provider, api_model in settings.dialectic_models_list:
            slug = sanitize_slug(f"{provider}-{api_model}")
            catalog.register(
                AIModel(
                    id=slug,
                    slug=slug,
                    provider=provider,
                    api_model=api_model,
                    display_name=api_model,
                    max_output_tokens=settings.llm_max_output_tokens,
                )
            )
        return catalog

    def register(self, model: AIModel, client: BaseLLMClient | None = None) -> AIModel:
        if model.id in self._models:
            raise ConfigurationError(f"Model {model.id!r} registered twice")
        self._models[model.id] = model
        if client is not None:
            self._clients[model.id] = client
        logger.debug("Registered model %s (%s:%s)", model.id, model.provider, model.api_model)
        return model

    def get(self, model_id: str) -> AIModel:
        try:
            return self._models[model_id]
        except KeyError:
            raise NotFoundError(f"Unknown model {model_id!r}", model_id=model_id) from None

    def active_models(self) -> list[AIModel]:
        return [m for m in self._models.values() if m.is_active]

    def client_for(self, model: AIModel) -> BaseLLMClient:
        client = self._clients.get(model.id)
        if client is None:
            client = create_llm_client(model.provider, model.api_model, self._settings)
            self._clients[model.id] = client
        return client

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)
