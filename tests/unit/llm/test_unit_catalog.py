# tests/unit/llm/test_unit_catalog.py - v1
"""Tests for llm/catalog.py and llm/client_factory.py."""

from __future__ import annotations

import pytest

from dialectica.config.settings import Settings
from dialectica.core.errors import ConfigurationError, NotFoundError
from dialectica.core.models import AIModel
from dialectica.llm.adapters.openai_adapter import OpenAIAdapter
from dialectica.llm.catalog import ModelCatalog
from dialectica.llm.client_factory import (
    UnsupportedProviderError,
    create_llm_client,
    register_provider,
)


def _model(model_id: str, active: bool = True) -> AIModel:
    return AIModel(id=model_id, slug=model_id, provider="fake", api_model=model_id,
                   is_active=active)


class TestModelCatalog:
    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            dialectic_models="openai:gpt-4o, anthropic:claude-sonnet-4-20250514",
        )
        catalog = ModelCatalog.from_settings(settings)
        assert len(catalog) == 2
        assert "openai-gpt-4o" in catalog
        model = catalog.get("anthropic-claude-sonnet-4-20250514")
        assert model.provider == "anthropic"
        assert model.api_model == "claude-sonnet-4-20250514"

    def test_duplicate_rejected(self):
        catalog = ModelCatalog()
        catalog.register(_model("m1"))
        with pytest.raises(ConfigurationError):
            catalog.register(_model("m1"))

    def test_unknown_model(self):
        with pytest.raises(NotFoundError):
            ModelCatalog().get("ghost")

    def test_active_models(self):
        catalog = ModelCatalog()
        catalog.register(_model("m1"))
        catalog.register(_model("m2", active=False))
        assert [m.id for m in catalog.active_models()] == ["m1"]

    def test_registered_client_returned(self, fake_client_cls):
        catalog = ModelCatalog()
        client = fake_client_cls("m1")
        model = catalog.register(_model("m1"), client=client)
        assert catalog.client_for(model) is client

    def test_client_created_lazily(self):
        settings = Settings(_env_file=None, openai_api_key="sk-test")
        catalog = ModelCatalog(settings)
        model = catalog.register(
            AIModel(id="o", slug="o", provider="openai", api_model="gpt-4o")
        )
        client = catalog.client_for(model)
        assert isinstance(client, OpenAIAdapter)
        assert catalog.client_for(model) is client


class TestClientFactory:
    def test_unsupported_provider(self):
        with pytest.raises(UnsupportedProviderError, match="Unsupported LLM provider"):
            create_llm_client("carrier-pigeon", "v1")

    def test_unsupported_is_configuration_error(self):
        assert issubclass(UnsupportedProviderError, ConfigurationError)

    def test_register_provider(self):
        register_provider("openai-compatible", "dialectica.llm.adapters.openai_adapter.OpenAIAdapter")
        client = create_llm_client("openai-compatible", "local-model")
        assert client.provider_name == "openai"
