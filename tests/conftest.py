# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides settings without .env, an in-memory state store, a temp-dir blob
store, a scripted fake model client and a service seeded with three models.
No network access: every model call is answered by FakeLLMClient.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
import pytest_asyncio

from dialectica.api.facade import DialecticService
from dialectica.config.settings import Settings
from dialectica.core.models import AIModel
from dialectica.llm.base_client import BaseLLMClient
from dialectica.llm.catalog import ModelCatalog
from dialectica.llm.models import LLMResponse, Message
from dialectica.prompts.assembler import CONTINUE_REQUEST
from dialectica.storage.local_blob_store import LocalBlobStore
from dialectica.storage.memory_state_store import MemoryStateStore

MODEL_IDS = ("model-a", "model-b", "model-c")
USER_ID = "user-1"

_HEADER_KEYS_RE = re.compile(r"^Required context_for_documents: (.+)$", re.MULTILINE)
_DOC_KEY_RE = re.compile(r"^Output document_key: (\S+)$", re.MULTILINE)
_FORMAT_RE = re.compile(r"^Output format: (\w+)$", re.MULTILINE)


# === Fake model client ===


class FakeLLMClient(BaseLLMClient):
    """Answers prompts the way a cooperative model would.

    Header prompts get a JSON plan covering exactly the required keys;
    document prompts get a Markdown or JSON document for their key.

    Scripting:
        errors: raised in order, one per call, before any answer.
        truncate_keys: the first answer for these document keys stops
            half-way with finish_reason "length".
        bad_header: header answers omit their last required key.
    """

    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.calls: list[list[Message]] = []
        self.errors: list[BaseException] = []
        self.truncate_keys: set[str] = set()
        self.bad_header = False

    @property
    def provider_name(self) -> str:
        return "fake"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        self.calls.append(list(messages))
        if self.errors:
            raise self.errors.pop(0)

        prompt = messages[0].content
        full, key = self._answer(prompt)
        finish = "stop"
        if len(messages) > 1 and messages[-1].content == CONTINUE_REQUEST:
            content = full[len(messages[-2].content):]
        elif key in self.truncate_keys:
            content = full[: len(full) // 2]
            finish = "length"
        else:
            content = full
        return LLMResponse(
            content=content,
            finish_reason=finish,
            input_tokens=len(prompt) // 4,
            output_tokens=len(content) // 4,
            model=self.name,
            provider="fake",
            latency_ms=1,
        )

    def _answer(self, prompt: str) -> tuple[str, str]:
        header = _HEADER_KEYS_RE.search(prompt)
        if header:
            keys = [k.strip() for k in header.group(1).split(",")]
            if self.bad_header:
                keys = keys[:-1]
            plan = {
                "summary": f"{self.name} plan",
                "shared_assumptions": ["budget is fixed"],
                "context_for_documents": [
                    {"document_key": k, "purpose": f"cover {k}", "outline": ["intro"]}
                    for k in keys
                ],
            }
            return json.dumps(plan), "header_context"

        key = _DOC_KEY_RE.search(prompt)
        document_key = key.group(1) if key else "unknown"
        fmt = _FORMAT_RE.search(prompt)
        if fmt and fmt.group(1) == "json":
            body = {"document_key": document_key, "author": self.name, "scores": [1, 2, 3]}
            return json.dumps(body), document_key
        return (
            f"# {document_key}\n\nWritten by {self.name}. "
            "This section argues the position in detail.\n",
            document_key,
        )

    @property
    def document_calls(self) -> list[str]:
        """Document keys requested so far, in call order."""
        keys = []
        for messages in self.calls:
            match = _DOC_KEY_RE.search(messages[0].content)
            keys.append(match.group(1) if match else "header_context")
        return keys


# === FIXTURES: Configuration and stores ===


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from .env with zero backoff."""
    return Settings(
        _env_file=None,
        dialectic_models="",
        retry_base_delay_s=0.0,
        retry_max_delay_s=0.0,
        job_max_retries=2,
        max_continuations=2,
        worker_concurrency=4,
        worker_poll_interval_s=0.01,
        model_call_timeout_s=5.0,
        artifact_root=tmp_path / "artifacts",
        state_db_path=tmp_path / "state.db",
        log_format="text",
    )


@pytest.fixture
def state() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def blobs(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "artifacts")


@pytest.fixture
def fake_client_cls() -> type[FakeLLMClient]:
    return FakeLLMClient


@pytest.fixture
def fake_clients() -> dict[str, FakeLLMClient]:
    return {model_id: FakeLLMClient(model_id) for model_id in MODEL_IDS}


@pytest.fixture
def catalog(settings: Settings, fake_clients: dict[str, FakeLLMClient]) -> ModelCatalog:
    """Catalog of three fake models."""
    catalog = ModelCatalog(settings)
    for model_id, client in fake_clients.items():
        catalog.register(
            AIModel(
                id=model_id,
                slug=model_id,
                provider="fake",
                api_model=model_id,
                display_name=model_id.upper(),
            ),
            client=client,
        )
    return catalog


@pytest.fixture
def service(
    settings: Settings,
    state: MemoryStateStore,
    blobs: LocalBlobStore,
    catalog: ModelCatalog,
) -> DialecticService:
    return DialecticService(settings, state, blobs, catalog)


@pytest_asyncio.fixture
async def project(service: DialecticService):
    return await service.create_project(
        USER_ID, "Build a shared grocery list app for families.", name="Groceries"
    )


@pytest_asyncio.fixture
async def session(service: DialecticService, project):
    """Session on the thesis stage with all three models selected."""
    return await service.start_session(project.id, USER_ID, list(MODEL_IDS))
