# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: model
catalog, job execution limits, state and artifact storage, RAG indexing
and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dialectica.core.errors import ConfigurationError

__all__ = ["ConfigurationError", "Settings", "load_settings"]


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM PROVIDERS ===
    llm_default_provider: str = "anthropic"
    llm_default_model: str = "claude-sonnet-4-20250514"
    llm_default_temperature: float = 0.2
    llm_max_output_tokens: int = 4096

    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Comma-separated provider:model entries offered to sessions
    dialectic_models: str = (
        "anthropic:claude-sonnet-4-20250514,openai:gpt-4o"
    )

    # === Job execution ===
    model_call_timeout_s: float = 300.0
    job_max_retries: int = 3
    retry_base_delay_s: float = 2.0
    retry_max_delay_s: float = 60.0
    max_continuations: int = 5
    worker_concurrency: int = 8
    worker_poll_interval_s: float = 1.0
    # A processing job older than this is treated as abandoned by a crashed worker
    job_claim_timeout_s: float = 900.0
    session_update_attempts: int = 5

    # === State store ===
    state_store_backend: Literal["memory", "sqlite"] = "memory"
    state_db_path: Path = Path("~/.dialectica/state.db")

    # === Artifact storage ===
    artifact_store: Literal["local", "s3"] = "local"
    artifact_root: Path = Path("~/.dialectica/artifacts")
    artifact_s3_bucket: str = ""
    artifact_s3_prefix: str = "dialectica/"
    artifact_s3_region: str = ""

    # === Prompt assembly ===
    max_prompt_tokens: int = 60_000
    default_domain: str = "software_development"

    # === EMBEDDINGS ===
    embedding_provider: Literal["openai"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # === Vector database ===
    vector_db_type: Literal["none", "chromadb"] = "none"
    vector_db_path: Path = Path("~/.dialectica/vectordb")
    vector_db_url: str = ""
    vector_db_collection: str = "dialectic_documents"

    # === RAG ===
    rag_enabled: bool = False
    rag_index_min_chars: int = 4000
    rag_chunk_chars: int = 2000
    rag_retrieval_top_k: int = 8
    rag_context_token_budget: int = 4000

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("job_max_retries", "max_continuations")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("worker_concurrency", "session_update_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.rag_enabled and self.vector_db_type == "none":
            errors.append("RAG_ENABLED requires VECTOR_DB_TYPE to be configured")

        if self.retry_max_delay_s < self.retry_base_delay_s:
            errors.append("RETRY_MAX_DELAY_S must be >= RETRY_BASE_DELAY_S")

        if self.artifact_store == "s3" and not self.artifact_s3_bucket:
            errors.append("ARTIFACT_STORE=s3 requires ARTIFACT_S3_BUCKET")

        if self.model_call_timeout_s <= 0:
            errors.append("MODEL_CALL_TIMEOUT_S must be > 0")

        if self.job_claim_timeout_s <= self.model_call_timeout_s:
            errors.append("JOB_CLAIM_TIMEOUT_S must be > MODEL_CALL_TIMEOUT_S")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def dialectic_models_list(self) -> list[tuple[str, str]]:
        """Parse comma-separated provider:model entries."""
        entries: list[tuple[str, str]] = []
        for raw in self.dialectic_models.split(","):
            raw = raw.strip()
            if not raw:
                continue
            if ":" not in raw:
                raise ConfigurationError(
                    f"DIALECTIC_MODELS entry {raw!r} must be provider:model"
                )
            provider, model = raw.split(":", 1)
            entries.append((provider.strip(), model.strip()))
        return entries


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
