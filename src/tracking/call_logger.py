# src/tracking/call_logger.py - v1
"""Model call logging: records every call made by the executor.

Records are kept in memory for the lifetime of the worker and can be
exported as JSON Lines for post-run analysis.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from dialectica.core.models import AIModel
from dialectica.llm.models import LLMResponse
from dialectica.tracking.models import ModelCallRecord, ModelUsage

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates model call records across jobs."""

    def __init__(self) -> None:
        self._records: list[ModelCallRecord] = []

    def record(
        self,
        *,
        job_id: str,
        session_id: str,
        stage_slug: str,
        step_slug: str,
        model: AIModel,
        response: LLMResponse | None = None,
        error: BaseException | None = None,
        error_type: str | None = None,
        latency_ms: int = 0,
    ) -> ModelCallRecord:
        """Record one call; pass ``response`` on success or ``error`` on failure."""
        if response is not None:
            status = "truncated" if response.truncated else "success"
            input_tokens = response.input_tokens
            output_tokens = response.output_tokens
            latency_ms = response.latency_ms
            finish_reason = response.finish_reason
        else:
            status = "failed"
            input_tokens = output_tokens = 0
            finish_reason = None

        record = ModelCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            job_id=job_id,
            session_id=session_id,
            stage_slug=stage_slug,
            step_slug=step_slug,
            model_id=model.id,
            provider=model.provider,
            api_model=model.api_model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            latency_ms=latency_ms,
            finish_reason=finish_reason,
            status=status,
            error_type=error_type or (type(error).__name__ if error else None),
        )
        self._records.append(record)
        logger.debug(
            "Model call %s: %s tokens=%d status=%s",
            model.id, step_slug, record.total_tokens, status,
        )
        return record

    @property
    def records(self) -> list[ModelCallRecord]:
        return list(self._records)

    @property
    def total_tokens(self) -> int:
        return sum(r.total_tokens for r in self._records)

    @property
    def total_calls(self) -> int:
        return len(self._records)

    def usage_by_model(self) -> dict[str, ModelUsage]:
        usage: dict[str, ModelUsage] = {}
        for r in self._records:
            u = usage.setdefault(r.model_id, ModelUsage(model_id=r.model_id))
            u.avg_latency_ms = (
                (u.avg_latency_ms * u.total_calls + r.latency_ms) / (u.total_calls + 1)
            )
            u.total_calls += 1
            u.failed_calls += r.status == "failed"
            u.total_input_tokens += r.input_tokens
            u.total_output_tokens += r.output_tokens
        return usage

    def save(self, path: Path) -> None:
        """Save all records to a JSON Lines file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            for record in self._records:
                f.write(json.dumps(record.model_dump(), default=str) + "\n")
