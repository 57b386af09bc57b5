# src/tracking/models.py - v1
"""Tracking models: one record per model call, plus per-model totals."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ModelCallRecord(BaseModel):
    """Individual model call made while executing a job."""

    call_id: str
    timestamp: datetime
    job_id: str
    session_id: str
    stage_slug: str
    step_slug: str
    model_id: str
    provider: str
    api_model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    finish_reason: str | None = None
    status: Literal["success", "truncated", "failed"]
    error_type: str | None = None


class ModelUsage(BaseModel):
    """Aggregated usage of one model."""

    model_id: str
    total_calls: int = 0
    failed_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    avg_latency_ms: float = 0.0
