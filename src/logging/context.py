# src/logging/context.py - v1
"""Per-job logging context: session, job, stage and model ids.

The worker sets the context when it starts a job; asyncio tasks copy the
current context on creation, so concurrent jobs never see each other's ids.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("job_id", default=None)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar("stage", default=None)
_model_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "model_id", default=None
)


@dataclass
class LogContext:
    """Snapshot of the current logging context."""

    session_id: str | None = None
    job_id: str | None = None
    stage: str | None = None
    model_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Non-None fields, for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    return LogContext(
        session_id=_session_id.get(),
        job_id=_job_id.get(),
        stage=_stage.get(),
        model_id=_model_id.get(),
    )


def set_session_context(session_id: str, stage: str | None = None) -> None:
    """Session-level context for service calls outside a job."""
    _session_id.set(session_id)
    _stage.set(stage)


def set_job_context(session_id: str, job_id: str, stage: str, model_id: str | None) -> None:
    """Job-level context, set by the worker for each claimed job."""
    _session_id.set(session_id)
    _job_id.set(job_id)
    _stage.set(stage)
    _model_id.set(model_id)


def clear_context() -> None:
    _session_id.set(None)
    _job_id.set(None)
    _stage.set(None)
    _model_id.set(None)
