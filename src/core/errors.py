# src/core/errors.py - v1
"""Error taxonomy for the orchestration engine.

Configuration errors are fatal and surfaced to the caller. Validation
errors fail the affected job only. Transient errors are retried with
backoff until max_retries is exhausted.
"""

from __future__ import annotations

from typing import Any


class DialecticError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details

    def to_details(self) -> dict[str, Any]:
        """Serializable form stored in Job.error_details."""
        data: dict[str, Any] = {"type": type(self).__name__, "message": str(self)}
        if self.details:
            data["details"] = {k: _plain(v) for k, v in self.details.items()}
        return data


class ConfigurationError(DialecticError):
    """Configuration is missing or internally inconsistent."""


class DialecticValidationError(DialecticError):
    """Malformed payload, unresolved input or response contract breach."""


class MissingRequiredInputError(DialecticValidationError):
    """A required input rule resolved to no source artifact."""


class ResponseContractError(DialecticValidationError):
    """Model output does not match the step's declared output shape."""


class StageMismatchError(DialecticValidationError):
    """Job, session and recipe disagree on stage or iteration."""


class ModelScopeViolation(DialecticValidationError):
    """An artifact produced by one model was routed to another model."""


class TransientModelError(DialecticError):
    """Timeout, network or rate-limit failure from the model adapter."""

    retryable = True


class StageNotCompleteError(DialecticError):
    """Stage submission attempted before the stage finished."""


class AuthorizationError(DialecticError):
    """Caller does not own the project or session."""


class NotFoundError(DialecticError):
    """Referenced entity does not exist."""


class ConcurrencyConflictError(DialecticError):
    """Conditional update lost against a concurrent writer."""


class SessionCancelledError(DialecticError):
    """Session was cancelled; no new work may be scheduled."""


def _plain(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)
