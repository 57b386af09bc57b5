# src/llm/retry.py - v1
"""Error classification and exponential backoff for job retries.

Jobs are not retried in-process: a transient failure moves the job to
``retrying`` with an ``available_at`` computed here, and a worker picks it
up again later. ``with_retry`` covers short in-process calls: the OpenAI
embedder wraps its requests with it.

Only timeouts, network failures, rate limits and server errors are
transient. An unrecognised error fails at once.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from dialectica.core.errors import DialecticError

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_TYPES: frozenset[str] = frozenset(
    {"rate_limit", "timeout", "server_error", "network"}
)


class LLMRetryExhausted(Exception):
    """All in-process retries exhausted."""

    def __init__(self, operation: str, error_type: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts ({error_type}): {last_error}"
        )


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy: delay = base * factor**(attempt-1), capped at max_delay_s."""

    max_retries: int
    base_delay_s: float
    max_delay_s: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True


def classify_error(error: BaseException) -> str:
    """Classify an exception into an error type.

    Engine errors classify by their own type: a retryable one is
    ``transient_model``, anything else is ``validation``.
    """
    if isinstance(error, DialecticError):
        return "transient_model" if error.retryable else "validation"
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(error, ConnectionError):
        return "network"

    msg = str(error).lower()
    name = type(error).__name__.lower()
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg or "ratelimit" in name:
        return "rate_limit"
    if "timeout" in name or "timeout" in msg:
        return "timeout"
    if "connection" in name or "connection" in msg:
        return "network"
    if any(c in msg for c in ("500", "502", "503", "504", "529", "server", "overloaded")):
        return "server_error"
    return "unknown"


def is_transient(error: BaseException) -> bool:
    """True when the failure may succeed on a later attempt."""
    error_type = classify_error(error)
    return error_type == "transient_model" or error_type in TRANSIENT_ERROR_TYPES


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before the given retry attempt (1-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** max(attempt - 1, 0))
    delay = min(delay, config.max_delay_s)
    if config.jitter and delay > 0:
        delay *= 0.5 + random.random()  # noqa: S311
        delay = min(delay, config.max_delay_s)
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "unknown",
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async function, retrying transient failures in-process.

    Raises:
        LLMRetryExhausted: If retries are exhausted or the error is permanent.
    """
    config = config or RetryConfig(max_retries=2, base_delay_s=1.0)
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            error_type = classify_error(e)
            attempts += 1
            if not is_transient(e) or attempts > config.max_retries:
                raise LLMRetryExhausted(operation, error_type, attempts, e) from e

            delay = compute_delay(config, attempts)
            logger.warning(
                "'%s' %s (attempt %d/%d), retrying in %.1fs",
                operation, error_type, attempts, config.max_retries, delay,
            )
            await asyncio.sleep(delay)
