# src/stages/status.py - v1
"""Session status strings.

A session moves through ``pending_<stage>`` -> ``running_<stage>`` ->
``<stage>_completed`` for every stage, and ends an iteration on
``iteration_complete_pending_review``.
"""

from __future__ import annotations

from typing import Literal, NamedTuple

ITERATION_COMPLETE = "iteration_complete_pending_review"

StagePhase = Literal["pending", "running", "completed", "iteration_complete"]


class ParsedStatus(NamedTuple):
    phase: StagePhase
    stage_slug: str | None


def pending_status(stage_slug: str) -> str:
    return f"pending_{stage_slug}"


def running_status(stage_slug: str) -> str:
    return f"running_{stage_slug}"


def completed_status(stage_slug: str) -> str:
    return f"{stage_slug}_completed"


def parse_status(status: str) -> ParsedStatus:
    """Split a status string into its phase and stage slug.

    Raises:
        ValueError: If the string is not a session status.
    """
    if status == ITERATION_COMPLETE:
        return ParsedStatus("iteration_complete", None)
    if status.startswith("pending_"):
        return ParsedStatus("pending", status[len("pending_"):])
    if status.startswith("running_"):
        return ParsedStatus("running", status[len("running_"):])
    if status.endswith("_completed"):
        return ParsedStatus("completed", status[: -len("_completed")])
    raise ValueError(f"Not a session status: {status!r}")
