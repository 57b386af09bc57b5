# src/execution/completion.py - v1
"""Completion watcher: react to a job reaching a terminal status.

Invoked after every terminal transition. It releases the parent PLAN job
once all of its children are terminal, then asks the stage state machine
to aggregate stage completion.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dialectica.core.models import utcnow
from dialectica.jobs.models import PlanPayload

if TYPE_CHECKING:
    from dialectica.core.models import Session
    from dialectica.jobs.models import Job
    from dialectica.recipes.registry import RecipeRegistry
    from dialectica.stages.state_machine import StageStateMachine
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)


class CompletionWatcher:
    """Parent barrier and stage aggregation trigger."""

    def __init__(
        self,
        state: BaseStateStore,
        registry: RecipeRegistry,
        state_machine: StageStateMachine,
    ) -> None:
        self._state = state
        self._registry = registry
        self._state_machine = state_machine

    async def on_job_transition(self, job: Job) -> Session | None:
        """Handle ``job`` after a status change.

        Returns the session when the transition completed its stage.
        """
        if not job.is_terminal:
            return None
        if job.parent_job_id:
            parent = await self._release_parent(job.parent_job_id)
            if parent is not None and parent.is_terminal:
                await self.on_job_transition(parent)
        return await self._state_machine.aggregate_completion(
            job.session_id, job.stage_slug, job.iteration_number
        )

    async def _release_parent(self, parent_id: str) -> Job | None:
        """Move a waiting parent on once every child is terminal.

        A failed child fails the parent; otherwise the parent goes back to
        the planner for its next level, or completes after the last one.
        The conditional transition lets at most one watcher win.
        """
        parent = await self._state.get_job(parent_id)
        if parent is None or parent.status != "waiting_for_children":
            return None
        children = await self._state.list_jobs(parent_job_id=parent_id)
        if not all(child.is_terminal for child in children):
            return None

        failed = [child for child in children if child.status == "failed"]
        if failed:
            released = await self._state.transition_job(
                parent_id,
                ["waiting_for_children"],
                "failed",
                error_details={
                    "type": "ChildJobsFailed",
                    "message": f"{len(failed)} of {len(children)} child jobs failed",
                    "attempt_count": parent.attempt_count,
                    "failed_children": [child.id for child in failed],
                },
                completed_at=utcnow(),
            )
        elif self._has_next_level(parent):
            released = await self._state.transition_job(
                parent_id, ["waiting_for_children"], "pending_next_step", available_at=utcnow()
            )
        else:
            released = await self._state.transition_job(
                parent_id,
                ["waiting_for_children"],
                "completed",
                results={**parent.results, "children": len(children)},
                completed_at=utcnow(),
            )
        if released is not None:
            logger.info(
                "Parent job %s released to %s (%d children, %d failed)",
                parent_id, released.status, len(children), len(failed),
            )
        return released

    def _has_next_level(self, parent: Job) -> bool:
        payload = parent.payload
        if not isinstance(payload, PlanPayload):
            return False
        plan = self._registry.step_plan(payload.recipe_id)
        return payload.next_level < len(plan.levels)
