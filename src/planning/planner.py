# src/planning/planner.py - v1
"""Job planner: stage PLAN jobs and their per-level EXECUTE children.

A stage starts with one PLAN job per selected model. Each time a PLAN job
is processed it plans the next recipe level for its model: it gathers the
artifacts the level's steps need, applies each step's granularity
strategy and creates one EXECUTE child per unit and output document key.
The PLAN job waits for its children; when they are all terminal the
completion watcher hands it back for the following level.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dialectica.core.errors import (
    MissingRequiredInputError,
    NotFoundError,
    SessionCancelledError,
    StageMismatchError,
)
from dialectica.core.models import utcnow
from dialectica.jobs.models import ExecutePayload, Job, PlanPayload
from dialectica.planning.models import PlanningResult
from dialectica.planning.registry import get_granularity_planner

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.core.models import Project, Session, Stage
    from dialectica.gathering.input_gatherer import InputGatherer
    from dialectica.recipes.models import RecipeInstance, RecipeStep
    from dialectica.recipes.registry import RecipeRegistry
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)


class JobPlanner:
    """Creates PLAN jobs for a stage and expands recipe levels into children."""

    def __init__(
        self,
        state: BaseStateStore,
        registry: RecipeRegistry,
        gatherer: InputGatherer,
        settings: Settings,
    ) -> None:
        self._state = state
        self._registry = registry
        self._gatherer = gatherer
        self._settings = settings

    def validate_recipe(self, recipe: RecipeInstance) -> None:
        """Resolve every step strategy up front.

        Raises:
            ConfigurationError: If a step names an unregistered strategy.
        """
        for step in recipe.steps:
            get_granularity_planner(step)

    async def plan(
        self,
        stage: Stage,
        session: Session,
        iteration: int,
        user_id: str,
        wallet_id: str | None = None,
    ) -> list[Job]:
        """Create one root PLAN job per selected model."""
        recipe = self._registry.recipe_for_stage(stage)
        self.validate_recipe(recipe)

        jobs = [
            Job(
                job_type="PLAN",
                session_id=session.id,
                user_id=user_id,
                stage_slug=stage.slug,
                iteration_number=iteration,
                max_retries=self._settings.job_max_retries,
                payload=PlanPayload(
                    model_id=model_id,
                    recipe_id=recipe.id,
                    recipe_version=recipe.version,
                    wallet_id=wallet_id,
                ),
            )
            for model_id in session.selected_model_ids
        ]
        await self._state.insert_jobs(jobs)
        logger.info(
            "Planned stage %s iteration %d: %d PLAN jobs (recipe %s v%d)",
            stage.slug, iteration, len(jobs), recipe.id, recipe.version,
        )
        return jobs

    async def plan_next_step(self, plan_job: Job) -> PlanningResult:
        """Plan the next non-empty recipe level of ``plan_job``.

        The PLAN job moves to ``waiting_for_children`` before its children
        are stored, so a child finishing early always finds its parent
        waiting. When no level is left the PLAN job completes.

        Raises:
            SessionCancelledError: The session was cancelled.
            StageMismatchError: Job and recipe disagree on stage or version.
            MissingRequiredInputError: A level with a required anchor
                resolved no units.
        """
        payload = plan_job.payload
        if not isinstance(payload, PlanPayload):
            raise StageMismatchError(f"Job {plan_job.id} is not a PLAN job")

        session = await self._state.get_session(plan_job.session_id)
        if session is None:
            raise NotFoundError(f"Session {plan_job.session_id} not found")
        if session.is_cancelled:
            raise SessionCancelledError(f"Session {session.id} is cancelled")
        project = await self._state.get_project(session.project_id)
        if project is None:
            raise NotFoundError(f"Project {session.project_id} not found")

        recipe = self._registry.recipe(payload.recipe_id)
        if recipe.stage_slug != plan_job.stage_slug or recipe.version != payload.recipe_version:
            raise StageMismatchError(
                f"PLAN job {plan_job.id} for stage {plan_job.stage_slug!r} "
                f"cannot run recipe {recipe.id!r} v{recipe.version}",
                recipe_version=payload.recipe_version,
            )

        step_plan = self._registry.step_plan(recipe.id)
        level = payload.next_level
        skipped: list[str] = []
        children: list[Job] = []
        while level < len(step_plan.levels):
            for step in self._registry.level_steps(recipe.id, level):
                step_children = await self._plan_step(plan_job, step, project, session)
                if not step_children:
                    skipped.append(step.step_slug)
                children.extend(step_children)
            if children:
                break
            level += 1

        if not children:
            done = await self._state.transition_job(
                plan_job.id,
                ["processing"],
                "completed",
                results={**plan_job.results, "levels_planned": level},
                completed_at=utcnow(),
            )
            logger.info("PLAN job %s has no levels left; completed", plan_job.id)
            return PlanningResult(job=done, level=level, skipped_steps=skipped, completed=True)

        waiting = await self._state.transition_job(
            plan_job.id,
            ["processing"],
            "waiting_for_children",
            payload=payload.model_copy(update={"next_level": level + 1}),
        )
        if waiting is None:
            logger.warning("PLAN job %s left processing while planning; dropping children", plan_job.id)
            return PlanningResult(job=None, level=level, skipped_steps=skipped)

        await self._state.insert_jobs(children)
        logger.info(
            "PLAN job %s level %d: %d children for model %s",
            plan_job.id, level, len(children), payload.model_id,
        )
        return PlanningResult(job=waiting, level=level, children=children, skipped_steps=skipped)

    async def _plan_step(
        self, plan_job: Job, step: RecipeStep, project: Project, session: Session
    ) -> list[Job]:
        payload = plan_job.payload
        strategy = get_granularity_planner(step)
        sources = await self._gatherer.gather(
            step,
            project,
            session,
            plan_job.iteration_number,
            model_id=payload.model_id,
            enforce_required=False,
            include_content=False,
        )
        units = strategy.plan([payload.model_id], sources, step)
        if not units:
            required = [r for r in step.anchor_rules if r.required]
            if required:
                raise MissingRequiredInputError(
                    f"Step {step.step_slug!r} planned no work: required anchor input "
                    f"from {required[0].slug!r} is missing for model {payload.model_id}",
                    step_slug=step.step_slug,
                    model_id=payload.model_id,
                )
            logger.info("Step %s planned no work; skipping", step.step_slug)
            return []

        output = step.outputs_required
        return [
            Job(
                job_type="EXECUTE",
                parent_job_id=plan_job.id,
                session_id=plan_job.session_id,
                user_id=plan_job.user_id,
                stage_slug=plan_job.stage_slug,
                iteration_number=plan_job.iteration_number,
                max_retries=plan_job.max_retries,
                payload=ExecutePayload(
                    model_id=payload.model_id,
                    recipe_id=payload.recipe_id,
                    recipe_version=payload.recipe_version,
                    step_slug=step.step_slug,
                    document_key=document_key,
                    output_type=output.output_type,
                    unit=unit,
                    wallet_id=payload.wallet_id,
                ),
            )
            for unit in units
            for document_key in output.keys
        ]
