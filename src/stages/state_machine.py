# src/stages/state_machine.py - v1
"""Session stage lifecycle.

    pending_<stage> --generate--> running_<stage> --all jobs terminal-->
    <stage>_completed --submit--> pending_<next>  (or iteration_complete_pending_review)

Every session write is a compare-and-set on ``Session.version``. A lost
race reloads the session and evaluates the request again, up to
``settings.session_update_attempts`` times.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from dialectica.core.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    StageMismatchError,
    StageNotCompleteError,
)
from dialectica.recipes.models import DocumentRule, FeedbackRule
from dialectica.stages.status import (
    ITERATION_COMPLETE,
    completed_status,
    pending_status,
    running_status,
)
from dialectica.storage.models import FeedbackUpload

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.core.models import Feedback, ProcessTemplate, Project, Session, Stage
    from dialectica.gathering.input_gatherer import InputGatherer
    from dialectica.llm.catalog import ModelCatalog
    from dialectica.prompts.assembler import PromptAssembler
    from dialectica.recipes.registry import RecipeRegistry
    from dialectica.stages.models import DocumentResponse
    from dialectica.storage.artifact_store import ArtifactStore
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)


class StageStateMachine:
    """Drives session status across stages and iterations."""

    def __init__(
        self,
        state: BaseStateStore,
        registry: RecipeRegistry,
        gatherer: InputGatherer,
        assembler: PromptAssembler,
        artifacts: ArtifactStore,
        catalog: ModelCatalog,
        settings: Settings,
    ) -> None:
        self._state = state
        self._registry = registry
        self._gatherer = gatherer
        self._assembler = assembler
        self._artifacts = artifacts
        self._catalog = catalog
        self._settings = settings

    async def _load(self, session_id: str) -> tuple[Session, Project, ProcessTemplate]:
        session = await self._state.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        project = await self._state.get_project(session.project_id)
        if project is None:
            raise NotFoundError(f"Project {session.project_id} not found")
        return session, project, self._registry.template(project.process_template_id)

    @staticmethod
    def _stage(template: ProcessTemplate, slug: str) -> Stage:
        try:
            return template.stage(slug)
        except KeyError:
            raise StageMismatchError(
                f"Stage {slug!r} is not part of template {template.id!r}"
            ) from None

    @property
    def _attempts(self) -> int:
        return max(self._settings.session_update_attempts, 1)

    # --- Seed prompts ---

    async def seed_stage(
        self,
        project: Project,
        session: Session,
        stage: Stage,
        iteration: int,
        source: tuple[str, int] | None = None,
        stage_feedback: str | None = None,
    ) -> str:
        """Assemble and persist the seed prompt of ``stage``.

        ``source`` is the (stage slug, iteration) just finished. The prior
        work is every earlier-stage input the stage's recipe declares,
        gathered in aggregate mode at the source iteration, plus the source
        stage itself when the recipe does not read it. None seeds from the
        initial prompt only.
        """
        prior = None
        if source is not None:
            source_slug, source_iteration = source
            rules = list(self._registry.recipe_for_stage(stage).prior_stage_inputs())
            if not any(rule.slug == source_slug for rule in rules):
                rules += [DocumentRule(slug=source_slug), FeedbackRule(slug=source_slug)]
            prior = await self._gatherer.gather_rules(
                f"seed_{stage.slug}",
                rules,
                project,
                session,
                source_iteration,
                enforce_required=False,
            )
        content = self._assembler.assemble_seed_prompt(project, stage, prior, stage_feedback)
        seed = await self._artifacts.save_seed_prompt(
            project.id,
            session.id,
            stage,
            iteration,
            content,
            metadata={
                "source_stage": source[0] if source else None,
                "source_iteration": source[1] if source else None,
                "prior_documents": len(prior.documents()) if prior is not None else 0,
            },
        )
        logger.info(
            "Seed prompt for %s iteration %d saved at %s", stage.slug, iteration, seed.storage_path
        )
        return seed.storage_path

    # --- Transitions ---

    async def mark_running(self, session: Session, stage: Stage) -> Session:
        """``pending_<stage>`` -> ``running_<stage>`` at the caller's version.

        Raises:
            ConcurrencyConflictError: The session changed since it was read.
        """
        return await self._state.update_session(
            session.id, session.version, status=running_status(stage.slug)
        )

    async def aggregate_completion(
        self, session_id: str, stage_slug: str, iteration: int
    ) -> Session | None:
        """Mark the stage completed once every one of its jobs is terminal.

        Idempotent; never touches ``current_stage_id``. Returns the updated
        session, or None when nothing changed.
        """
        for _ in range(self._attempts):
            session, _project, template = await self._load(session_id)
            if session.iteration_count != iteration:
                return None
            if template.stage_by_id(session.current_stage_id).slug != stage_slug:
                return None
            if session.status not in (running_status(stage_slug), pending_status(stage_slug)):
                return None

            jobs = await self._state.list_jobs(
                session_id=session_id, stage_slug=stage_slug, iteration=iteration
            )
            if not jobs or not all(job.is_terminal for job in jobs):
                return None

            try:
                updated = await self._state.update_session(
                    session_id, session.version, status=completed_status(stage_slug)
                )
            except ConcurrencyConflictError:
                logger.debug("Aggregation of %s lost a race; re-evaluating", stage_slug)
                continue
            failed = sum(1 for job in jobs if job.status == "failed")
            logger.info(
                "Stage %s iteration %d completed for session %s (%d jobs, %d failed)",
                stage_slug, iteration, session_id, len(jobs), failed,
            )
            return updated
        raise ConcurrencyConflictError(
            f"Could not aggregate stage {stage_slug} of session {session_id}",
            attempts=self._attempts,
        )

    async def submit_stage_responses(
        self,
        session_id: str,
        stage_slug: str,
        iteration: int,
        responses: Iterable[DocumentResponse],
        user_id: str,
        stage_feedback: str | None = None,
    ) -> Session:
        """Persist feedback on a completed stage and advance the session.

        Submitting for a stage the session has already left returns the
        session unchanged.

        Raises:
            StageNotCompleteError: The stage has not completed yet.
            StageMismatchError: The stage or iteration is ahead of the session.
        """
        responses = list(responses)
        feedback_saved = False

        for _ in range(self._attempts):
            session, project, template = await self._load(session_id)
            stage = self._stage(template, stage_slug)
            current = template.stage_by_id(session.current_stage_id)

            if iteration < session.iteration_count:
                return session
            if iteration > session.iteration_count:
                raise StageMismatchError(
                    f"Iteration {iteration} has not started; session is on "
                    f"iteration {session.iteration_count}",
                )
            here, there = template.position(stage.slug), template.position(current.slug)
            if here < there:
                logger.info("Stage %s already submitted for session %s", stage.slug, session.id)
                return session
            if here > there:
                raise StageMismatchError(
                    f"Stage {stage.slug!r} is ahead of the current stage {current.slug!r}",
                    stage_slug=stage.slug,
                    current_stage=current.slug,
                )
            if session.status == ITERATION_COMPLETE:
                return session
            if session.status != completed_status(stage.slug):
                raise StageNotCompleteError(
                    f"Stage {stage.slug!r} is not complete (status {session.status!r})",
                    status=session.status,
                )

            if not feedback_saved:
                await self._save_responses(project, session, stage, iteration, responses, user_id)
                if stage_feedback:
                    await self._artifacts.save_stage_feedback(
                        project.id, session.id, stage, iteration, stage_feedback
                    )
                feedback_saved = True

            next_stage = template.next_stage(stage.slug)
            if next_stage is not None:
                await self.seed_stage(
                    project,
                    session,
                    next_stage,
                    iteration,
                    source=(stage.slug, iteration),
                    stage_feedback=stage_feedback,
                )
                changes = {
                    "status": pending_status(next_stage.slug),
                    "current_stage_id": next_stage.id,
                }
            else:
                changes = {"status": ITERATION_COMPLETE}

            try:
                updated = await self._state.update_session(session.id, session.version, **changes)
            except ConcurrencyConflictError:
                logger.debug("Submission of %s lost a race; re-evaluating", stage.slug)
                continue
            logger.info(
                "Session %s advanced from %s to %s",
                session.id, stage.slug, updated.status,
            )
            return updated
        raise ConcurrencyConflictError(
            f"Could not advance session {session_id} from {stage_slug}",
            attempts=self._attempts,
        )

    async def _save_responses(
        self,
        project: Project,
        session: Session,
        stage: Stage,
        iteration: int,
        responses: list[DocumentResponse],
        user_id: str,
    ) -> list[Feedback]:
        saved = []
        for response in responses:
            saved.append(
                await self._artifacts.save_feedback(
                    FeedbackUpload(
                        project_id=project.id,
                        session_id=session.id,
                        stage=stage,
                        iteration=iteration,
                        model=self._catalog.get(response.model_id),
                        document_key=response.document_key,
                        user_id=user_id,
                        content=response.content,
                        feedback_type=response.feedback_type,
                    )
                )
            )
        return saved

    async def begin_next_iteration(self, session_id: str) -> Session:
        """Restart the process at its first stage for a new iteration.

        The new iteration's seed prompt carries the last stage's documents
        and feedback forward.

        Raises:
            StageNotCompleteError: The current iteration is still open.
        """
        for _ in range(self._attempts):
            session, project, template = await self._load(session_id)
            if session.status != ITERATION_COMPLETE:
                raise StageNotCompleteError(
                    f"Iteration {session.iteration_count} is still open "
                    f"(status {session.status!r})",
                    status=session.status,
                )
            last = template.stage_by_id(session.current_stage_id)
            first = self._stage(template, template.starting_stage_slug)
            iteration = session.iteration_count + 1
            await self.seed_stage(
                project, session, first, iteration, source=(last.slug, session.iteration_count)
            )
            try:
                updated = await self._state.update_session(
                    session.id,
                    session.version,
                    status=pending_status(first.slug),
                    current_stage_id=first.id,
                    iteration_count=iteration,
                )
            except ConcurrencyConflictError:
                continue
            logger.info("Session %s began iteration %d", session.id, iteration)
            return updated
        raise ConcurrencyConflictError(
            f"Could not start a new iteration of session {session_id}",
            attempts=self._attempts,
        )
