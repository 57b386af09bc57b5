# src/api/facade.py - v1
"""Public service facade: the single entry point for callers.

Usage:
    from dialectica.api.facade import DialecticService
    service = DialecticService.from_settings()
    project = await service.create_project(user_id, "Design a ...")
    session = await service.start_session(project.id, user_id, ["model-a", "model-b"])
    await service.generate_contributions(session.id, user_id, "thesis", 1)
    await service.run_until_idle()

Every call checks that the caller owns the project before touching it.
"""

from __future__ import annotations

import io
import logging
import zipfile
from typing import TYPE_CHECKING, Iterable

from dialectica.api.models import (
    GenerateContributionsResult,
    ProjectManifest,
    SessionManifest,
    StageDocuments,
    StageProgress,
)
from dialectica.config.settings import Settings
from dialectica.core.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    ConfigurationError,
    NotFoundError,
    SessionCancelledError,
    StageMismatchError,
)
from dialectica.core.models import Project, Session, new_id, utcnow
from dialectica.execution.completion import CompletionWatcher
from dialectica.execution.continuation import ContinuationManager
from dialectica.execution.executor import JobExecutor, contribution_type_for
from dialectica.execution.validation import normalize_json_document
from dialectica.execution.worker import JobWorker, WorkerPool
from dialectica.gathering.input_gatherer import InputGatherer
from dialectica.jobs.graph import build_job_graph, export_node_link, summarize_progress
from dialectica.jobs.transitions import sources_for
from dialectica.llm.catalog import ModelCatalog
from dialectica.logging.context import set_session_context
from dialectica.planning.planner import JobPlanner
from dialectica.prompts.assembler import PromptAssembler
from dialectica.prompts.condenser import PromptCondenser
from dialectica.rag.indexer import DocumentIndexer
from dialectica.recipes.registry import RecipeRegistry
from dialectica.stages.models import DocumentResponse
from dialectica.stages.state_machine import StageStateMachine
from dialectica.stages.status import pending_status, running_status
from dialectica.storage.artifact_store import ArtifactStore
from dialectica.storage.blob_factory import create_blob_store
from dialectica.storage.models import ContributionUpload, FeedbackUpload
from dialectica.storage.paths import deconstruct_storage_path, short_session_id
from dialectica.storage.state_store_factory import create_state_store
from dialectica.tracking.call_logger import CallLogger

if TYPE_CHECKING:
    from dialectica.core.models import Contribution, Feedback, ProcessTemplate, Stage
    from dialectica.jobs.models import Job
    from dialectica.recipes.models import OutputRule
    from dialectica.storage.base_blob_store import BaseBlobStore
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)

EXPORT_MANIFEST = "project_manifest.json"
EXPORT_ARTIFACTS_DIR = "artifacts"


def _rebase(path: str, prefixes: dict[str, str]) -> str:
    """Swap the first matching prefix of an artifact path."""
    for old, new in prefixes.items():
        if path.startswith(old):
            return new + path[len(old):]
    return path


class DialecticService:
    """Wires the engine components and exposes the caller operations."""

    def __init__(
        self,
        settings: Settings,
        state: BaseStateStore,
        blobs: BaseBlobStore,
        catalog: ModelCatalog,
        registry: RecipeRegistry | None = None,
        indexer: DocumentIndexer | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        self.settings = settings
        self.state = state
        self.catalog = catalog
        self.registry = registry or RecipeRegistry.default()
        self.call_logger = call_logger or CallLogger()
        self.artifacts = ArtifactStore(blobs, state)
        self.gatherer = InputGatherer(state, self.artifacts)
        self.assembler = PromptAssembler(
            condenser=PromptCondenser(
                settings.max_prompt_tokens,
                indexer=indexer,
                top_k=settings.rag_retrieval_top_k,
            )
        )
        self.planner = JobPlanner(state, self.registry, self.gatherer, settings)
        self.executor = JobExecutor(
            state,
            self.registry,
            self.gatherer,
            self.assembler,
            self.artifacts,
            catalog,
            settings,
            indexer=indexer,
            call_logger=self.call_logger,
        )
        self.state_machine = StageStateMachine(
            state,
            self.registry,
            self.gatherer,
            self.assembler,
            self.artifacts,
            catalog,
            settings,
        )
        self.continuation = ContinuationManager(state, settings)
        self.watcher = CompletionWatcher(state, self.registry, self.state_machine)
        self.worker = JobWorker(self.planner, self.executor, self.continuation, self.watcher)
        self.pool = WorkerPool(self.worker, state, settings)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        catalog: ModelCatalog | None = None,
        state: BaseStateStore | None = None,
        blobs: BaseBlobStore | None = None,
    ) -> DialecticService:
        """Build a service from configuration; explicit components win."""
        settings = settings or Settings()
        return cls(
            settings,
            state or create_state_store(settings),
            blobs or create_blob_store(settings),
            catalog or ModelCatalog.from_settings(settings),
            indexer=DocumentIndexer.from_settings(settings),
        )

    async def close(self) -> None:
        await self.state.close()

    # --- Lookups ---

    async def _owned_project(self, project_id: str, user_id: str) -> Project:
        project = await self.state.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.user_id != user_id:
            raise AuthorizationError(
                f"User {user_id} does not own project {project_id}",
                project_id=project_id,
            )
        return project

    async def _owned_session(self, session_id: str, user_id: str) -> tuple[Session, Project]:
        session = await self.state.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        project = await self._owned_project(session.project_id, user_id)
        set_session_context(session.id)
        return session, project

    def _template(self, project: Project) -> ProcessTemplate:
        return self.registry.template(project.process_template_id)

    def _stage(self, project: Project, stage_slug: str) -> Stage:
        template = self._template(project)
        try:
            return template.stage(stage_slug)
        except KeyError:
            raise StageMismatchError(
                f"Stage {stage_slug!r} is not part of template {template.id!r}"
            ) from None

    # --- Projects and sessions ---

    async def create_project(
        self,
        user_id: str,
        initial_prompt: str,
        name: str = "",
        domain: str | None = None,
        domain_overlay_values: dict[str, str] | None = None,
        process_template_id: str = "dialectic_default",
    ) -> Project:
        """Create a project.

        Raises:
            ConfigurationError: Unknown process template or empty prompt.
        """
        if not initial_prompt.strip():
            raise ConfigurationError("A project needs a non-empty initial prompt")
        self.registry.template(process_template_id)
        project = Project(
            user_id=user_id,
            name=name,
            initial_prompt=initial_prompt,
            domain=domain or self.settings.default_domain,
            domain_overlay_values=domain_overlay_values or {},
            process_template_id=process_template_id,
        )
        await self.state.create_project(project)
        logger.info("Created project %s for user %s", project.id, user_id)
        return project

    async def start_session(
        self,
        project_id: str,
        user_id: str,
        model_ids: Iterable[str],
        stage_slug: str | None = None,
    ) -> Session:
        """Open a session on ``stage_slug`` (default: the starting stage).

        The stage's seed prompt is assembled and stored immediately.

        Raises:
            NotFoundError: A selected model is not in the catalog.
            ConfigurationError: No model was selected.
        """
        project = await self._owned_project(project_id, user_id)
        selected = list(dict.fromkeys(model_ids))
        if not selected:
            raise ConfigurationError("A session needs at least one model")
        for model_id in selected:
            model = self.catalog.get(model_id)
            if not model.is_active:
                raise ConfigurationError(f"Model {model_id!r} is not active")

        template = self._template(project)
        stage = self._stage(project, stage_slug or template.starting_stage_slug)
        session = Session(
            project_id=project.id,
            status=pending_status(stage.slug),
            current_stage_id=stage.id,
            selected_model_ids=selected,
        )
        await self.state.create_session(session)
        set_session_context(session.id, stage.slug)
        await self.state_machine.seed_stage(project, session, stage, session.iteration_count)
        logger.info(
            "Started session %s on %s with %d models", session.id, stage.slug, len(selected)
        )
        return session

    # --- Clone and export ---

    async def _session_manifest(self, project: Project, session: Session) -> SessionManifest:
        template = self._template(project)
        seeds = []
        for iteration in range(1, session.iteration_count + 1):
            for stage in template.stages:
                seed = await self.state.get_seed_prompt(session.id, stage.slug, iteration)
                if seed is not None:
                    seeds.append(seed)
        return SessionManifest(
            session=session,
            contributions=await self.state.list_contributions(session.id, latest_only=False),
            feedback=await self.state.list_feedback(session.id),
            seed_prompts=seeds,
        )

    async def clone_project(
        self, project_id: str, user_id: str, name: str | None = None
    ) -> Project:
        """Copy a project, its sessions, their records and artifacts under new ids.

        Jobs are not copied. Every cloned record points at its own copy of
        the artifact, and source references are remapped to the cloned
        contributions.

        Raises:
            NotFoundError: The project does not exist.
            AuthorizationError: The caller does not own the project.
        """
        original = await self._owned_project(project_id, user_id)
        now = utcnow()
        clone = original.model_copy(
            update={
                "id": new_id(),
                "name": name or f"[CLONE] {original.name}".rstrip(),
                "created_at": now,
            },
            deep=True,
        )
        manifests = [
            await self._session_manifest(original, s)
            for s in await self.state.list_sessions(original.id)
        ]
        await self.state.create_project(clone)

        prefixes: dict[str, str] = {}
        sessions: dict[str, Session] = {}
        for manifest in manifests:
            old = manifest.session
            new = old.model_copy(
                update={
                    "id": new_id(),
                    "project_id": clone.id,
                    "version": 0,
                    "created_at": now,
                    "updated_at": now,
                },
                deep=True,
            )
            sessions[old.id] = new
            prefixes[f"{original.id}/session_{short_session_id(old.id)}/"] = (
                f"{clone.id}/session_{short_session_id(new.id)}/"
            )
            await self.state.create_session(new)
        prefixes[f"{original.id}/"] = f"{clone.id}/"

        contribution_ids = {
            c.id: new_id() for manifest in manifests for c in manifest.contributions
        }
        for manifest in manifests:
            new_session_id = sessions[manifest.session.id].id
            # superseded edits first so the latest edit stays current
            for c in sorted(manifest.contributions, key=lambda c: c.is_latest_edit):
                await self.state.save_contribution(
                    c.model_copy(
                        update={
                            "id": contribution_ids[c.id],
                            "session_id": new_session_id,
                            "project_id": clone.id,
                            "storage_path": _rebase(c.storage_path, prefixes),
                            "raw_response_path": (
                                _rebase(c.raw_response_path, prefixes)
                                if c.raw_response_path
                                else None
                            ),
                            "source_document_id": contribution_ids.get(
                                c.source_document_id, c.source_document_id
                            ),
                            "source_document_ids": [
                                contribution_ids.get(i, i) for i in c.source_document_ids
                            ],
                        }
                    )
                )
            for fb in manifest.feedback:
                await self.state.upsert_feedback(
                    fb.model_copy(
                        update={
                            "id": new_id(),
                            "session_id": new_session_id,
                            "project_id": clone.id,
                            "storage_path": _rebase(fb.storage_path, prefixes),
                        }
                    )
                )
            for seed in manifest.seed_prompts:
                await self.state.save_seed_prompt(
                    seed.model_copy(
                        update={
                            "session_id": new_session_id,
                            "storage_path": _rebase(seed.storage_path, prefixes),
                        }
                    )
                )

        paths = await self.artifacts.walk(original.id)
        await self.artifacts.copy_blobs({p: _rebase(p, prefixes) for p in paths})
        logger.info(
            "Cloned project %s into %s: %d sessions, %d contributions, %d files",
            original.id, clone.id, len(sessions), len(contribution_ids), len(paths),
        )
        return clone

    async def export_project(self, project_id: str, user_id: str) -> bytes:
        """Zip archive of a project.

        The archive holds ``project_manifest.json`` (project, sessions with
        their contributions, feedback and seed prompts) and every artifact
        under ``artifacts/`` at its storage path.

        Raises:
            NotFoundError: The project does not exist.
            AuthorizationError: The caller does not own the project.
        """
        project = await self._owned_project(project_id, user_id)
        sessions = [
            await self._session_manifest(project, s)
            for s in await self.state.list_sessions(project.id)
        ]
        files = await self.artifacts.walk(project.id)
        manifest = ProjectManifest(
            project=project, sessions=sessions, files=files, exported_at=utcnow()
        )
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(EXPORT_MANIFEST, manifest.model_dump_json(indent=2))
            for path in files:
                content = await self.artifacts.blobs.read(path)
                archive.writestr(f"{EXPORT_ARTIFACTS_DIR}/{path}", content)
        logger.info(
            "Exported project %s: %d sessions, %d files", project.id, len(sessions), len(files)
        )
        return buffer.getvalue()

    async def generate_contributions(
        self,
        session_id: str,
        user_id: str,
        stage_slug: str,
        iteration: int,
        wallet_id: str | None = None,
    ) -> GenerateContributionsResult:
        """Start a stage: mark it running and create its root PLAN jobs.

        Calling again while the stage runs returns the existing PLAN jobs.

        Raises:
            SessionCancelledError: The session was cancelled.
            StageMismatchError: The session is not waiting on this stage.
            ConfigurationError: The stage recipe names an unknown strategy.
        """
        session, project = await self._owned_session(session_id, user_id)
        if session.is_cancelled:
            raise SessionCancelledError(f"Session {session.id} is cancelled")
        stage = self._stage(project, stage_slug)

        if session.status == running_status(stage.slug) and session.iteration_count == iteration:
            jobs = await self.state.list_jobs(
                session_id=session.id, stage_slug=stage.slug, iteration=iteration, job_type="PLAN"
            )
            return GenerateContributionsResult(
                session=session, jobs=[j for j in jobs if j.parent_job_id is None]
            )
        if (
            session.status != pending_status(stage.slug)
            or session.current_stage_id != stage.id
            or session.iteration_count != iteration
        ):
            raise StageMismatchError(
                f"Session {session.id} is {session.status!r} on iteration "
                f"{session.iteration_count}; cannot generate {stage.slug!r} "
                f"iteration {iteration}",
                status=session.status,
            )

        self.planner.validate_recipe(self.registry.recipe_for_stage(stage))
        running = await self.state_machine.mark_running(session, stage)
        jobs = await self.planner.plan(stage, running, iteration, user_id, wallet_id)
        return GenerateContributionsResult(session=running, jobs=jobs)

    # --- Feedback and submission ---

    async def submit_stage_document_feedback(
        self,
        session_id: str,
        user_id: str,
        stage_slug: str,
        iteration: int,
        model_id: str,
        document_key: str,
        content: str,
        feedback_type: str = "user_feedback",
    ) -> Feedback:
        """Store (or replace) the feedback on one model's document."""
        session, project = await self._owned_session(session_id, user_id)
        stage = self._stage(project, stage_slug)
        if model_id not in session.selected_model_ids:
            raise NotFoundError(
                f"Model {model_id!r} is not part of session {session.id}", model_id=model_id
            )
        return await self.artifacts.save_feedback(
            FeedbackUpload(
                project_id=project.id,
                session_id=session.id,
                stage=stage,
                iteration=iteration,
                model=self.catalog.get(model_id),
                document_key=document_key,
                user_id=user_id,
                content=content,
                feedback_type=feedback_type,
            )
        )

    async def submit_stage_responses(
        self,
        session_id: str,
        user_id: str,
        stage_slug: str,
        iteration: int,
        responses: Iterable[DocumentResponse] = (),
        stage_feedback: str | None = None,
    ) -> Session:
        """Close a completed stage and move the session to the next one."""
        await self._owned_session(session_id, user_id)
        return await self.state_machine.submit_stage_responses(
            session_id, stage_slug, iteration, responses, user_id, stage_feedback
        )

    async def begin_next_iteration(self, session_id: str, user_id: str) -> Session:
        await self._owned_session(session_id, user_id)
        return await self.state_machine.begin_next_iteration(session_id)

    # --- Contributions ---

    async def _owned_contribution(
        self, contribution_id: str, user_id: str
    ) -> tuple[Contribution, Session, Project]:
        contribution = await self.state.get_contribution(contribution_id)
        if contribution is None:
            raise NotFoundError(f"Contribution {contribution_id} not found")
        session, project = await self._owned_session(contribution.session_id, user_id)
        return contribution, session, project

    def _output_rule(self, stage: Stage, contribution: Contribution) -> OutputRule:
        recipe = self.registry.recipe_for_stage(stage)
        for step in recipe.steps:
            output = step.outputs_required
            if (
                contribution.document_key in output.keys
                and contribution_type_for(output, stage.slug) == contribution.contribution_type
            ):
                return output
        raise ConfigurationError(
            f"No step of recipe {recipe.id!r} produces "
            f"{contribution.contribution_type}/{contribution.document_key}"
        )

    async def save_contribution_edit(
        self, contribution_id: str, user_id: str, content: str
    ) -> Contribution:
        """Save user-edited content as the new latest version.

        Raises:
            ResponseContractError: Edited JSON documents must stay JSON objects.
        """
        original, session, project = await self._owned_contribution(contribution_id, user_id)
        if not original.is_latest_edit:
            raise StageMismatchError(
                f"Contribution {original.id} was superseded; edit the latest version"
            )
        stage = self._stage(project, original.stage_slug)
        output = self._output_rule(stage, original)
        file_format = output.file_format(original.document_key)
        if file_format == "json":
            content = normalize_json_document(content, original.document_key)

        model = self.catalog.get(original.model_id)
        upload = ContributionUpload(
            project_id=project.id,
            session_id=session.id,
            stage=stage,
            iteration=original.iteration_number,
            model=model,
            contribution_type=original.contribution_type,
            document_key=original.document_key,
            content=content,
            edit_key=original.edit_key,
            attempt_count=original.attempt_count,
            naming=output.naming,
            work_product=output.work_product,
            file_format=file_format,
            user_id=user_id,
            source_document_id=original.source_document_id,
            source_document_ids=original.source_document_ids,
            source_model_ids=original.source_model_ids,
            source_anchor_type=original.source_anchor_type,
            source_anchor_model_id=original.source_anchor_model_id,
            source_anchor_model_slug=self._slug_of(original.source_anchor_model_id),
            source_attempt_count=self._source_attempt(original),
            paired_model_id=original.paired_model_id,
            paired_model_slug=self._slug_of(original.paired_model_id),
            lineage_model_id=original.lineage_model_id,
        )
        edited = await self.artifacts.save_edit(original, upload)
        logger.info(
            "Contribution %s edited by %s (version %d)", original.id, user_id, edited.edit_version
        )
        return edited

    def _slug_of(self, model_id: str | None) -> str | None:
        if not model_id:
            return None
        return self.catalog.get(model_id).slug if model_id in self.catalog else model_id

    @staticmethod
    def _source_attempt(contribution: Contribution) -> int:
        parsed = deconstruct_storage_path(contribution.storage_path)
        return parsed.source_attempt_count or 0

    async def get_contribution_content(self, contribution_id: str, user_id: str) -> str:
        contribution, _session, _project = await self._owned_contribution(contribution_id, user_id)
        return await self.artifacts.read_text(contribution.storage_path)

    async def list_stage_documents(
        self,
        session_id: str,
        user_id: str,
        stage_slug: str,
        iteration: int,
        include_work_products: bool = False,
    ) -> StageDocuments:
        """Latest documents of a stage; header contexts and _work/ files on request."""
        session, project = await self._owned_session(session_id, user_id)
        stage = self._stage(project, stage_slug)
        contributions = await self.state.list_contributions(
            session.id, stage_slug=stage.slug, iteration=iteration
        )
        if not include_work_products:
            contributions = [c for c in contributions if c.contribution_type == stage.slug]
        return StageDocuments(
            session_id=session.id,
            stage_slug=stage.slug,
            iteration=iteration,
            contributions=sorted(
                contributions, key=lambda c: (c.model_id, c.document_key, c.storage_path)
            ),
        )

    # --- Progress and operations ---

    async def get_stage_progress(
        self,
        session_id: str,
        user_id: str,
        stage_slug: str,
        iteration: int,
        include_graph: bool = False,
    ) -> StageProgress:
        session, project = await self._owned_session(session_id, user_id)
        stage = self._stage(project, stage_slug)
        jobs = await self.state.list_jobs(
            session_id=session.id, stage_slug=stage.slug, iteration=iteration
        )
        graph = build_job_graph(jobs)
        summary = summarize_progress(graph)
        documents = await self.state.list_contributions(
            session.id, stage_slug=stage.slug, iteration=iteration, contribution_type=stage.slug
        )
        return StageProgress(
            session_id=session.id,
            stage_slug=stage.slug,
            iteration=iteration,
            session_status=session.status,
            total_jobs=summary["total_jobs"],
            terminal_jobs=summary["terminal_jobs"],
            is_complete=summary["is_complete"],
            by_status=summary["by_status"],
            by_step=summary["by_step"],
            by_model=summary["by_model"],
            failed_job_ids=summary["failed_job_ids"],
            documents=len(documents),
            graph=export_node_link(graph) if include_graph else None,
        )

    async def cancel_session(self, session_id: str, user_id: str) -> Session:
        """Stop scheduling work for a session; jobs already running finish."""
        for _ in range(max(self.settings.session_update_attempts, 1)):
            session, _project = await self._owned_session(session_id, user_id)
            if session.is_cancelled:
                return session
            try:
                cancelled = await self.state.update_session(
                    session.id, session.version, is_cancelled=True
                )
            except ConcurrencyConflictError:
                continue
            logger.info("Session %s cancelled", session.id)
            return cancelled
        raise ConcurrencyConflictError(f"Could not cancel session {session_id}")

    async def fail_job(self, job_id: str, user_id: str, reason: str = "failed by operator") -> Job:
        """Operator action: fail a non-terminal job and release its parent."""
        job = await self.state.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        await self._owned_session(job.session_id, user_id)
        if job.is_terminal:
            return job
        failed = await self.state.transition_job(
            job.id,
            sources_for("failed"),
            "failed",
            error_details={
                "type": "OperatorFailure",
                "message": reason,
                "attempt_count": job.attempt_count,
            },
            completed_at=utcnow(),
        )
        if failed is None:
            raise ConcurrencyConflictError(f"Job {job_id} changed status while being failed")
        logger.warning("Job %s failed by operator %s: %s", job.id, user_id, reason)
        await self.watcher.on_job_transition(failed)
        return failed

    async def run_until_idle(self, max_jobs: int | None = None) -> int:
        """Drain the job queue with the configured worker pool."""
        return await self.pool.run_until_idle(max_jobs=max_jobs)
