# src/execution/executor.py - v1
"""Job executor: run one EXECUTE job against its model.

Steps for a job:
    1. gather inputs scoped to the job's model and plan unit;
    2. assemble the turn prompt, or the continuation prompt when the job
       resumes truncated output;
    3. call the model under the configured timeout;
    4. validate the output contract (header context keys, JSON documents);
    5. persist the artifact and register its contribution.

Truncated output is returned as ``needs_continuation`` instead of being
persisted, until the continuation limit is reached.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from dialectica.core.errors import (
    NotFoundError,
    StageMismatchError,
    TransientModelError,
)
from dialectica.core.models import HEADER_CONTEXT
from dialectica.execution.validation import normalize_json_document, validate_header_context
from dialectica.jobs.models import ExecutePayload
from dialectica.llm.retry import classify_error
from dialectica.storage.models import ContributionUpload

if TYPE_CHECKING:
    from dialectica.config.settings import Settings
    from dialectica.core.models import AIModel
    from dialectica.gathering.input_gatherer import InputGatherer
    from dialectica.jobs.models import Job
    from dialectica.llm.catalog import ModelCatalog
    from dialectica.llm.models import LLMResponse
    from dialectica.prompts.assembler import AssembledPrompt, PromptAssembler
    from dialectica.rag.indexer import DocumentIndexer
    from dialectica.recipes.models import OutputRule, RecipeStep
    from dialectica.recipes.registry import RecipeRegistry
    from dialectica.storage.artifact_store import ArtifactStore
    from dialectica.storage.base_state_store import BaseStateStore
    from dialectica.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

_CONTRIBUTION_TYPES = {"pairwise": "pairwise_synthesis_chunk", "reduce": "reduced_synthesis"}


class ExecutionResult(BaseModel):
    """Outcome of one execution attempt."""

    status: Literal["completed", "needs_continuation"]
    content: str = ""
    contribution_ids: list[str] = Field(default_factory=list)
    tokens_input: int = 0
    tokens_output: int = 0
    finish_reason: str | None = None
    truncated: bool = False
    indexed: bool = False


def contribution_type_for(output: OutputRule, stage_slug: str) -> str:
    """Contribution type registered for artifacts of an output rule."""
    if output.output_type == "header_context":
        return HEADER_CONTEXT
    return _CONTRIBUTION_TYPES.get(output.naming, stage_slug)


def edit_key_for(job: Job, payload: ExecutePayload) -> str:
    """Logical identity of a job's artifact, stable across attempts and edits."""
    return (
        f"{job.stage_slug}:{job.iteration_number}:{payload.model_id}:"
        f"{payload.document_key}:{payload.unit.unit_key}"
    )


class JobExecutor:
    """Executes EXECUTE jobs."""

    def __init__(
        self,
        state: BaseStateStore,
        registry: RecipeRegistry,
        gatherer: InputGatherer,
        assembler: PromptAssembler,
        artifacts: ArtifactStore,
        catalog: ModelCatalog,
        settings: Settings,
        indexer: DocumentIndexer | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        self._state = state
        self._registry = registry
        self._gatherer = gatherer
        self._assembler = assembler
        self._artifacts = artifacts
        self._catalog = catalog
        self._settings = settings
        self._indexer = indexer
        self._call_logger = call_logger

    async def execute(self, job: Job) -> ExecutionResult:
        """Run one attempt of ``job``.

        Raises:
            StageMismatchError: Job, session and recipe disagree.
            MissingRequiredInputError: A required input is missing.
            ResponseContractError: The output breaks its declared contract.
            TransientModelError: The model call timed out.
        """
        payload = job.payload
        if not isinstance(payload, ExecutePayload):
            raise StageMismatchError(f"Job {job.id} is not an EXECUTE job")

        session = await self._state.get_session(job.session_id)
        if session is None:
            raise NotFoundError(f"Session {job.session_id} not found")
        project = await self._state.get_project(session.project_id)
        if project is None:
            raise NotFoundError(f"Project {session.project_id} not found")

        template = self._registry.template(project.process_template_id)
        try:
            stage = template.stage(job.stage_slug)
        except KeyError:
            raise StageMismatchError(
                f"Stage {job.stage_slug!r} is not part of template {template.id!r}"
            ) from None
        recipe = self._registry.recipe(payload.recipe_id)
        if recipe.stage_slug != stage.slug or recipe.version != payload.recipe_version:
            raise StageMismatchError(
                f"Job {job.id} targets stage {stage.slug!r} but recipe "
                f"{recipe.id!r} v{recipe.version} belongs to {recipe.stage_slug!r}",
                recipe_version=payload.recipe_version,
            )
        step = self._registry.step(recipe.id, payload.step_slug)
        model = self._catalog.get(payload.model_id)

        sources = await self._gatherer.gather(
            step,
            project,
            session,
            job.iteration_number,
            model_id=payload.model_id,
            unit=payload.unit,
        )
        prompt = await self._assembler.assemble_turn_prompt(
            project, session.id, stage, step, model, sources, payload.document_key
        )
        partial = str(job.results.get("partial_content", ""))
        if payload.continuation_count > 0 and partial:
            prompt = self._assembler.assemble_continuation_prompt(
                prompt, partial, payload.continuation_count
            )

        response = await self._call_model(job, step, model, prompt)
        content = partial + response.content

        if response.truncated and payload.continuation_count < self._settings.max_continuations:
            logger.info(
                "Job %s output truncated (%s); continuation %d requested",
                job.id, response.finish_reason, payload.continuation_count + 1,
            )
            return ExecutionResult(
                status="needs_continuation",
                content=content,
                tokens_input=response.input_tokens,
                tokens_output=response.output_tokens,
                finish_reason=response.finish_reason,
                truncated=True,
            )

        output = step.outputs_required
        file_format = output.file_format(payload.document_key)
        if payload.output_type == "header_context":
            header = validate_header_context(content, output.context_for_documents)
            content = json.dumps(header, indent=2, ensure_ascii=False)
        elif file_format == "json":
            content = normalize_json_document(content, payload.document_key)

        headers = sources.header_contexts()
        upload = ContributionUpload(
            project_id=project.id,
            session_id=session.id,
            stage=stage,
            iteration=job.iteration_number,
            model=model,
            contribution_type=contribution_type_for(output, stage.slug),
            document_key=payload.document_key,
            content=content,
            edit_key=edit_key_for(job, payload),
            attempt_count=job.attempt_count,
            naming=output.naming,
            work_product=output.work_product,
            file_format=file_format,
            raw_response=response.raw_as_dict(),
            user_id=job.user_id,
            source_document_id=headers[0].id if headers else None,
            source_document_ids=[d.id for d in sources.documents()] + [h.id for h in headers],
            source_model_ids=payload.unit.source_model_ids,
            source_anchor_type=payload.unit.source_anchor_type,
            source_anchor_model_id=payload.unit.source_anchor_model_id,
            source_anchor_model_slug=self._slug_of(payload.unit.source_anchor_model_id),
            source_attempt_count=payload.unit.source_attempt_count,
            paired_model_id=payload.unit.paired_model_id,
            paired_model_slug=self._slug_of(payload.unit.paired_model_id),
            lineage_model_id=payload.unit.lineage_model_id,
            tokens_used_input=response.input_tokens,
            tokens_used_output=response.output_tokens,
            truncated=response.truncated,
        )
        contribution = await self._artifacts.save_contribution(upload)

        indexed = False
        if self._indexer is not None and self._indexer.should_index(content):
            result = await self._indexer.index_document(
                session.id,
                contribution.id,
                content,
                {
                    "stage_slug": stage.slug,
                    "model_id": model.id,
                    "document_key": payload.document_key,
                },
            )
            indexed = result.success

        return ExecutionResult(
            status="completed",
            content=content,
            contribution_ids=[contribution.id],
            tokens_input=response.input_tokens,
            tokens_output=response.output_tokens,
            finish_reason=response.finish_reason,
            truncated=response.truncated,
            indexed=indexed,
        )

    async def _call_model(
        self, job: Job, step: RecipeStep, model: AIModel, prompt: AssembledPrompt
    ) -> LLMResponse:
        client = self._catalog.client_for(model)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.complete(
                    prompt.messages,
                    system=prompt.system,
                    max_tokens=model.max_output_tokens,
                    temperature=self._settings.llm_default_temperature,
                ),
                timeout=self._settings.model_call_timeout_s,
            )
        except asyncio.TimeoutError as e:
            self._record_call(job, step, model, error=e, start=start)
            raise TransientModelError(
                f"Model {model.id} timed out after {self._settings.model_call_timeout_s}s",
                model_id=model.id,
            ) from e
        except Exception as e:
            self._record_call(job, step, model, error=e, start=start)
            raise
        self._record_call(job, step, model, response=response, start=start)
        return response

    def _record_call(
        self,
        job: Job,
        step: RecipeStep,
        model: AIModel,
        start: float,
        response: LLMResponse | None = None,
        error: BaseException | None = None,
    ) -> None:
        if self._call_logger is None:
            return
        self._call_logger.record(
            job_id=job.id,
            session_id=job.session_id,
            stage_slug=job.stage_slug,
            step_slug=step.step_slug,
            model=model,
            response=response,
            error=error,
            error_type=classify_error(error) if error is not None else None,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def _slug_of(self, model_id: str | None) -> str | None:
        if not model_id:
            return None
        if model_id in self._catalog:
            return self._catalog.get(model_id).slug
        return model_id
