# src/gathering/input_gatherer.py - v1
"""Resolve a recipe step's input rules into concrete source documents.

Scoping rules:
    - feedback and header contexts are always scoped to the executing
      model when one is given; a newer record from another model is never
      substituted;
    - without a model id (aggregate mode) one current record per model is
      returned;
    - document and contribution rules are narrowed to the unit's
      ``source_document_ids`` whenever the unit names sources of that stage.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import TYPE_CHECKING, Iterable

from dialectica.core.errors import MissingRequiredInputError, ModelScopeViolation, NotFoundError
from dialectica.core.models import HEADER_CONTEXT, Contribution, Project, Session
from dialectica.gathering.models import SourceDocument, SourceDocuments

if TYPE_CHECKING:
    from dialectica.jobs.models import PlanUnit
    from dialectica.recipes.models import InputRule, RecipeStep
    from dialectica.storage.artifact_store import ArtifactStore
    from dialectica.storage.base_state_store import BaseStateStore

logger = logging.getLogger(__name__)


def _key_matches(pattern: str | None, document_key: str) -> bool:
    if pattern is None:
        return True
    return fnmatch.fnmatchcase(document_key, pattern)


class InputGatherer:
    """Reads prior artifacts for a step, honoring model scope."""

    def __init__(self, state: BaseStateStore, artifacts: ArtifactStore) -> None:
        self._state = state
        self._artifacts = artifacts

    async def gather(
        self,
        step: RecipeStep,
        project: Project,
        session: Session,
        iteration: int,
        model_id: str | None = None,
        unit: PlanUnit | None = None,
        enforce_required: bool = True,
        include_content: bool = True,
    ) -> SourceDocuments:
        """Resolve every input rule of ``step``.

        Args:
            step: Recipe step whose ``inputs_required`` are resolved.
            project: Owning project (used for logging only).
            session: Session the sources belong to.
            iteration: Iteration number to read from.
            model_id: Executing model; None selects aggregate mode.
            unit: Plan unit narrowing sources and naming the header context.
            enforce_required: Raise when a required rule resolves nothing.
            include_content: Load blob content for contributions.

        Raises:
            MissingRequiredInputError: A required rule resolved nothing.
            ModelScopeViolation: The unit names another model's header context.
        """
        return await self.gather_rules(
            step.step_slug,
            step.inputs_required,
            project,
            session,
            iteration,
            model_id=model_id,
            unit=unit,
            enforce_required=enforce_required,
            include_content=include_content,
        )

    async def gather_rules(
        self,
        label: str,
        rules: Iterable[InputRule],
        project: Project,
        session: Session,
        iteration: int,
        model_id: str | None = None,
        unit: PlanUnit | None = None,
        enforce_required: bool = True,
        include_content: bool = True,
    ) -> SourceDocuments:
        """Resolve ``rules`` in order; ``label`` names the consumer in errors and logs."""
        result = SourceDocuments()
        for rule in rules:
            docs = await self._resolve(rule, session, iteration, model_id, unit)
            if not docs:
                if rule.required and enforce_required:
                    raise MissingRequiredInputError(
                        f"Step {label!r} requires {rule.type} input from "
                        f"stage {rule.slug!r} but none was found",
                        step_slug=label,
                        rule_type=rule.type,
                        stage_slug=rule.slug,
                        document_key=rule.document_key,
                        model_id=model_id,
                    )
                logger.debug(
                    "Optional %s input from %s resolved nothing for step %s",
                    rule.type, rule.slug, label,
                )
                continue
            for doc in docs:
                doc.is_anchor = rule.anchor
                if include_content and doc.contribution is not None and not doc.content:
                    doc.content = await self._artifacts.read_text(doc.storage_path)
            result.extend(docs)

        logger.debug(
            "Gathered %d sources for step %s (project=%s, model=%s)",
            len(result), label, project.id, model_id or "*",
        )
        return result

    async def _resolve(
        self,
        rule: InputRule,
        session: Session,
        iteration: int,
        model_id: str | None,
        unit: PlanUnit | None,
    ) -> list[SourceDocument]:
        if rule.type == "seed_prompt":
            return await self._seed_prompt(rule.slug, session, iteration)
        if rule.type == "feedback":
            return await self._feedback(rule, session, iteration, model_id)
        if rule.type == "header_context":
            return await self._header_context(rule.slug, session, iteration, model_id, unit)
        return await self._contributions(rule, session, iteration, model_id, unit)

    async def _seed_prompt(
        self, stage_slug: str, session: Session, iteration: int
    ) -> list[SourceDocument]:
        seed = await self._state.get_seed_prompt(session.id, stage_slug, iteration)
        if seed is None:
            return []
        return [
            SourceDocument(
                id=f"seed:{stage_slug}",
                source_type="seed_prompt",
                stage_slug=stage_slug,
                document_key="seed_prompt",
                content=seed.content,
                storage_path=seed.storage_path,
                iteration=iteration,
            )
        ]

    async def _feedback(
        self, rule: InputRule, session: Session, iteration: int, model_id: str | None
    ) -> list[SourceDocument]:
        records = await self._state.list_feedback(
            session.id, stage_slug=rule.slug, iteration=iteration, model_id=model_id
        )
        return [
            SourceDocument(
                id=fb.id,
                source_type="feedback",
                stage_slug=fb.stage_slug,
                document_key=fb.document_key,
                model_id=fb.model_id,
                content=fb.content,
                storage_path=fb.storage_path,
                iteration=fb.iteration_number,
            )
            for fb in records
            if _key_matches(rule.document_key, fb.document_key)
        ]

    async def _header_context(
        self,
        stage_slug: str,
        session: Session,
        iteration: int,
        model_id: str | None,
        unit: PlanUnit | None,
    ) -> list[SourceDocument]:
        if unit is not None and unit.header_context_id:
            header = await self._state.get_contribution(unit.header_context_id)
            if header is None:
                raise NotFoundError(f"Header context {unit.header_context_id} not found")
            if not header.is_header_context:
                raise ModelScopeViolation(
                    f"Contribution {header.id} is not a header context",
                    contribution_id=header.id,
                )
            expected = model_id or unit.model_id
            if header.model_id != expected:
                raise ModelScopeViolation(
                    f"Header context {header.id} belongs to {header.model_id}, "
                    f"not the executing model {expected}",
                    header_context_id=header.id,
                    header_model_id=header.model_id,
                    model_id=expected,
                )
            return [self._from_contribution(header, "header_context")]

        headers = await self._state.list_contributions(
            session.id,
            stage_slug=stage_slug,
            iteration=iteration,
            model_id=model_id,
            contribution_type=HEADER_CONTEXT,
        )
        if model_id is None:
            newest: dict[str, Contribution] = {}
            for header in headers:
                newest[header.model_id] = header
            headers = list(newest.values())
        return [self._from_contribution(h, "header_context") for h in headers]

    async def _contributions(
        self,
        rule: InputRule,
        session: Session,
        iteration: int,
        model_id: str | None,
        unit: PlanUnit | None,
    ) -> list[SourceDocument]:
        scoped_model = model_id if getattr(rule, "scope", "all_models") == "executing_model" else None
        candidates = await self._state.list_contributions(
            session.id,
            stage_slug=rule.slug,
            iteration=iteration,
            model_id=scoped_model,
            contribution_type=rule.slug if rule.type == "document" else None,
        )
        candidates = [
            c
            for c in candidates
            if not c.is_header_context and _key_matches(rule.document_key, c.document_key)
        ]
        if unit is not None and unit.source_document_ids:
            wanted = set(unit.source_document_ids)
            named = [c for c in candidates if c.id in wanted]
            if named:
                candidates = named
        return [self._from_contribution(c, rule.type) for c in candidates]

    @staticmethod
    def _from_contribution(contribution: Contribution, source_type: str) -> SourceDocument:
        return SourceDocument(
            id=contribution.id,
            source_type=source_type,  # type: ignore[arg-type]
            stage_slug=contribution.stage_slug,
            document_key=contribution.document_key,
            model_id=contribution.model_id,
            storage_path=contribution.storage_path,
            iteration=contribution.iteration_number,
            attempt_count=contribution.attempt_count,
            contribution=contribution,
        )
