# src/recipes/models.py - v1
"""Recipe domain types: input rules, output rules, steps, instances.

Recipes are versioned configuration objects. Every model here is frozen
so a loaded recipe cannot change shape mid-execution.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dialectica.core.models import HEADER_CONTEXT


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class DocumentRule(_FrozenModel):
    """Rendered documents of a prior (or the current) stage."""

    type: Literal["document"] = "document"
    slug: str
    document_key: str | None = None
    required: bool = True
    anchor: bool = False
    scope: Literal["all_models", "executing_model"] = "all_models"


class ContributionRule(_FrozenModel):
    """Raw contributions, including work products under _work/."""

    type: Literal["contribution"] = "contribution"
    slug: str
    document_key: str | None = None
    required: bool = True
    anchor: bool = False
    scope: Literal["all_models", "executing_model"] = "all_models"


class FeedbackRule(_FrozenModel):
    """User feedback; always scoped to the executing model."""

    type: Literal["feedback"] = "feedback"
    slug: str
    document_key: str | None = None
    required: bool = False
    anchor: bool = False


class SeedPromptRule(_FrozenModel):
    type: Literal["seed_prompt"] = "seed_prompt"
    slug: str
    document_key: str | None = None
    required: bool = True
    anchor: bool = False


class HeaderContextRule(_FrozenModel):
    """Header context produced by the executing model in the given stage."""

    type: Literal["header_context"] = "header_context"
    slug: str
    document_key: str | None = HEADER_CONTEXT
    required: bool = True
    anchor: bool = False


InputRule = Annotated[
    Union[DocumentRule, ContributionRule, FeedbackRule, SeedPromptRule, HeaderContextRule],
    Field(discriminator="type"),
]

GranularityStrategyName = Literal[
    "per_model",
    "per_source_document",
    "per_source_document_by_lineage",
    "per_source_group",
    "pairwise_by_origin",
    "all_to_one",
]


class OutputRule(_FrozenModel):
    """What a step produces and how the artifacts are named.

    naming selects the file-name pattern: plain per-model documents,
    critiques of another model's work, pairwise syntheses or reductions.
    """

    output_type: Literal["header_context", "document"] = "document"
    document_keys: tuple[str, ...] = ()
    context_for_documents: tuple[str, ...] = ()
    json_document_keys: tuple[str, ...] = ()
    naming: Literal["model", "critique", "pairwise", "reduce"] = "model"
    work_product: bool = False

    @model_validator(mode="after")
    def _check_shape(self) -> OutputRule:
        if self.output_type == "header_context":
            if not self.context_for_documents:
                raise ValueError("header_context outputs must declare context_for_documents")
            if self.document_keys not in ((), (HEADER_CONTEXT,)):
                raise ValueError("header_context outputs produce only the header_context key")
        elif not self.document_keys:
            raise ValueError("document outputs must declare document_keys")
        return self

    @property
    def keys(self) -> tuple[str, ...]:
        if self.output_type == "header_context":
            return (HEADER_CONTEXT,)
        return self.document_keys

    def file_format(self, document_key: str) -> Literal["md", "json"]:
        if document_key == HEADER_CONTEXT or document_key in self.json_document_keys:
            return "json"
        return "md"


class RecipeStep(_FrozenModel):
    """One step of a stage recipe."""

    step_slug: str
    step_name: str = ""
    execution_order: int
    job_type: Literal["PLAN", "EXECUTE"] = "EXECUTE"
    granularity_strategy: str
    prompt_template: str
    inputs_required: tuple[InputRule, ...] = ()
    outputs_required: OutputRule

    @property
    def anchor_rules(self) -> tuple[InputRule, ...]:
        return tuple(r for r in self.inputs_required if r.anchor)


class RecipeInstance(_FrozenModel):
    """Versioned, immutable recipe for one stage."""

    id: str
    stage_slug: str
    version: int = 1
    steps: tuple[RecipeStep, ...]

    @model_validator(mode="after")
    def _unique_slugs(self) -> RecipeInstance:
        slugs = [s.step_slug for s in self.steps]
        if len(slugs) != len(set(slugs)):
            raise ValueError(f"Recipe {self.id!r} has duplicate step slugs")
        return self

    def prior_stage_inputs(self) -> tuple[InputRule, ...]:
        """Input rules that read earlier stages, first occurrence per source."""
        seen: set[tuple[str, str, str | None]] = set()
        rules: list[InputRule] = []
        for step in sorted(self.steps, key=lambda s: s.execution_order):
            for rule in step.inputs_required:
                if rule.slug == self.stage_slug or rule.type in ("seed_prompt", HEADER_CONTEXT):
                    continue
                key = (rule.type, rule.slug, rule.document_key)
                if key not in seen:
                    seen.add(key)
                    rules.append(rule)
        return tuple(rules)

    def step(self, step_slug: str) -> RecipeStep:
        for step in self.steps:
            if step.step_slug == step_slug:
                return step
        raise KeyError(step_slug)
