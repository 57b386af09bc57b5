# src/config/recipes.py - v1
"""Declarative default process template and stage recipes.

thesis -> antithesis -> synthesis -> parenthesis -> paralysis. Each stage
opens with a header-context step that fixes, per model, what the later
document steps must cover; the document steps then fan out according to
their granularity strategy.
"""

from __future__ import annotations

from dialectica.core.models import ProcessTemplate, Stage, StageTransition
from dialectica.recipes.models import (
    ContributionRule,
    DocumentRule,
    FeedbackRule,
    HeaderContextRule,
    OutputRule,
    RecipeInstance,
    RecipeStep,
    SeedPromptRule,
)

DEFAULT_TEMPLATE_ID = "dialectic_default"

THESIS_KEYS = ("business_case", "feature_spec", "technical_approach", "success_metrics")
ANTITHESIS_KEYS = (
    "business_case_critique",
    "technical_feasibility_assessment",
    "risk_register",
    "non_functional_requirements",
    "dependency_map",
    "comparison_vector",
)
SYNTHESIS_PAIRWISE_KEYS = tuple(f"synthesis_pairwise_{k}" for k in THESIS_KEYS)
SYNTHESIS_REDUCED_KEYS = tuple(f"synthesis_document_{k}" for k in THESIS_KEYS)
SYNTHESIS_FINAL_KEYS = ("product_requirements", "system_architecture", "tech_stack")
PARENTHESIS_KEYS = ("technical_requirements", "master_plan", "milestone_schema")
PARALYSIS_KEYS = ("actionable_checklist", "updated_master_plan", "advisor_recommendations")

_SOFTWARE_OVERLAY = {
    "domain_name": "Software Development",
    "domain_guidance": (
        "Ground every claim in delivery reality: scope, architecture, "
        "staffing, risks and measurable outcomes."
    ),
}
_GENERAL_OVERLAY = {
    "domain_name": "General",
    "domain_guidance": "Reason carefully and state assumptions explicitly.",
}


def _overlays(**extra: str) -> dict[str, dict[str, str]]:
    return {
        "software_development": {**_SOFTWARE_OVERLAY, **extra},
        "general": {**_GENERAL_OVERLAY, **extra},
    }


def _thesis_recipe() -> RecipeInstance:
    return RecipeInstance(
        id="thesis_v1",
        stage_slug="thesis",
        steps=(
            RecipeStep(
                step_slug="thesis_planner_header",
                step_name="Plan thesis documents",
                execution_order=1,
                job_type="PLAN",
                granularity_strategy="per_model",
                prompt_template="header_context",
                inputs_required=(SeedPromptRule(slug="thesis"),),
                outputs_required=OutputRule(
                    output_type="header_context",
                    context_for_documents=THESIS_KEYS,
                ),
            ),
            RecipeStep(
                step_slug="thesis_generate_documents",
                step_name="Generate thesis documents",
                execution_order=2,
                granularity_strategy="per_model",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug="thesis", anchor=True),
                    SeedPromptRule(slug="thesis"),
                ),
                outputs_required=OutputRule(document_keys=THESIS_KEYS),
            ),
        ),
    )


def _antithesis_recipe() -> RecipeInstance:
    return RecipeInstance(
        id="antithesis_v1",
        stage_slug="antithesis",
        steps=(
            RecipeStep(
                step_slug="antithesis_planner_header",
                step_name="Plan critiques per thesis lineage",
                execution_order=1,
                job_type="PLAN",
                granularity_strategy="per_source_group",
                prompt_template="header_context",
                inputs_required=(
                    SeedPromptRule(slug="antithesis"),
                    DocumentRule(slug="thesis", anchor=True),
                    FeedbackRule(slug="thesis"),
                ),
                outputs_required=OutputRule(
                    output_type="header_context",
                    context_for_documents=ANTITHESIS_KEYS,
                    naming="critique",
                ),
            ),
            RecipeStep(
                step_slug="antithesis_generate_critiques",
                step_name="Critique thesis proposals",
                execution_order=2,
                granularity_strategy="per_source_document",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug="antithesis", anchor=True),
                    DocumentRule(slug="thesis"),
                    FeedbackRule(slug="thesis"),
                ),
                outputs_required=OutputRule(
                    document_keys=ANTITHESIS_KEYS,
                    json_document_keys=("comparison_vector",),
                    naming="critique",
                ),
            ),
        ),
    )


def _synthesis_recipe() -> RecipeInstance:
    return RecipeInstance(
        id="synthesis_v1",
        stage_slug="synthesis",
        steps=(
            RecipeStep(
                step_slug="synthesis_planner_header",
                step_name="Plan synthesis",
                execution_order=1,
                job_type="PLAN",
                granularity_strategy="all_to_one",
                prompt_template="header_context",
                inputs_required=(
                    SeedPromptRule(slug="synthesis"),
                    DocumentRule(slug="thesis", anchor=True),
                    DocumentRule(slug="antithesis"),
                    FeedbackRule(slug="antithesis"),
                ),
                outputs_required=OutputRule(
                    output_type="header_context",
                    context_for_documents=SYNTHESIS_PAIRWISE_KEYS + SYNTHESIS_FINAL_KEYS,
                ),
            ),
            RecipeStep(
                step_slug="synthesis_pairwise",
                step_name="Synthesize thesis with each critique",
                execution_order=2,
                granularity_strategy="pairwise_by_origin",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug="synthesis"),
                    DocumentRule(slug="thesis", anchor=True),
                    DocumentRule(slug="antithesis"),
                    FeedbackRule(slug="antithesis"),
                ),
                outputs_required=OutputRule(
                    document_keys=SYNTHESIS_PAIRWISE_KEYS,
                    naming="pairwise",
                    work_product=True,
                ),
            ),
            RecipeStep(
                step_slug="synthesis_reduce_by_lineage",
                step_name="Reduce pairwise syntheses per lineage",
                execution_order=3,
                granularity_strategy="per_source_document_by_lineage",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug="synthesis"),
                    ContributionRule(
                        slug="synthesis",
                        document_key="synthesis_pairwise_*",
                        anchor=True,
                        scope="executing_model",
                    ),
                ),
                outputs_required=OutputRule(
                    document_keys=SYNTHESIS_REDUCED_KEYS,
                    naming="reduce",
                    work_product=True,
                ),
            ),
            RecipeStep(
                step_slug="synthesis_final",
                step_name="Consolidate final synthesis",
                execution_order=4,
                granularity_strategy="all_to_one",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug="synthesis"),
                    ContributionRule(
                        slug="synthesis",
                        document_key="synthesis_document_*",
                        anchor=True,
                        scope="executing_model",
                    ),
                ),
                outputs_required=OutputRule(document_keys=SYNTHESIS_FINAL_KEYS),
            ),
        ),
    )


def _planning_recipe(
    slug: str, source_slug: str, keys: tuple[str, ...], json_keys: tuple[str, ...] = ()
) -> RecipeInstance:
    return RecipeInstance(
        id=f"{slug}_v1",
        stage_slug=slug,
        steps=(
            RecipeStep(
                step_slug=f"{slug}_planner_header",
                step_name=f"Plan {slug}",
                execution_order=1,
                job_type="PLAN",
                granularity_strategy="all_to_one",
                prompt_template="header_context",
                inputs_required=(
                    SeedPromptRule(slug=slug),
                    DocumentRule(slug=source_slug, anchor=True),
                    FeedbackRule(slug=source_slug),
                ),
                outputs_required=OutputRule(
                    output_type="header_context", context_for_documents=keys
                ),
            ),
            RecipeStep(
                step_slug=f"{slug}_generate_documents",
                step_name=f"Generate {slug} documents",
                execution_order=2,
                granularity_strategy="per_model",
                prompt_template="document",
                inputs_required=(
                    HeaderContextRule(slug=slug, anchor=True),
                    DocumentRule(slug=source_slug),
                    FeedbackRule(slug=source_slug),
                ),
                outputs_required=OutputRule(document_keys=keys, json_document_keys=json_keys),
            ),
        ),
    )


def default_recipes() -> list[RecipeInstance]:
    """All recipes of the default dialectic process."""
    return [
        _thesis_recipe(),
        _antithesis_recipe(),
        _synthesis_recipe(),
        _planning_recipe(
            "parenthesis", "synthesis", PARENTHESIS_KEYS, json_keys=("milestone_schema",)
        ),
        _planning_recipe("paralysis", "parenthesis", PARALYSIS_KEYS),
    ]


def default_process_template() -> ProcessTemplate:
    """The five-stage dialectic process."""
    stages = [
        Stage(
            id="stage-thesis",
            slug="thesis",
            display_name="Thesis",
            directory_order=1,
            recipe_id="thesis_v1",
            seed_template="seed_thesis",
            description="Each model proposes a complete solution.",
            domain_overlays=_overlays(stage_role="proposal author"),
        ),
        Stage(
            id="stage-antithesis",
            slug="antithesis",
            display_name="Antithesis",
            directory_order=2,
            recipe_id="antithesis_v1",
            seed_template="seed_antithesis",
            description="Every model critiques every proposal.",
            domain_overlays=_overlays(stage_role="critical reviewer"),
        ),
        Stage(
            id="stage-synthesis",
            slug="synthesis",
            display_name="Synthesis",
            directory_order=3,
            recipe_id="synthesis_v1",
            seed_template="seed_synthesis",
            description="Proposals and critiques are merged into one plan.",
            domain_overlays=_overlays(stage_role="synthesizer"),
        ),
        Stage(
            id="stage-parenthesis",
            slug="parenthesis",
            display_name="Parenthesis",
            directory_order=4,
            recipe_id="parenthesis_v1",
            seed_template="seed_parenthesis",
            description="The synthesis is formalized into an executable plan.",
            domain_overlays=_overlays(stage_role="technical planner"),
        ),
        Stage(
            id="stage-paralysis",
            slug="paralysis",
            display_name="Paralysis",
            directory_order=5,
            recipe_id="paralysis_v1",
            seed_template="seed_paralysis",
            description="The plan is reduced to ordered, actionable work.",
            domain_overlays=_overlays(stage_role="delivery advisor"),
        ),
    ]
    slugs = [s.slug for s in stages]
    return ProcessTemplate(
        id=DEFAULT_TEMPLATE_ID,
        name="Dialectic",
        stages=stages,
        transitions=[
            StageTransition(source_slug=a, target_slug=b) for a, b in zip(slugs, slugs[1:])
        ],
        starting_stage_slug="thesis",
    )
