# tests/unit/recipes/test_unit_models.py - v1
"""Tests for recipes/models.py - output rule shape and frozen recipes."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from dialectica.core.models import HEADER_CONTEXT
from dialectica.recipes.models import (
    DocumentRule,
    OutputRule,
    RecipeInstance,
    RecipeStep,
)


class TestOutputRule:
    def test_header_needs_context_keys(self):
        with pytest.raises(ValidationError):
            OutputRule(output_type="header_context")

    def test_header_only_produces_header_key(self):
        rule = OutputRule(output_type="header_context", context_for_documents=("a", "b"))
        assert rule.keys == (HEADER_CONTEXT,)
        assert rule.file_format(HEADER_CONTEXT) == "json"
        with pytest.raises(ValidationError):
            OutputRule(
                output_type="header_context", context_for_documents=("a",), document_keys=("a",)
            )

    def test_document_needs_keys(self):
        with pytest.raises(ValidationError):
            OutputRule()


class TestRecipe:
    def _step(self, slug: str) -> RecipeStep:
        return RecipeStep(
            step_slug=slug,
            execution_order=1,
            granularity_strategy="per_model",
            prompt_template="document",
            inputs_required=(DocumentRule(slug="thesis", anchor=True),),
            outputs_required=OutputRule(document_keys=("x",)),
        )

    def test_duplicate_slugs_rejected(self):
        with pytest.raises(ValidationError):
            RecipeInstance(id="r", stage_slug="s", steps=(self._step("a"), self._step("a")))

    def test_frozen(self):
        recipe = RecipeInstance(id="r", stage_slug="s", steps=(self._step("a"),))
        with pytest.raises(ValidationError):
            recipe.version = 2  # type: ignore[misc]

    def test_anchor_rules(self):
        step = self._step("a")
        assert [r.slug for r in step.anchor_rules] == ["thesis"]
        with pytest.raises(KeyError):
            RecipeInstance(id="r", stage_slug="s", steps=(step,)).step("b")

    def test_input_rule_discriminator(self):
        step = RecipeStep.model_validate(
            {
                "step_slug": "a",
                "execution_order": 1,
                "granularity_strategy": "per_model",
                "prompt_template": "document",
                "inputs_required": [{"type": "feedback", "slug": "thesis"}],
                "outputs_required": {"document_keys": ["x"]},
            }
        )
        assert step.inputs_required[0].type == "feedback"
        assert step.inputs_required[0].required is False


class TestPriorStageInputs:
    def test_synthesis_reads_thesis_and_antithesis(self):
        from dialectica.config.recipes import default_recipes

        synthesis = next(r for r in default_recipes() if r.stage_slug == "synthesis")
        rules = [(r.type, r.slug) for r in synthesis.prior_stage_inputs()]
        assert rules == [
            ("document", "thesis"),
            ("document", "antithesis"),
            ("feedback", "antithesis"),
        ]

    def test_thesis_reads_no_earlier_stage(self):
        from dialectica.config.recipes import default_recipes

        thesis = next(r for r in default_recipes() if r.stage_slug == "thesis")
        assert thesis.prior_stage_inputs() == ()
