# tests/unit/recipes/test_unit_dag_builder.py - v1
"""Tests for recipes/dag_builder.py - level ordering of recipe steps."""

from __future__ import annotations

import pytest

from dialectica.recipes.dag_builder import DAGError, build_dag, dependency_map
from dialectica.recipes.models import OutputRule, RecipeStep


def _step(slug: str, order: int) -> RecipeStep:
    return RecipeStep(
        step_slug=slug,
        execution_order=order,
        granularity_strategy="per_model",
        prompt_template="document",
        outputs_required=OutputRule(document_keys=(slug,)),
    )


class TestDependencyMap:
    def test_same_order_forms_one_level(self):
        steps = [_step("a", 1), _step("b", 2), _step("c", 2), _step("d", 5)]
        deps = dependency_map(steps)
        assert deps == {"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]}

    def test_levels(self):
        steps = [_step("a", 1), _step("b", 2), _step("c", 2), _step("d", 3)]
        plan = build_dag(dependency_map(steps))
        assert plan.levels == [["a"], ["b", "c"], ["d"]]
        assert plan.total_steps == 4
        assert plan.level_of("c") == 1
        assert plan.flat_order == ["a", "b", "c", "d"]


class TestBuildDag:
    def test_empty(self):
        assert build_dag({}).levels == []

    def test_unknown_dependency(self):
        with pytest.raises(DAGError, match="unknown step"):
            build_dag({"a": ["ghost"]})

    def test_cycle(self):
        with pytest.raises(DAGError, match="Cycle"):
            build_dag({"a": ["b"], "b": ["a"]})
