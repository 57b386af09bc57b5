# src/recipes/registry.py - v1
"""Recipe registry: load recipes and process templates once, read-only after.

Step level plans are computed at load time so planners never re-derive
recipe shape mid-execution.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable

from dialectica.core.errors import ConfigurationError
from dialectica.core.models import ProcessTemplate, Stage
from dialectica.recipes.dag_builder import DAGError, StepPlan, build_step_plan
from dialectica.recipes.models import RecipeInstance, RecipeStep

logger = logging.getLogger(__name__)


class RecipeRegistry:
    """Immutable index of recipes and process templates."""

    def __init__(
        self,
        recipes: Iterable[RecipeInstance],
        templates: Iterable[ProcessTemplate],
    ) -> None:
        recipe_map: dict[str, RecipeInstance] = {}
        for recipe in recipes:
            if recipe.id in recipe_map:
                raise ConfigurationError(f"Duplicate recipe id: {recipe.id!r}")
            recipe_map[recipe.id] = recipe

        plans: dict[str, StepPlan] = {}
        for recipe in recipe_map.values():
            try:
                plans[recipe.id] = build_step_plan(recipe)
            except DAGError as e:
                raise ConfigurationError(f"Recipe {recipe.id!r}: {e}") from e

        template_map = {t.id: t for t in templates}
        for template in template_map.values():
            for stage in template.stages:
                if stage.recipe_id not in recipe_map:
                    raise ConfigurationError(
                        f"Stage {stage.slug!r} references unknown recipe {stage.recipe_id!r}"
                    )

        self._recipes = MappingProxyType(recipe_map)
        self._plans = MappingProxyType(plans)
        self._templates = MappingProxyType(template_map)
        logger.info(
            "Recipe registry loaded: %d recipes, %d templates",
            len(recipe_map), len(template_map),
        )

    @classmethod
    def default(cls) -> RecipeRegistry:
        from dialectica.config.recipes import default_process_template, default_recipes

        return cls(default_recipes(), [default_process_template()])

    def template(self, template_id: str) -> ProcessTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise ConfigurationError(f"Unknown process template: {template_id!r}") from None

    def recipe(self, recipe_id: str) -> RecipeInstance:
        try:
            return self._recipes[recipe_id]
        except KeyError:
            raise ConfigurationError(f"Unknown recipe: {recipe_id!r}") from None

    def recipe_for_stage(self, stage: Stage) -> RecipeInstance:
        return self.recipe(stage.recipe_id)

    def step(self, recipe_id: str, step_slug: str) -> RecipeStep:
        try:
            return self.recipe(recipe_id).step(step_slug)
        except KeyError:
            raise ConfigurationError(
                f"Recipe {recipe_id!r} has no step {step_slug!r}"
            ) from None

    def step_plan(self, recipe_id: str) -> StepPlan:
        self.recipe(recipe_id)
        return self._plans[recipe_id]

    def level_steps(self, recipe_id: str, level: int) -> list[RecipeStep]:
        """Steps of one execution level, in slug order."""
        recipe = self.recipe(recipe_id)
        plan = self._plans[recipe_id]
        return [recipe.step(slug) for slug in plan.levels[level]]
