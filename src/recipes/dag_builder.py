# src/recipes/dag_builder.py - v1
"""DAG builder: order recipe steps into execution levels.

Steps declare an execution_order. A step depends on every step of the
nearest lower order, so steps sharing an order form one level and run
concurrently. Levels execute sequentially under the stage PLAN job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dialectica.recipes.models import RecipeInstance, RecipeStep

logger = logging.getLogger(__name__)


class DAGError(Exception):
    """Raised when DAG construction fails (cycle, missing dep)."""


@dataclass
class StepPlan:
    """Ordered execution levels of step slugs."""

    levels: list[list[str]] = field(default_factory=list)
    total_steps: int = 0

    @property
    def flat_order(self) -> list[str]:
        return [slug for level in self.levels for slug in level]

    def level_of(self, step_slug: str) -> int:
        for idx, level in enumerate(self.levels):
            if step_slug in level:
                return idx
        raise KeyError(step_slug)


def dependency_map(steps: tuple[RecipeStep, ...] | list[RecipeStep]) -> dict[str, list[str]]:
    """Derive step dependencies from execution_order."""
    orders = sorted({s.execution_order for s in steps})
    deps: dict[str, list[str]] = {}
    for step in steps:
        idx = orders.index(step.execution_order)
        if idx == 0:
            deps[step.step_slug] = []
            continue
        previous = orders[idx - 1]
        deps[step.step_slug] = sorted(
            s.step_slug for s in steps if s.execution_order == previous
        )
    return deps


def build_dag(deps: dict[str, list[str]]) -> StepPlan:
    """Kahn's algorithm with level detection.

    Raises:
        DAGError: If a cycle is detected or a dependency is missing.
    """
    if not deps:
        return StepPlan()

    all_steps = set(deps)
    for step, step_deps in deps.items():
        for dep in step_deps:
            if dep not in all_steps:
                raise DAGError(f"Step '{step}' depends on unknown step '{dep}'")

    in_degree: dict[str, int] = {s: 0 for s in all_steps}
    dependents: dict[str, list[str]] = {s: [] for s in all_steps}
    for step, step_deps in deps.items():
        for dep in step_deps:
            dependents[dep].append(step)
            in_degree[step] += 1

    levels: list[list[str]] = []
    queue = sorted(s for s, d in in_degree.items() if d == 0)
    processed = 0
    while queue:
        levels.append(sorted(queue))
        next_queue: list[str] = []
        for step in queue:
            processed += 1
            for dependent in dependents[step]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_queue.append(dependent)
        queue = sorted(next_queue)

    if processed != len(all_steps):
        remaining = sorted(s for s in all_steps if in_degree[s] > 0)
        raise DAGError(f"Cycle detected involving steps: {remaining}")

    return StepPlan(levels=levels, total_steps=processed)


def build_step_plan(recipe: RecipeInstance) -> StepPlan:
    """Build the level plan for a recipe."""
    plan = build_dag(dependency_map(recipe.steps))
    logger.debug(
        "Recipe %s v%d: %d steps in %d levels -> %s",
        recipe.id, recipe.version, plan.total_steps, len(plan.levels), plan.flat_order,
    )
    return plan
