# src/planning/registry.py - v1
"""Strategy registry: resolve a step's granularity strategy by name."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dialectica.core.errors import ConfigurationError
from dialectica.planning.strategies import (
    AllToOneStrategy,
    BaseGranularityStrategy,
    PairwiseByOriginStrategy,
    PerModelStrategy,
    PerSourceDocumentByLineageStrategy,
    PerSourceDocumentStrategy,
    PerSourceGroupStrategy,
)

if TYPE_CHECKING:
    from dialectica.recipes.models import RecipeStep

logger = logging.getLogger(__name__)

_STRATEGY_REGISTRY: dict[str, type[BaseGranularityStrategy]] = {
    cls.name: cls
    for cls in (
        PerModelStrategy,
        PerSourceDocumentStrategy,
        PerSourceGroupStrategy,
        PairwiseByOriginStrategy,
        PerSourceDocumentByLineageStrategy,
        AllToOneStrategy,
    )
}


def get_granularity_planner(step: RecipeStep) -> BaseGranularityStrategy:
    """Strategy instance for ``step``.

    Raises:
        ConfigurationError: If the strategy name is not registered.
    """
    cls = _STRATEGY_REGISTRY.get(step.granularity_strategy)
    if cls is None:
        raise ConfigurationError(
            f"Step {step.step_slug!r} uses unknown granularity strategy "
            f"{step.granularity_strategy!r}. "
            f"Available: {', '.join(sorted(_STRATEGY_REGISTRY))}",
            step_slug=step.step_slug,
            strategy=step.granularity_strategy,
        )
    return cls()


def register_strategy(cls: type[BaseGranularityStrategy]) -> None:
    """Register a custom strategy under its ``name``."""
    if not cls.name:
        raise ConfigurationError(f"Strategy {cls.__name__} has no name")
    if cls.name in _STRATEGY_REGISTRY:
        logger.warning("Overwriting granularity strategy: %s", cls.name)
    _STRATEGY_REGISTRY[cls.name] = cls


def strategy_names() -> list[str]:
    return sorted(_STRATEGY_REGISTRY)
