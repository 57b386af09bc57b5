# src/planning/strategies.py - v1
"""Granularity strategies: turn gathered sources into plan units.

Each strategy receives the models it plans for (one, for a stage PLAN
job), the sources gathered for the step, and the step itself. It returns
the units of work; the planner expands every unit into one EXECUTE job per
output document key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import TYPE_CHECKING

from dialectica.jobs.models import PlanUnit

if TYPE_CHECKING:
    from dialectica.gathering.models import SourceDocument, SourceDocuments
    from dialectica.recipes.models import RecipeStep


def _group_by(
    docs: list[SourceDocument], key
) -> dict[str, list[SourceDocument]]:
    groups: dict[str, list[SourceDocument]] = defaultdict(list)
    for doc in docs:
        groups[key(doc)].append(doc)
    return dict(sorted(groups.items()))


def _anchor_type(doc: SourceDocument) -> str:
    """Anchor label used in artifact names: the inherited one, else the stage."""
    if doc.contribution is not None and doc.contribution.source_anchor_type:
        return doc.contribution.source_anchor_type
    return doc.stage_slug


class BaseGranularityStrategy(ABC):
    """Fan-out policy of a recipe step."""

    name: str = ""

    def plan(
        self, models: list[str], sources: SourceDocuments, step: RecipeStep
    ) -> list[PlanUnit]:
        """Plan units, then bind each unit to its model's single header context."""
        anchors = sources.anchors()
        if step.anchor_rules and not anchors:
            return []
        units = self._plan(models, anchors, sources, step)
        return [self._attach_header_context(u, sources) for u in units]

    @abstractmethod
    def _plan(
        self,
        models: list[str],
        anchors: list[SourceDocument],
        sources: SourceDocuments,
        step: RecipeStep,
    ) -> list[PlanUnit]: ...

    @staticmethod
    def _attach_header_context(unit: PlanUnit, sources: SourceDocuments) -> PlanUnit:
        if unit.header_context_id:
            return unit
        own = [h for h in sources.header_contexts() if h.model_id == unit.model_id]
        if len(own) == 1:
            return unit.model_copy(update={"header_context_id": own[0].id})
        return unit


class PerModelStrategy(BaseGranularityStrategy):
    """One unit per model over all anchor sources."""

    name = "per_model"

    def _plan(self, models, anchors, sources, step):
        return [
            PlanUnit(
                model_id=model_id,
                unit_key=model_id,
                source_document_ids=[a.id for a in anchors if a.source_type != "seed_prompt"],
                source_model_ids=sorted({a.model_id for a in anchors if a.model_id}),
            )
            for model_id in models
        ]


class PerSourceDocumentStrategy(BaseGranularityStrategy):
    """One unit per anchor source.

    A header-context anchor passes on the sources and lineage it was
    planned over, so the documents written from it stay on that lineage.
    """

    name = "per_source_document"

    def _plan(self, models, anchors, sources, step):
        units: list[PlanUnit] = []
        for model_id in models:
            for anchor in anchors:
                c = anchor.contribution
                if anchor.source_type == "header_context" and c is not None:
                    units.append(
                        PlanUnit(
                            model_id=model_id,
                            unit_key=f"{model_id}:{anchor.id}",
                            header_context_id=anchor.id,
                            source_document_ids=list(c.source_document_ids),
                            source_model_ids=list(c.source_model_ids),
                            source_anchor_type=c.source_anchor_type,
                            source_anchor_model_id=c.source_anchor_model_id,
                            source_attempt_count=anchor.attempt_count,
                            paired_model_id=c.paired_model_id,
                            lineage_model_id=c.lineage_model_id,
                        )
                    )
                else:
                    units.append(
                        PlanUnit(
                            model_id=model_id,
                            unit_key=f"{model_id}:{anchor.id}",
                            source_document_ids=[anchor.id],
                            source_model_ids=[anchor.model_id] if anchor.model_id else [],
                            source_anchor_type=anchor.document_key,
                            source_anchor_model_id=anchor.model_id,
                            source_attempt_count=anchor.attempt_count,
                            lineage_model_id=anchor.lineage_model_id or anchor.model_id,
                        )
                    )
        return units


class PerSourceGroupStrategy(BaseGranularityStrategy):
    """One unit per source model: all anchors a model produced form one group."""

    name = "per_source_group"

    def _plan(self, models, anchors, sources, step):
        groups = _group_by(anchors, lambda d: d.model_id or "")
        units: list[PlanUnit] = []
        for model_id in models:
            for source_model, docs in groups.items():
                units.append(
                    PlanUnit(
                        model_id=model_id,
                        unit_key=f"{model_id}:{source_model}",
                        source_document_ids=[d.id for d in docs],
                        source_model_ids=[source_model],
                        source_anchor_type=docs[0].stage_slug,
                        source_anchor_model_id=source_model,
                        source_attempt_count=max(d.attempt_count for d in docs),
                        lineage_model_id=source_model,
                    )
                )
        return units


class PairwiseByOriginStrategy(BaseGranularityStrategy):
    """One unit per (origin lineage, paired model).

    Anchors are grouped by the model that produced them. Every other
    document that targets that origin (its ``source_anchor_model_id``) is
    grouped by its author, and each author forms one pair with the origin.
    """

    name = "pairwise_by_origin"

    def _plan(self, models, anchors, sources, step):
        anchor_ids = {a.id for a in anchors}
        origins = _group_by(anchors, lambda d: d.model_id or "")
        paired_docs = [
            d
            for d in sources.documents()
            if d.id not in anchor_ids
            and d.contribution is not None
            and d.contribution.source_anchor_model_id
        ]
        units: list[PlanUnit] = []
        for model_id in models:
            for origin, origin_docs in origins.items():
                targeting = [
                    d for d in paired_docs if d.contribution.source_anchor_model_id == origin
                ]
                for paired_model, docs in _group_by(targeting, lambda d: d.model_id or "").items():
                    units.append(
                        PlanUnit(
                            model_id=model_id,
                            unit_key=f"{model_id}:{origin}:{paired_model}",
                            source_document_ids=[d.id for d in origin_docs + docs],
                            source_model_ids=sorted({origin, paired_model}),
                            source_anchor_type=origin_docs[0].stage_slug,
                            source_anchor_model_id=origin,
                            source_attempt_count=max(d.attempt_count for d in origin_docs),
                            paired_model_id=paired_model,
                            lineage_model_id=origin,
                        )
                    )
        return units


class PerSourceDocumentByLineageStrategy(BaseGranularityStrategy):
    """One unit per lineage: anchors grouped by the origin they descend from."""

    name = "per_source_document_by_lineage"

    def _plan(self, models, anchors, sources, step):
        groups = _group_by(anchors, lambda d: d.lineage_model_id or d.model_id or "")
        units: list[PlanUnit] = []
        for model_id in models:
            for lineage, docs in groups.items():
                units.append(
                    PlanUnit(
                        model_id=model_id,
                        unit_key=f"{model_id}:{lineage}",
                        source_document_ids=[d.id for d in docs],
                        source_model_ids=sorted({d.model_id for d in docs if d.model_id}),
                        source_anchor_type=_anchor_type(docs[0]),
                        source_anchor_model_id=lineage,
                        source_attempt_count=max(d.attempt_count for d in docs),
                        lineage_model_id=lineage,
                    )
                )
        return units


class AllToOneStrategy(BaseGranularityStrategy):
    """Every anchor source feeds a single unit per model."""

    name = "all_to_one"

    def _plan(self, models, anchors, sources, step):
        return [
            PlanUnit(
                model_id=model_id,
                unit_key=f"{model_id}:all",
                source_document_ids=[a.id for a in anchors],
                source_model_ids=sorted({a.model_id for a in anchors if a.model_id}),
            )
            for model_id in models
        ]
