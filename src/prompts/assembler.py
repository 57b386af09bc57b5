# src/prompts/assembler.py - v1
"""Prompt assembly for seed prompts, step turns and continuations.

Templates are plain text files under ``prompts/templates`` filled with
``str.format``. Domain overlay values come from the stage configuration for
the project's domain, overridden by the project's own overlay values.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from dialectica.core.errors import ConfigurationError, ResponseContractError
from dialectica.core.models import HEADER_CONTEXT
from dialectica.execution.validation import header_excerpt, parse_json_object
from dialectica.llm.models import Message
from dialectica.prompts.condenser import PromptCondenser, PromptSection, estimate_tokens

if TYPE_CHECKING:
    from dialectica.core.models import AIModel, Project, Stage
    from dialectica.gathering.models import SourceDocument, SourceDocuments
    from dialectica.recipes.models import RecipeStep

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
CONTINUE_REQUEST = "Please continue."

_FORMAT_INSTRUCTIONS = {
    "md": "Return the document as Markdown, starting with a level-one heading.",
    "json": "Return a single JSON object and nothing else.",
}


class AssembledPrompt(BaseModel):
    """System prompt plus conversation sent to a model."""

    system: str | None = None
    messages: list[Message] = Field(default_factory=list)
    condensed: bool = False

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.system or "") + sum(
            estimate_tokens(m.content) for m in self.messages
        )


class PromptTemplates:
    """Loads and caches templates by name."""

    def __init__(self, directory: Path = TEMPLATES_DIR) -> None:
        self._directory = directory
        self._cache: dict[str, str] = {}

    def get(self, name: str) -> str:
        if name not in self._cache:
            path = self._directory / f"{name}.txt"
            if not path.is_file():
                raise ConfigurationError(f"Prompt template {name!r} not found", path=str(path))
            self._cache[name] = path.read_text(encoding="utf-8")
        return self._cache[name]

    def render(self, name: str, **values: object) -> str:
        try:
            return self.get(name).format(**values)
        except KeyError as e:
            raise ConfigurationError(
                f"Prompt template {name!r} uses unknown placeholder {e.args[0]!r}"
            ) from e


def overlay_values(project: Project, stage: Stage) -> dict[str, str]:
    overlays = stage.domain_overlays.get(project.domain) or stage.domain_overlays.get(
        "general", {}
    )
    values = {"domain_name": project.domain, "domain_guidance": "", "stage_role": "contributor"}
    values.update(overlays)
    values.update(project.domain_overlay_values)
    return values


def _group_sources(docs: list[SourceDocument], heading: str) -> str:
    """Markdown blocks grouped per stage and model."""
    if not docs:
        return ""
    grouped: dict[tuple[str, str], list[SourceDocument]] = defaultdict(list)
    for doc in docs:
        grouped[(doc.stage_slug, doc.model_id or "-")].append(doc)
    parts = [f"\n## {heading}\n"]
    for (stage_slug, model_id), items in grouped.items():
        parts.append(f"\n### {stage_slug} / {model_id}\n")
        for doc in items:
            parts.append(f"\n#### {doc.document_key}\n\n{doc.content.strip()}\n")
    return "".join(parts)


class PromptAssembler:
    """Builds every prompt the engine sends."""

    def __init__(
        self,
        templates: PromptTemplates | None = None,
        condenser: PromptCondenser | None = None,
    ) -> None:
        self._templates = templates or PromptTemplates()
        self._condenser = condenser

    @property
    def templates(self) -> PromptTemplates:
        return self._templates

    def assemble_seed_prompt(
        self,
        project: Project,
        stage: Stage,
        prior: SourceDocuments | None = None,
        stage_feedback: str | None = None,
    ) -> str:
        """Seed prompt of a stage: template, overlays, initial prompt and prior work."""
        documents = prior.documents() if prior is not None else []
        feedback = prior.feedback() if prior is not None else []
        user_feedback = _group_sources(feedback, "User feedback on prior documents")
        if stage_feedback:
            user_feedback += f"\n## User notes\n\n{stage_feedback.strip()}\n"
        return self._templates.render(
            stage.seed_template,
            stage_name=stage.display_name,
            initial_prompt=project.initial_prompt.strip(),
            prior_work=_group_sources(documents, "Prior work"),
            user_feedback=user_feedback,
            **overlay_values(project, stage),
        )

    def system_prompt(self, project: Project, stage: Stage, model: AIModel) -> str:
        return self._templates.render(
            "system",
            model_name=model.display_name or model.api_model,
            stage_name=stage.display_name,
            **overlay_values(project, stage),
        ).strip()

    async def assemble_turn_prompt(
        self,
        project: Project,
        session_id: str,
        stage: Stage,
        step: RecipeStep,
        model: AIModel,
        sources: SourceDocuments,
        document_key: str,
    ) -> AssembledPrompt:
        """Prompt for one EXECUTE job of ``step`` producing ``document_key``."""
        output = step.outputs_required
        seed = sources.seed_prompt()
        seed_text = seed.content.strip() if seed else ""

        sections = [
            PromptSection(
                label=f"{d.stage_slug} / {d.model_id or '-'} / {d.document_key}",
                content=d.content,
                source_id=d.id,
            )
            for d in sources.documents()
        ]
        feedback_text = _group_sources(sources.feedback(), "User feedback")

        values: dict[str, object] = {
            "stage_name": stage.display_name,
            "seed_prompt": "",
            "sources": "",
            "feedback": feedback_text,
        }
        if output.output_type == "header_context":
            template = "header_context"
            values["seed_prompt"] = seed_text
            values["context_for_documents"] = ", ".join(output.context_for_documents)
        else:
            template = "document"
            fmt = output.file_format(document_key)
            values.update(
                document_key=document_key,
                file_format=fmt,
                format_instructions=_FORMAT_INSTRUCTIONS[fmt],
                header_excerpt=self._header_excerpt(sources, document_key),
            )
            if seed_text:
                values["seed_prompt"] = f"\n## Seed prompt\n\n{seed_text}\n"

        system = self.system_prompt(project, stage, model)
        condensed = False
        if self._condenser is not None and sections:
            fixed = estimate_tokens(system) + estimate_tokens(
                self._templates.render(template, **values)
            )
            sections = await self._condenser.condense(
                sections,
                fixed_tokens=fixed,
                session_id=session_id,
                query=f"{stage.display_name} {step.step_name} {document_key}",
            )
            condensed = any(s.condensed for s in sections)

        if sections:
            values["sources"] = "\n## Source documents\n" + "".join(
                f"\n### {s.label}\n\n{s.content.strip()}\n" for s in sections
            )

        text = self._templates.render(template, **values).strip()
        logger.debug(
            "Assembled %s prompt for %s/%s (~%d tokens)",
            template, step.step_slug, document_key, estimate_tokens(text),
        )
        return AssembledPrompt(
            system=system,
            messages=[Message(role="user", content=text)],
            condensed=condensed,
        )

    @staticmethod
    def _header_excerpt(sources: SourceDocuments, document_key: str) -> str:
        headers = sources.header_contexts()
        if not headers:
            return "(no plan available)"
        header = headers[0]
        try:
            data = parse_json_object(header.content, HEADER_CONTEXT)
        except ResponseContractError:
            return header.content.strip()
        return json.dumps(header_excerpt(data, document_key), indent=2, ensure_ascii=False)

    @staticmethod
    def assemble_continuation_prompt(
        base: AssembledPrompt, partial: str, continuation_count: int
    ) -> AssembledPrompt:
        """Base conversation plus the partial output and a continue request."""
        messages = list(base.messages)
        messages.append(Message(role="assistant", content=partial))
        messages.append(Message(role="user", content=CONTINUE_REQUEST))
        logger.debug("Continuation prompt #%d (%d chars so far)", continuation_count, len(partial))
        return AssembledPrompt(system=base.system, messages=messages, condensed=base.condensed)
