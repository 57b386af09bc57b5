# src/storage/paths.py - v1
"""Deterministic artifact path construction and parsing.

Layout under the blob store root:

    {project_id}/session_{short_id}/iteration_{n}/{order}_{stage}/
        seed_prompt.md
        user_feedback_{stage}.md
        feedback/{model}_{document_key}_feedback.md
        documents/{stem}.{md|json}
        raw_responses/{stem}_raw.json
        _work/context/{stem}.json
        _work/{stem}.{md|json}
        _work/raw_responses/{stem}_raw.json

Paths are a pure function of their identifiers so that re-running a job
attempt lands on the same object. ``deconstruct_storage_path`` reverses
``construct_storage_path``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from dialectica.core.models import HEADER_CONTEXT

SEED_PROMPT_FILE = "seed_prompt.md"
DOCUMENTS_DIR = "documents"
FEEDBACK_DIR = "feedback"
RAW_RESPONSES_DIR = "raw_responses"
WORK_DIR = "_work"
CONTEXT_DIR = "context"

_EDIT_MARKER = "__edit"


class FileType(str, Enum):
    SEED_PROMPT = "seed_prompt"
    USER_FEEDBACK = "user_feedback"
    DOCUMENT_FEEDBACK = "document_feedback"
    HEADER_CONTEXT = "header_context"
    MODEL_CONTRIBUTION = "model_contribution"
    RAW_RESPONSE = "raw_response"


@dataclass(frozen=True)
class PathContext:
    """Identifiers that determine an artifact location."""

    project_id: str
    session_id: str
    iteration: int
    stage_slug: str
    stage_order: int
    file_type: FileType
    model_slug: str | None = None
    attempt_count: int = 0
    document_key: str | None = None
    naming: str = "model"
    work_product: bool = False
    file_format: str = "md"
    source_model_slug: str | None = None
    source_anchor_type: str | None = None
    source_attempt_count: int = 0
    paired_model_slug: str | None = None
    edit_version: int = 1


@dataclass(frozen=True)
class StoragePath:
    directory: str
    file_name: str

    @property
    def full(self) -> str:
        return f"{self.directory}/{self.file_name}"


@dataclass(frozen=True)
class DeconstructedPath:
    project_id: str
    short_session_id: str
    iteration: int
    stage_order: int
    stage_slug: str
    file_type: FileType
    model_slug: str | None = None
    attempt_count: int | None = None
    document_key: str | None = None
    source_model_slug: str | None = None
    source_anchor_type: str | None = None
    source_attempt_count: int | None = None
    paired_model_slug: str | None = None
    work_product: bool = False
    edit_version: int = 1


def sanitize_slug(value: str) -> str:
    """Lowercase path-safe slug; underscores are reserved as separators."""
    slug = re.sub(r"[^a-z0-9.\-]+", "-", value.strip().lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    if not slug:
        raise ValueError(f"Cannot build a path slug from {value!r}")
    return slug


def short_session_id(session_id: str) -> str:
    return session_id.replace("-", "")[:8]


def stage_directory(ctx: PathContext) -> str:
    return (
        f"{ctx.project_id}/session_{short_session_id(ctx.session_id)}"
        f"/iteration_{ctx.iteration}/{ctx.stage_order}_{ctx.stage_slug}"
    )


def _require(value: str | None, name: str, file_type: FileType) -> str:
    if not value:
        raise ValueError(f"{file_type.value} path requires {name}")
    return value


def _stem(ctx: PathContext, document_key: str) -> str:
    model = _require(ctx.model_slug, "model_slug", ctx.file_type)
    attempt = ctx.attempt_count
    if ctx.naming == "critique":
        source = _require(ctx.source_model_slug, "source_model_slug", ctx.file_type)
        anchor = _require(ctx.source_anchor_type, "source_anchor_type", ctx.file_type)
        stem = (
            f"{model}_critiquing_({source}'s_{anchor}_{ctx.source_attempt_count})"
            f"_{attempt}_{document_key}"
        )
    elif ctx.naming == "pairwise":
        source = _require(ctx.source_model_slug, "source_model_slug", ctx.file_type)
        paired = _require(ctx.paired_model_slug, "paired_model_slug", ctx.file_type)
        anchor = _require(ctx.source_anchor_type, "source_anchor_type", ctx.file_type)
        stem = f"{model}_synthesizing_{source}_with_{paired}_on_{anchor}_{attempt}_{document_key}"
    elif ctx.naming == "reduce":
        source = _require(ctx.source_model_slug, "source_model_slug", ctx.file_type)
        anchor = _require(ctx.source_anchor_type, "source_anchor_type", ctx.file_type)
        stem = f"{model}_reducing_{anchor}_by_{source}_{attempt}_{document_key}"
    else:
        stem = f"{model}_{attempt}_{document_key}"
    if ctx.edit_version > 1:
        stem = f"{stem}{_EDIT_MARKER}{ctx.edit_version}"
    return stem


def construct_storage_path(ctx: PathContext) -> StoragePath:
    """Build the deterministic location of an artifact."""
    base = stage_directory(ctx)
    ft = ctx.file_type

    if ft is FileType.SEED_PROMPT:
        return StoragePath(base, SEED_PROMPT_FILE)
    if ft is FileType.USER_FEEDBACK:
        return StoragePath(base, f"user_feedback_{ctx.stage_slug}.md")
    if ft is FileType.DOCUMENT_FEEDBACK:
        model = _require(ctx.model_slug, "model_slug", ft)
        key = _require(ctx.document_key, "document_key", ft)
        return StoragePath(f"{base}/{FEEDBACK_DIR}", f"{model}_{key}_feedback.md")
    if ft is FileType.HEADER_CONTEXT:
        return StoragePath(
            f"{base}/{WORK_DIR}/{CONTEXT_DIR}", f"{_stem(ctx, HEADER_CONTEXT)}.json"
        )
    if ft is FileType.MODEL_CONTRIBUTION:
        key = _require(ctx.document_key, "document_key", ft)
        directory = f"{base}/{WORK_DIR}" if ctx.work_product else f"{base}/{DOCUMENTS_DIR}"
        return StoragePath(directory, f"{_stem(ctx, key)}.{ctx.file_format}")
    if ft is FileType.RAW_RESPONSE:
        key = ctx.document_key or HEADER_CONTEXT
        in_work = ctx.work_product or key == HEADER_CONTEXT
        directory = (
            f"{base}/{WORK_DIR}/{RAW_RESPONSES_DIR}" if in_work else f"{base}/{RAW_RESPONSES_DIR}"
        )
        return StoragePath(directory, f"{_stem(ctx, key)}_raw.json")
    raise ValueError(f"Unsupported file type: {ft!r}")


_BASE_RE = re.compile(
    r"^(?P<project>[^/]+)/session_(?P<short>[0-9a-zA-Z]+)/iteration_(?P<iteration>\d+)"
    r"/(?P<order>\d+)_(?P<stage>[^/]+)/(?P<rest>.+)$"
)
_CRITIQUE_RE = re.compile(
    r"^(?P<model>[^_/]+)_critiquing_\((?P<source>[^'/]+)'s_(?P<anchor>.+)_(?P<src_attempt>\d+)\)"
    r"_(?P<attempt>\d+)_(?P<key>.+)$"
)
_PAIRWISE_RE = re.compile(
    r"^(?P<model>[^_/]+)_synthesizing_(?P<source>[^_/]+)_with_(?P<paired>[^_/]+)"
    r"_on_(?P<anchor>.+?)_(?P<attempt>\d+)_(?P<key>.+)$"
)
_REDUCE_RE = re.compile(
    r"^(?P<model>[^_/]+)_reducing_(?P<anchor>.+?)_by_(?P<source>[^_/]+)"
    r"_(?P<attempt>\d+)_(?P<key>.+)$"
)
_MODEL_RE = re.compile(r"^(?P<model>[^_/]+)_(?P<attempt>\d+)_(?P<key>.+)$")
_FEEDBACK_RE = re.compile(r"^(?P<model>[^_/]+)_(?P<key>.+)_feedback\.md$")


def _parse_stem(stem: str) -> dict[str, object]:
    edit_version = 1
    if _EDIT_MARKER in stem:
        stem, _, version = stem.rpartition(_EDIT_MARKER)
        edit_version = int(version)
    for regex in (_CRITIQUE_RE, _PAIRWISE_RE, _REDUCE_RE, _MODEL_RE):
        match = regex.match(stem)
        if match:
            groups = match.groupdict()
            return {
                "model_slug": groups["model"],
                "attempt_count": int(groups["attempt"]),
                "document_key": groups["key"],
                "source_model_slug": groups.get("source"),
                "source_anchor_type": groups.get("anchor"),
                "source_attempt_count": (
                    int(groups["src_attempt"]) if groups.get("src_attempt") else None
                ),
                "paired_model_slug": groups.get("paired"),
                "edit_version": edit_version,
            }
    raise ValueError(f"Unrecognized artifact file name: {stem!r}")


def deconstruct_storage_path(path: str) -> DeconstructedPath:
    """Parse a path built by construct_storage_path back into identifiers.

    Raises:
        ValueError: If the path does not follow the artifact layout.
    """
    match = _BASE_RE.match(path.strip("/"))
    if not match:
        raise ValueError(f"Not an artifact path: {path!r}")
    base = {
        "project_id": match["project"],
        "short_session_id": match["short"],
        "iteration": int(match["iteration"]),
        "stage_order": int(match["order"]),
        "stage_slug": match["stage"],
    }
    rest = match["rest"]
    parts = rest.split("/")
    name = parts[-1]
    dirs = parts[:-1]

    if rest == SEED_PROMPT_FILE:
        return DeconstructedPath(**base, file_type=FileType.SEED_PROMPT)
    if not dirs and name.startswith("user_feedback_"):
        return DeconstructedPath(**base, file_type=FileType.USER_FEEDBACK)
    if dirs == [FEEDBACK_DIR]:
        fb = _FEEDBACK_RE.match(name)
        if not fb:
            raise ValueError(f"Unrecognized feedback file name: {name!r}")
        return DeconstructedPath(
            **base,
            file_type=FileType.DOCUMENT_FEEDBACK,
            model_slug=fb["model"],
            document_key=fb["key"],
        )
    if dirs and dirs[-1] == RAW_RESPONSES_DIR and name.endswith("_raw.json"):
        fields = _parse_stem(name[: -len("_raw.json")])
        return DeconstructedPath(
            **base,
            file_type=FileType.RAW_RESPONSE,
            work_product=dirs[0] == WORK_DIR,
            **fields,  # type: ignore[arg-type]
        )

    stem, _, _ext = name.rpartition(".")
    if dirs == [WORK_DIR, CONTEXT_DIR]:
        fields = _parse_stem(stem)
        return DeconstructedPath(
            **base, file_type=FileType.HEADER_CONTEXT, work_product=True, **fields  # type: ignore[arg-type]
        )
    if dirs in ([DOCUMENTS_DIR], [WORK_DIR]):
        fields = _parse_stem(stem)
        return DeconstructedPath(
            **base,
            file_type=FileType.MODEL_CONTRIBUTION,
            work_product=dirs == [WORK_DIR],
            **fields,  # type: ignore[arg-type]
        )
    raise ValueError(f"Unrecognized artifact location: {path!r}")
