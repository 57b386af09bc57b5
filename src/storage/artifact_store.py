# src/storage/artifact_store.py - v1
"""Artifact store adapter: place content at deterministic paths and
register the matching metadata rows.

Writes are idempotent per path. Re-running the same attempt overwrites
the same blob and updates the same contribution row instead of adding a
duplicate.
"""

from __future__ import annotations

import json
import logging

from dialectica.core.errors import ModelScopeViolation, NotFoundError
from dialectica.core.models import (
    HEADER_CONTEXT,
    Contribution,
    Feedback,
    SeedPrompt,
    Stage,
    utcnow,
)
from dialectica.storage.base_blob_store import BaseBlobStore
from dialectica.storage.base_state_store import BaseStateStore
from dialectica.storage.models import ContributionUpload, FeedbackUpload
from dialectica.storage.paths import (
    FileType,
    PathContext,
    construct_storage_path,
    sanitize_slug,
)

logger = logging.getLogger(__name__)

_MIME_TYPES = {"md": "text/markdown", "json": "application/json"}


class ArtifactStore:
    """Blob placement plus metadata registration for every artifact kind."""

    def __init__(self, blobs: BaseBlobStore, state: BaseStateStore) -> None:
        self._blobs = blobs
        self._state = state

    @property
    def blobs(self) -> BaseBlobStore:
        return self._blobs

    def _context(
        self,
        project_id: str,
        session_id: str,
        stage: Stage,
        iteration: int,
        file_type: FileType,
        **fields: object,
    ) -> PathContext:
        return PathContext(
            project_id=project_id,
            session_id=session_id,
            iteration=iteration,
            stage_slug=stage.slug,
            stage_order=stage.directory_order,
            file_type=file_type,
            **fields,  # type: ignore[arg-type]
        )

    async def _check_source_scope(self, upload: ContributionUpload) -> None:
        """A document derived from a header context must share its model."""
        if not upload.source_document_id:
            return
        source = await self._state.get_contribution(upload.source_document_id)
        if source is None:
            raise NotFoundError(
                f"Source document {upload.source_document_id} not found"
            )
        if source.contribution_type == HEADER_CONTEXT and source.model_id != upload.model.id:
            raise ModelScopeViolation(
                f"Contribution by {upload.model.id} cannot reference header context "
                f"{source.id} produced by {source.model_id}",
                source_document_id=source.id,
                source_model_id=source.model_id,
                model_id=upload.model.id,
            )

    async def save_contribution(
        self, upload: ContributionUpload, edit_version: int = 1
    ) -> Contribution:
        """Write content (and raw response) then register the contribution.

        Raises:
            ModelScopeViolation: If source_document_id points at another
                model's header context.
        """
        await self._check_source_scope(upload)

        is_header = upload.contribution_type == HEADER_CONTEXT
        path_fields = dict(
            model_slug=sanitize_slug(upload.model.slug),
            attempt_count=upload.attempt_count,
            document_key=upload.document_key,
            naming=upload.naming,
            work_product=upload.work_product,
            file_format="json" if is_header else upload.file_format,
            source_model_slug=(
                sanitize_slug(upload.source_anchor_model_slug)
                if upload.source_anchor_model_slug
                else None
            ),
            source_anchor_type=upload.source_anchor_type,
            source_attempt_count=upload.source_attempt_count,
            paired_model_slug=(
                sanitize_slug(upload.paired_model_slug) if upload.paired_model_slug else None
            ),
            edit_version=edit_version,
        )
        file_type = FileType.HEADER_CONTEXT if is_header else FileType.MODEL_CONTRIBUTION
        target = construct_storage_path(
            self._context(
                upload.project_id, upload.session_id, upload.stage, upload.iteration,
                file_type, **path_fields,
            )
        )
        await self._blobs.write(target.full, upload.content)

        raw_path: str | None = None
        if upload.raw_response is not None:
            raw_target = construct_storage_path(
                self._context(
                    upload.project_id, upload.session_id, upload.stage, upload.iteration,
                    FileType.RAW_RESPONSE, **path_fields,
                )
            )
            await self._blobs.write(
                raw_target.full, json.dumps(upload.raw_response, indent=2, default=str)
            )
            raw_path = raw_target.full

        existing = await self._state.find_contribution_by_path(target.full)
        fmt = path_fields["file_format"]
        contribution = Contribution(
            session_id=upload.session_id,
            project_id=upload.project_id,
            stage_slug=upload.stage.slug,
            iteration_number=upload.iteration,
            model_id=upload.model.id,
            model_slug=upload.model.slug,
            contribution_type=upload.contribution_type,
            document_key=upload.document_key,
            storage_path=target.full,
            file_name=target.file_name,
            mime_type=_MIME_TYPES[str(fmt)],
            size_bytes=len(upload.content.encode("utf-8")),
            raw_response_path=raw_path,
            attempt_count=upload.attempt_count,
            edit_key=upload.edit_key,
            edit_version=edit_version,
            user_id=upload.user_id,
            source_document_id=upload.source_document_id,
            source_document_ids=upload.source_document_ids,
            source_model_ids=upload.source_model_ids,
            source_anchor_type=upload.source_anchor_type,
            source_anchor_model_id=upload.source_anchor_model_id,
            paired_model_id=upload.paired_model_id,
            lineage_model_id=upload.lineage_model_id,
            tokens_used_input=upload.tokens_used_input,
            tokens_used_output=upload.tokens_used_output,
            truncated=upload.truncated,
        )
        if existing is not None:
            contribution = contribution.model_copy(
                update={"id": existing.id, "created_at": existing.created_at}
            )
            logger.debug("Re-registering contribution %s at %s", existing.id, target.full)

        await self._state.save_contribution(contribution)
        logger.debug(
            "Saved %s %s for model %s -> %s",
            upload.contribution_type, upload.document_key, upload.model.id, target.full,
        )
        return contribution

    async def save_edit(
        self, original: Contribution, upload: ContributionUpload
    ) -> Contribution:
        """Store a user edit as the new latest version of ``original``."""
        upload = upload.model_copy(update={"edit_key": original.edit_key})
        return await self.save_contribution(upload, edit_version=original.edit_version + 1)

    async def read_text(self, path: str) -> str:
        return await self._blobs.read_text(path)

    async def save_feedback(self, upload: FeedbackUpload) -> Feedback:
        """Write the feedback file and upsert its single current record."""
        target = construct_storage_path(
            self._context(
                upload.project_id, upload.session_id, upload.stage, upload.iteration,
                FileType.DOCUMENT_FEEDBACK,
                model_slug=sanitize_slug(upload.model.slug),
                document_key=upload.document_key,
            )
        )
        await self._blobs.write(target.full, upload.content)
        feedback = Feedback(
            session_id=upload.session_id,
            project_id=upload.project_id,
            stage_slug=upload.stage.slug,
            iteration_number=upload.iteration,
            model_id=upload.model.id,
            document_key=upload.document_key,
            user_id=upload.user_id,
            feedback_type=upload.feedback_type,
            content=upload.content,
            storage_path=target.full,
        )
        return await self._state.upsert_feedback(feedback)

    async def save_stage_feedback(
        self, project_id: str, session_id: str, stage: Stage, iteration: int, content: str
    ) -> str:
        """Free-form feedback on the stage as a whole."""
        target = construct_storage_path(
            self._context(project_id, session_id, stage, iteration, FileType.USER_FEEDBACK)
        )
        await self._blobs.write(target.full, content)
        return target.full

    async def save_seed_prompt(
        self,
        project_id: str,
        session_id: str,
        stage: Stage,
        iteration: int,
        content: str,
        metadata: dict | None = None,
    ) -> SeedPrompt:
        target = construct_storage_path(
            self._context(project_id, session_id, stage, iteration, FileType.SEED_PROMPT)
        )
        await self._blobs.write(target.full, content)
        seed = SeedPrompt(
            session_id=session_id,
            stage_slug=stage.slug,
            iteration_number=iteration,
            storage_path=target.full,
            content=content,
            metadata=metadata or {},
            created_at=utcnow(),
        )
        return await self._state.save_seed_prompt(seed)

    async def walk(self, prefix: str) -> list[str]:
        """Every blob path below ``prefix``, depth first in listing order."""
        paths: list[str] = []
        for entry in await self._blobs.list_dir(prefix):
            child = f"{prefix.rstrip('/')}/{entry.rstrip('/')}"
            if entry.endswith("/"):
                paths.extend(await self.walk(child))
            else:
                paths.append(child)
        return paths

    async def copy_blobs(self, paths: dict[str, str]) -> None:
        """Copy each source path to its target path."""
        for source, target in paths.items():
            await self._blobs.write(target, await self._blobs.read(source))
        logger.debug("Copied %d blobs", len(paths))
