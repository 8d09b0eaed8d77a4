"""Assemble a completed generation into a persisted changelog document.

The document is an independent copy: every row gets a fresh id, and the
generation is only referenced through ``ai_generation_id``.
"""

from __future__ import annotations

import json
import logging

from changelog_api.database.models import Changelog, new_id
from changelog_api.database.session import Database
from changelog_api.errors import GenerationNotFoundError, GenerationNotReadyError
from changelog_api.schemas import (
    ChangelogCustomizations,
    ChangelogResponse,
    ChangelogStatus,
    DocumentMetadata,
    GenerationStatus,
)
from changelog_api.services.changelogs import ChangelogStore, build_rows, insert_document
from changelog_api.services.generations import GenerationStore


logger = logging.getLogger(__name__)


class ChangelogAssembler:
    def __init__(self, database: Database, generations: GenerationStore, changelogs: ChangelogStore):
        self.db = database
        self.generations = generations
        self.changelogs = changelogs

    async def create_from_generation(
        self,
        generation_id: str,
        requester_id: str | None,
        customizations: ChangelogCustomizations | None = None,
    ) -> ChangelogResponse:
        """Persist a new draft document built from a completed generation.

        Raises:
            GenerationNotFoundError: When the generation does not exist
            GenerationNotReadyError: When the generation is not completed
        """
        record = await self.generations.get(generation_id)
        if record is None:
            raise GenerationNotFoundError(f"Generation {generation_id} not found")
        content = record.generated_content
        if record.status != GenerationStatus.COMPLETED or content is None:
            raise GenerationNotReadyError(f"Generation {generation_id} is {record.status.value}, not completed")

        customizations = customizations or ChangelogCustomizations()
        metadata = DocumentMetadata(
            total_commits=content.metadata.total_commits,
            contributors=content.metadata.contributors,
            files_changed=content.metadata.files_changed,
            lines_added=content.metadata.lines_added,
            lines_removed=content.metadata.lines_removed,
            generation_method="ai",
            ai_generation_id=generation_id,
        )

        changelog = Changelog(
            id=new_id(),
            version=content.version,
            title=customizations.title or content.title,
            description=customizations.description or content.summary or None,
            repository_ref=record.repository_ref,
            branch=record.branch,
            date_start=record.date_start,
            date_end=record.date_end,
            status=ChangelogStatus.DRAFT.value,
            metadata_json=metadata.model_dump_json(),
            tags_json=json.dumps(customizations.tags or []),
            ai_generation_id=generation_id,
            created_by=requester_id,
        )

        sections = sorted(content.sections, key=lambda s: s.order)
        section_rows, change_rows = build_rows(changelog.id, sections)

        async with self.db.session() as session:
            await insert_document(session, changelog, section_rows, change_rows)

        logger.info(
            f"[{generation_id}] Assembled changelog {changelog.id}: "
            f"{len(sections)} sections, {content.change_count} changes"
        )
        return await self.changelogs.get(changelog.id)
