"""Persistence for changelog generations.

Each mutation runs in its own session and writes the whole row. Terminal
records (completed or failed) are final: later progress or state writes
are ignored, and progress never decreases.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import TypeAdapter
from sqlmodel import select

from changelog_api.database.models import Generation, utcnow
from changelog_api.database.session import Database
from changelog_api.errors import GenerationNotFoundError
from changelog_api.schemas import (
    AIMetadata,
    CommitAnalysis,
    Completed,
    Failed,
    GeneratedChangelog,
    GenerationOptions,
    GenerationRecord,
    GenerationRequest,
    GenerationStatus,
    Processing,
)


logger = logging.getLogger(__name__)

_analyses_adapter = TypeAdapter(list[CommitAnalysis])


def _dump_analyses(analyses: list[CommitAnalysis]) -> str:
    return _analyses_adapter.dump_json(analyses).decode()


def to_record(row: Generation) -> GenerationRecord:
    """Convert a database row into a ``GenerationRecord``."""
    if row.status == GenerationStatus.COMPLETED.value and row.generated_content_json:
        state = Completed(
            content=GeneratedChangelog.model_validate_json(row.generated_content_json),
            ai_metadata=AIMetadata.model_validate_json(row.ai_metadata_json or "{}"),
        )
    elif row.status in (GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value):
        state = Failed(progress=row.progress, reason=row.failure_reason)
    else:
        state = Processing(progress=row.progress)

    return GenerationRecord(
        id=row.id,
        user_id=row.user_id,
        repository_ref=row.repository_ref,
        branch=row.branch,
        date_start=row.date_start,
        date_end=row.date_end,
        options=GenerationOptions.model_validate_json(row.options_json or "{}"),
        state=state,
        commit_analyses=_analyses_adapter.validate_json(row.commit_analyses_json or "[]"),
        is_saved=row.is_saved,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _is_terminal(row: Generation) -> bool:
    return row.status != GenerationStatus.PROCESSING.value


class GenerationStore:
    """CRUD and state transitions for ``generations`` rows."""

    def __init__(self, database: Database):
        self.db = database

    async def create(self, request: GenerationRequest, user_id: str | None = None) -> GenerationRecord:
        """Persist a new ``processing`` record at progress 0."""
        row = Generation(
            user_id=user_id,
            repository_ref=request.repository_ref,
            branch=request.branch,
            date_start=request.start_date,
            date_end=request.end_date,
            options_json=request.options.model_dump_json(),
        )
        async with self.db.session() as session:
            session.add(row)
        logger.info(f"[{row.id}] Created generation for {request.repository_ref}@{request.branch}")
        return to_record(row)

    async def get(self, generation_id: str, user_id: str | None = None) -> GenerationRecord | None:
        """Return the current snapshot, optionally scoped to an owner."""
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None or (user_id is not None and row.user_id != user_id):
                return None
            return to_record(row)

    async def update_progress(
        self,
        generation_id: str,
        progress: int,
        commit_analyses: list[CommitAnalysis] | None = None,
    ) -> GenerationRecord | None:
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None:
                logger.warning(f"[{generation_id}] Progress update for missing generation")
                return None
            if _is_terminal(row):
                logger.debug(f"[{generation_id}] Ignoring progress update on {row.status} generation")
                return to_record(row)

            row.progress = max(row.progress, min(progress, 100))
            if commit_analyses is not None:
                row.commit_analyses_json = _dump_analyses(commit_analyses)
            row.updated_at = utcnow()
            session.add(row)
            return to_record(row)

    async def complete(
        self,
        generation_id: str,
        content: GeneratedChangelog,
        ai_metadata: AIMetadata,
        commit_analyses: list[CommitAnalysis] | None = None,
    ) -> GenerationRecord | None:
        """Transition to ``completed`` with the generated content."""
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None:
                logger.warning(f"[{generation_id}] Completion for missing generation")
                return None
            if _is_terminal(row):
                logger.warning(f"[{generation_id}] Ignoring completion of {row.status} generation")
                return to_record(row)

            row.status = GenerationStatus.COMPLETED.value
            row.progress = 100
            row.generated_content_json = content.model_dump_json()
            row.ai_metadata_json = ai_metadata.model_dump_json()
            if commit_analyses is not None:
                row.commit_analyses_json = _dump_analyses(commit_analyses)
            row.updated_at = utcnow()
            session.add(row)
            return to_record(row)

    async def fail(self, generation_id: str, reason: str) -> GenerationRecord | None:
        """Transition to ``failed``. Analyses persisted so far are kept."""
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None:
                logger.warning(f"[{generation_id}] Failure for missing generation")
                return None
            if _is_terminal(row):
                return to_record(row)

            row.status = GenerationStatus.FAILED.value
            row.failure_reason = reason
            row.generated_content_json = None
            row.ai_metadata_json = None
            row.updated_at = utcnow()
            session.add(row)
            return to_record(row)

    async def list_saved(self, user_id: str) -> list[GenerationRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Generation)
                .where(Generation.user_id == user_id, Generation.is_saved == True)  # noqa: E712
                .order_by(Generation.created_at.desc())
            )
            return [to_record(row) for row in result.scalars().all()]

    async def save(self, generation_id: str, user_id: str) -> GenerationRecord:
        """Mark a generation as saved for its owner."""
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None or row.user_id != user_id:
                raise GenerationNotFoundError(f"Generation {generation_id} not found")
            row.is_saved = True
            row.updated_at = utcnow()
            session.add(row)
            return to_record(row)

    async def delete(self, generation_id: str, user_id: str) -> None:
        async with self.db.session() as session:
            row = await session.get(Generation, generation_id)
            if row is None or row.user_id != user_id:
                raise GenerationNotFoundError(f"Generation {generation_id} not found")
            await session.delete(row)
        logger.info(f"[{generation_id}] Deleted generation")

    async def expire_stale(self, older_than: datetime | None = None) -> int:
        """Mark ``processing`` records not updated since ``older_than`` as failed.

        With no cutoff every processing record is expired; that is what the
        startup sweep wants, since no task from a previous process survives.
        """
        query = select(Generation).where(Generation.status == GenerationStatus.PROCESSING.value)
        if older_than is not None:
            query = query.where(Generation.updated_at < older_than)

        async with self.db.session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
            for row in rows:
                row.status = GenerationStatus.FAILED.value
                row.failure_reason = "STALE: generation was abandoned before finishing"
                row.updated_at = utcnow()
                session.add(row)

        if rows:
            logger.warning(f"Expired {len(rows)} stale generations")
        return len(rows)
