"""Changelog document store.

Access rules:
- a document is visible to its creator and to admins; everyone else gets
  "not found"
- published documents are read-only for non-admins
- only admins unpublish
- hand-written documents may not reuse the version of a non-archived
  document of the same repository
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import delete as sql_delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from changelog_api.database.models import Changelog, ChangelogChange, ChangelogSection, User, new_id, utcnow
from changelog_api.database.session import Database
from changelog_api.errors import (
    AlreadyPublishedError,
    ChangelogNotFoundError,
    PermissionDeniedError,
    VersionExistsError,
)
from changelog_api.schemas import (
    ChangeResponse,
    ChangeType,
    ChangelogCreateRequest,
    ChangelogResponse,
    ChangelogStatus,
    ChangelogUpdateRequest,
    DateRange,
    DocumentMetadata,
    Impact,
    SectionResponse,
    UserRole,
)


logger = logging.getLogger(__name__)


_IMPACT_BY_CHANGE_TYPE = {
    ChangeType.BREAKING: Impact.MAJOR,
    ChangeType.FEATURE: Impact.MINOR,
}


def determine_impact(change_type: ChangeType) -> Impact:
    """Default impact for a change that has none."""
    return _IMPACT_BY_CHANGE_TYPE.get(change_type, Impact.PATCH)


def build_rows(changelog_id: str, sections) -> tuple[list[ChangelogSection], list[ChangelogChange]]:
    """Fresh section and change rows for ``sections``, keeping their order.

    Accepts generated sections and hand-written ones alike.
    """
    section_rows: list[ChangelogSection] = []
    change_rows: list[ChangelogChange] = []
    for section_index, section in enumerate(sections):
        section_row = ChangelogSection(
            id=new_id(),
            changelog_id=changelog_id,
            title=section.title,
            order_index=section_index,
        )
        section_rows.append(section_row)
        for change_index, change in enumerate(section.changes):
            change_rows.append(
                ChangelogChange(
                    id=new_id(),
                    section_id=section_row.id,
                    order_index=change_index,
                    description=change.description,
                    type=change.type.value,
                    impact=(change.impact or determine_impact(change.type)).value,
                    tags_json=json.dumps(change.tags),
                    commits_json=json.dumps(change.commits),
                    pull_requests_json=json.dumps(change.pull_requests),
                    author=change.author,
                    affected_components_json=json.dumps(change.affected_components),
                    migration_guide=change.migration_guide,
                    code_examples_json=json.dumps(change.code_examples),
                )
            )
    return section_rows, change_rows


async def insert_document(
    session: AsyncSession,
    changelog: Changelog,
    section_rows: list[ChangelogSection],
    change_rows: list[ChangelogChange],
) -> None:
    session.add(changelog)
    await session.flush()
    session.add_all(section_rows)
    await session.flush()
    session.add_all(change_rows)
    await session.flush()


def _is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN.value


def _can_view(changelog: Changelog, user: User) -> bool:
    return _is_admin(user) or changelog.created_by == user.id


async def load_document(session: AsyncSession, changelog: Changelog) -> ChangelogResponse:
    """Build the full document (sections and changes, in order) for a row."""
    sections_result = await session.execute(
        select(ChangelogSection)
        .where(ChangelogSection.changelog_id == changelog.id)
        .order_by(ChangelogSection.order_index)
    )
    sections = list(sections_result.scalars().all())

    changes_by_section: dict[str, list[ChangeResponse]] = {section.id: [] for section in sections}
    if sections:
        changes_result = await session.execute(
            select(ChangelogChange)
            .where(ChangelogChange.section_id.in_(list(changes_by_section)))
            .order_by(ChangelogChange.order_index)
        )
        for change in changes_result.scalars().all():
            changes_by_section[change.section_id].append(
                ChangeResponse(
                    id=change.id,
                    description=change.description,
                    type=change.type,
                    impact=change.impact,
                    tags=json.loads(change.tags_json or "[]"),
                    commits=json.loads(change.commits_json or "[]"),
                    pull_requests=json.loads(change.pull_requests_json or "[]"),
                    author=change.author,
                    affected_components=json.loads(change.affected_components_json or "[]"),
                    migration_guide=change.migration_guide,
                    code_examples=json.loads(change.code_examples_json or "{}"),
                )
            )

    return ChangelogResponse(
        id=changelog.id,
        version=changelog.version,
        title=changelog.title,
        description=changelog.description,
        repository_ref=changelog.repository_ref,
        branch=changelog.branch,
        date_range=DateRange(start=changelog.date_start, end=changelog.date_end),
        status=changelog.status,
        sections=[
            SectionResponse(
                id=section.id,
                title=section.title,
                order=section.order_index,
                changes=changes_by_section[section.id],
            )
            for section in sections
        ],
        tags=json.loads(changelog.tags_json or "[]"),
        metadata=DocumentMetadata.model_validate_json(changelog.metadata_json or "{}"),
        created_by=changelog.created_by,
        published_at=changelog.published_at,
        published_by=changelog.published_by,
        created_at=changelog.created_at,
        updated_at=changelog.updated_at,
    )


class ChangelogStore:
    def __init__(self, database: Database):
        self.db = database

    async def _get_visible(self, session: AsyncSession, changelog_id: str, user: User | None) -> Changelog:
        changelog = await session.get(Changelog, changelog_id)
        if changelog is None or (user is not None and not _can_view(changelog, user)):
            raise ChangelogNotFoundError(f"Changelog {changelog_id} not found")
        return changelog

    @staticmethod
    def _check_editable(changelog: Changelog, user: User) -> None:
        if changelog.status == ChangelogStatus.PUBLISHED.value and not _is_admin(user):
            raise PermissionDeniedError("Published changelogs can only be modified by admins")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, changelog_id: str, user: User | None = None) -> ChangelogResponse:
        """Return a document; with ``user`` set, enforce visibility."""
        async with self.db.session() as session:
            changelog = await self._get_visible(session, changelog_id, user)
            return await load_document(session, changelog)

    async def list(self, user: User, status: ChangelogStatus | None = None) -> list[ChangelogResponse]:
        """Documents visible to ``user``, newest first."""
        query = select(Changelog).order_by(Changelog.created_at.desc())
        if not _is_admin(user):
            query = query.where(Changelog.created_by == user.id)
        if status is not None:
            query = query.where(Changelog.status == status.value)

        async with self.db.session() as session:
            result = await session.execute(query)
            return [await load_document(session, row) for row in result.scalars().all()]

    async def list_published(self, repository_ref: str | None = None) -> list[ChangelogResponse]:
        query = (
            select(Changelog)
            .where(Changelog.status == ChangelogStatus.PUBLISHED.value)
            .order_by(Changelog.published_at.desc())
        )
        if repository_ref:
            query = query.where(Changelog.repository_ref == repository_ref)

        async with self.db.session() as session:
            result = await session.execute(query)
            return [await load_document(session, row) for row in result.scalars().all()]

    async def get_published(self, changelog_id: str) -> ChangelogResponse:
        async with self.db.session() as session:
            changelog = await session.get(Changelog, changelog_id)
            if changelog is None or changelog.status != ChangelogStatus.PUBLISHED.value:
                raise ChangelogNotFoundError(f"Changelog {changelog_id} not found")
            return await load_document(session, changelog)

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(self, request: ChangelogCreateRequest, repository_ref: str, user: User) -> ChangelogResponse:
        """Persist a hand-written draft for ``repository_ref`` (owner/name).

        Raises:
            VersionExistsError: When a non-archived document of the repository
                already uses ``request.version``
        """
        metadata = DocumentMetadata(
            generation_method="hybrid" if request.ai_generation_id else "manual",
            ai_generation_id=request.ai_generation_id,
        )
        changelog = Changelog(
            id=new_id(),
            version=request.version,
            title=request.title,
            description=request.description,
            repository_ref=repository_ref,
            branch=request.branch,
            date_start=request.start_date,
            date_end=request.end_date,
            status=ChangelogStatus.DRAFT.value,
            metadata_json=metadata.model_dump_json(),
            tags_json=json.dumps(request.tags),
            ai_generation_id=request.ai_generation_id,
            created_by=user.id,
        )
        section_rows, change_rows = build_rows(changelog.id, request.sections)

        async with self.db.session() as session:
            existing = await session.execute(
                select(Changelog.id).where(
                    Changelog.repository_ref == repository_ref,
                    Changelog.version == request.version,
                    Changelog.status != ChangelogStatus.ARCHIVED.value,
                )
            )
            if existing.first() is not None:
                raise VersionExistsError(f"Version {request.version} already exists for {repository_ref}")

            await insert_document(session, changelog, section_rows, change_rows)
            document = await load_document(session, changelog)

        logger.info(f"Created {metadata.generation_method} changelog {changelog.id} for {repository_ref}")
        return document

    async def update(self, changelog_id: str, user: User, update: ChangelogUpdateRequest) -> ChangelogResponse:
        async with self.db.session() as session:
            changelog = await self._get_visible(session, changelog_id, user)
            self._check_editable(changelog, user)

            fields = update.model_dump(exclude_unset=True)
            for name in ("version", "title", "description", "branch"):
                if name in fields:
                    setattr(changelog, name, fields[name])
            if "tags" in fields:
                changelog.tags_json = json.dumps(fields["tags"] or [])
            if fields.get("status") is not None:
                changelog.status = ChangelogStatus(fields["status"]).value
                if changelog.status != ChangelogStatus.PUBLISHED.value:
                    changelog.published_at = None
                    changelog.published_by = None
            changelog.updated_at = utcnow()
            session.add(changelog)
            await session.flush()
            return await load_document(session, changelog)

    async def delete(self, changelog_id: str, user: User) -> None:
        """Delete a document with its sections and changes in one transaction."""
        async with self.db.session() as session:
            changelog = await self._get_visible(session, changelog_id, user)
            self._check_editable(changelog, user)

            section_ids = select(ChangelogSection.id).where(ChangelogSection.changelog_id == changelog.id)
            await session.execute(sql_delete(ChangelogChange).where(ChangelogChange.section_id.in_(section_ids)))
            await session.execute(sql_delete(ChangelogSection).where(ChangelogSection.changelog_id == changelog.id))
            await session.delete(changelog)
        logger.info(f"Deleted changelog {changelog_id}")

    async def publish(self, changelog_id: str, user: User) -> ChangelogResponse:
        async with self.db.session() as session:
            changelog = await self._get_visible(session, changelog_id, user)
            if changelog.status == ChangelogStatus.PUBLISHED.value:
                raise AlreadyPublishedError(f"Changelog {changelog_id} is already published")

            changelog.status = ChangelogStatus.PUBLISHED.value
            changelog.published_at = utcnow()
            changelog.published_by = user.id
            changelog.updated_at = utcnow()
            session.add(changelog)
            await session.flush()
            document = await load_document(session, changelog)
        logger.info(f"Changelog {changelog_id} published by {user.id}")
        return document

    async def unpublish(self, changelog_id: str, user: User) -> ChangelogResponse:
        if not _is_admin(user):
            raise PermissionDeniedError("Only admins can unpublish changelogs")

        async with self.db.session() as session:
            changelog = await session.get(Changelog, changelog_id)
            if changelog is None or changelog.status != ChangelogStatus.PUBLISHED.value:
                raise ChangelogNotFoundError(f"Published changelog {changelog_id} not found")

            changelog.status = ChangelogStatus.DRAFT.value
            changelog.published_at = None
            changelog.published_by = None
            changelog.updated_at = utcnow()
            session.add(changelog)
            await session.flush()
            document = await load_document(session, changelog)
        logger.info(f"Changelog {changelog_id} unpublished by {user.id}")
        return document
