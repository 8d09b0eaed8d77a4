"""Repository store: GitHub repositories known to the service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func
from sqlmodel import select

from changelog_api.database.models import Repository, utcnow
from changelog_api.database.session import Database
from changelog_api.errors import ChangelogError, RepositoryNotFoundError
from changelog_api.tools.github import GitHubClient


logger = logging.getLogger(__name__)


def _timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc).replace(tzinfo=None)


class RepositoryStore:
    def __init__(self, database: Database):
        self.db = database

    async def get(self, repository_id: str) -> Repository | None:
        async with self.db.session() as session:
            return await session.get(Repository, repository_id)

    async def get_by_ref(self, repository_ref: str) -> Repository | None:
        """Look up a repository by id or by ``owner/name``."""
        async with self.db.session() as session:
            if "/" in repository_ref:
                result = await session.execute(
                    select(Repository).where(func.lower(Repository.full_name) == repository_ref.lower())
                )
                return result.scalars().first()
            return await session.get(Repository, repository_ref)

    async def require(self, repository_ref: str) -> Repository:
        repository = await self.get_by_ref(repository_ref)
        if repository is None:
            raise RepositoryNotFoundError(f"Repository {repository_ref} not found")
        return repository

    async def list(self) -> list[Repository]:
        async with self.db.session() as session:
            result = await session.execute(select(Repository).order_by(Repository.full_name))
            return list(result.scalars().all())

    async def upsert_from_github(self, payload: dict[str, Any]) -> Repository:
        """Insert or refresh a repository from a GitHub API payload."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Repository).where(Repository.github_id == payload["id"])
            )
            repository = result.scalars().first()
            if repository is None:
                repository = Repository(
                    github_id=payload["id"],
                    name=payload["name"],
                    full_name=payload["full_name"],
                    owner=(payload.get("owner") or {}).get("login") or payload["full_name"].split("/")[0],
                    url=payload.get("html_url") or "",
                )

            repository.name = payload["name"]
            repository.full_name = payload["full_name"]
            repository.description = payload.get("description")
            repository.url = payload.get("html_url") or repository.url
            repository.is_private = bool(payload.get("private", False))
            repository.default_branch = payload.get("default_branch") or "main"
            repository.language = payload.get("language")
            repository.star_count = payload.get("stargazers_count") or 0
            repository.fork_count = payload.get("forks_count") or 0
            repository.last_pushed_at = _timestamp(payload.get("pushed_at"))
            repository.last_sync_at = utcnow()
            repository.updated_at = utcnow()
            session.add(repository)
            return repository

    async def sync(self, github: GitHubClient, token: str) -> tuple[int, int]:
        """Sync every repository visible to ``token``.

        Returns ``(synced, failed)``. A failure to list repositories
        propagates; a failure on one repository is counted and skipped.
        """
        synced = 0
        failed = 0
        for payload in await github.list_repositories(token):
            try:
                await self.upsert_from_github(payload)
                synced += 1
            except (KeyError, TypeError, ValueError, ChangelogError) as e:
                logger.error(f"Failed to sync repository {payload.get('full_name')}: {e}")
                failed += 1

        logger.info(f"Repository sync finished: {synced} synced, {failed} failed")
        return synced, failed

    async def delete(self, repository_id: str) -> None:
        async with self.db.session() as session:
            repository = await session.get(Repository, repository_id)
            if repository is None:
                raise RepositoryNotFoundError(f"Repository {repository_id} not found")
            await session.delete(repository)
