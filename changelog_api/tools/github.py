"""GitHub REST client.

Provides the source-control operations the service needs:
- get_authenticated_user: Resolve a bearer token to a GitHub user
- list_repositories: Repositories visible to a token
- get_repository / list_branches: Repository details
- list_commits: Commits on a branch within a date range
- get_commit: One commit with its diff statistics
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from changelog_api.config import Settings, get_settings
from changelog_api.errors import (
    AuthenticationError,
    InvalidRequestError,
    RateLimitError,
    SourceControlError,
    SourceNotFoundError,
)
from changelog_api.schemas import Branch, Commit, CommitDetail, CommitFile


logger = logging.getLogger(__name__)


def split_repository_ref(repository_ref: str) -> tuple[str, str]:
    """Split ``owner/name`` into its two parts."""
    parts = repository_ref.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRequestError(f"Invalid repository format: {repository_ref}")
    return parts[0], parts[1]


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def commit_from_payload(item: dict[str, Any]) -> Commit:
    """Convert one ``GET /repos/{owner}/{repo}/commits`` item to a Commit."""
    details = item.get("commit") or {}
    author = details.get("author") or {}
    login = (item.get("author") or {}).get("login")
    return Commit(
        sha=item["sha"],
        message=details.get("message") or "",
        author_name=author.get("name"),
        author_login=login,
        date=_parse_timestamp(author.get("date")),
        url=item.get("html_url"),
    )


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    One client is shared by the whole application; the caller's token is
    passed per call.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.per_page = settings.github_per_page
        self.max_commit_pages = settings.github_max_commit_pages
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.github_api_url,
            headers={
                "Accept": "application/vnd.github+json",
                "User-Agent": settings.github_user_agent,
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout or settings.github_timeout_seconds,
            transport=transport,
        )

    async def _request(
        self,
        path: str,
        token: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"GitHub request {path} failed: {e}")
            raise SourceControlError(f"GitHub request failed: {e}", retryable=True) from e

        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired GitHub token")
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            raise RateLimitError(
                f"GitHub rate limit exhausted (reset at {response.headers.get('X-RateLimit-Reset')})",
                retryable=True,
            )
        if response.status_code == 404:
            raise SourceNotFoundError(f"GitHub resource not found: {path}")
        if response.status_code >= 400:
            logger.warning(f"GitHub returned {response.status_code} for {path}: {response.text[:200]}")
            raise SourceControlError(
                f"GitHub returned {response.status_code} for {path}",
                retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceControlError(f"GitHub returned invalid JSON for {path}") from e

    # =========================================================================
    # Users and repositories
    # =========================================================================

    async def get_authenticated_user(self, token: str) -> dict[str, Any]:
        """Return the ``GET /user`` payload for a token."""
        return await self._request("/user", token=token)

    async def list_repositories(self, token: str) -> list[dict[str, Any]]:
        return await self._request(
            "/user/repos",
            token=token,
            params={"visibility": "all", "sort": "updated", "per_page": self.per_page},
        )

    async def get_repository(self, owner: str, repo: str, token: str | None = None) -> dict[str, Any]:
        return await self._request(f"/repos/{owner}/{repo}", token=token)

    async def list_branches(self, owner: str, repo: str, token: str | None = None) -> list[Branch]:
        """List branches, marking the repository's default branch."""
        data = await self._request(
            f"/repos/{owner}/{repo}/branches",
            token=token,
            params={"per_page": self.per_page},
        )
        details = await self.get_repository(owner, repo, token=token)
        default_branch = details.get("default_branch")
        return [
            Branch(
                name=item["name"],
                sha=(item.get("commit") or {}).get("sha", ""),
                is_default=item["name"] == default_branch,
                is_protected=bool(item.get("protected", False)),
            )
            for item in data
        ]

    # =========================================================================
    # Commits
    # =========================================================================

    async def list_commits(
        self,
        repository_ref: str,
        branch: str,
        since: datetime,
        until: datetime,
        token: str | None = None,
    ) -> list[Commit]:
        """Fetch commits on ``branch`` between ``since`` and ``until``.

        Follows pagination until a short page or the configured page cap.
        """
        owner, repo = split_repository_ref(repository_ref)
        commits: list[Commit] = []

        for page in range(1, self.max_commit_pages + 1):
            data = await self._request(
                f"/repos/{owner}/{repo}/commits",
                token=token,
                params={
                    "sha": branch,
                    "since": _iso(since),
                    "until": _iso(until),
                    "per_page": self.per_page,
                    "page": page,
                },
            )
            if not isinstance(data, list):
                raise SourceControlError(f"Unexpected commits payload for {repository_ref}")
            commits.extend(commit_from_payload(item) for item in data)
            if len(data) < self.per_page:
                break
        else:
            logger.info(f"Stopped fetching {repository_ref} commits after {self.max_commit_pages} pages")

        logger.info(f"Fetched {len(commits)} commits from {repository_ref}@{branch}")
        return commits

    async def get_commit(self, repository_ref: str, sha: str, token: str | None = None) -> CommitDetail:
        owner, repo = split_repository_ref(repository_ref)
        data = await self._request(f"/repos/{owner}/{repo}/commits/{sha}", token=token)
        if not isinstance(data, dict) or "sha" not in data:
            raise SourceControlError(f"Unexpected commit payload for {repository_ref}@{sha}")

        stats = data.get("stats") or {}
        return CommitDetail(
            **commit_from_payload(data).model_dump(),
            additions=stats.get("additions", 0),
            deletions=stats.get("deletions", 0),
            files=[
                CommitFile(
                    filename=item["filename"],
                    status=item.get("status", "modified"),
                    additions=item.get("additions", 0),
                    deletions=item.get("deletions", 0),
                )
                for item in data.get("files") or []
            ],
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
