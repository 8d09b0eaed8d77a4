"""Service wiring and FastAPI dependencies.

The ``ServiceContainer`` is built once per application and stored on
``app.state``; route handlers reach it through ``get_services``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from changelog_api.agent.analysis import ChangelogAI
from changelog_api.agent.workflow import GenerationOrchestrator
from changelog_api.config import Settings
from changelog_api.database.models import User
from changelog_api.database.session import Database
from changelog_api.errors import (
    AlreadyPublishedError,
    AuthenticationError,
    ChangelogError,
    DeadlineExceededError,
    GenerationNotReadyError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamError,
    VersionExistsError,
)
from changelog_api.llm.base import LLMAdapter
from changelog_api.llm.openai import OpenAIAdapter
from changelog_api.services.assembly import ChangelogAssembler
from changelog_api.services.changelogs import ChangelogStore
from changelog_api.services.generations import GenerationStore
from changelog_api.services.repositories import RepositoryStore
from changelog_api.services.users import UserStore
from changelog_api.tools.github import GitHubClient


logger = logging.getLogger(__name__)


# =============================================================================
# Service container
# =============================================================================

@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    github: GitHubClient
    llm_adapter: LLMAdapter | None
    ai: ChangelogAI
    users: UserStore
    repositories: RepositoryStore
    generations: GenerationStore
    changelogs: ChangelogStore
    assembler: ChangelogAssembler
    orchestrator: GenerationOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Database | None = None,
        github: GitHubClient | None = None,
        llm_adapter: LLMAdapter | None = None,
    ) -> "ServiceContainer":
        """Wire every service; collaborators not given are built from settings."""
        database = database or Database.from_settings(settings)
        github = github or GitHubClient(settings=settings)
        if llm_adapter is None and settings.ai_enabled:
            llm_adapter = OpenAIAdapter(settings=settings)
        if llm_adapter is None:
            logger.warning("No LLM API key configured; AI features are disabled")

        ai = ChangelogAI(llm_adapter, settings=settings)
        repositories = RepositoryStore(database)
        generations = GenerationStore(database)
        changelogs = ChangelogStore(database)

        return cls(
            settings=settings,
            database=database,
            github=github,
            llm_adapter=llm_adapter,
            ai=ai,
            users=UserStore(database),
            repositories=repositories,
            generations=generations,
            changelogs=changelogs,
            assembler=ChangelogAssembler(database, generations, changelogs),
            orchestrator=GenerationOrchestrator(
                store=generations,
                repositories=repositories,
                source_control=github,
                ai=ai,
                timeout_seconds=settings.generation_timeout_seconds,
            ),
        )

    async def close(self) -> None:
        await self.orchestrator.drain()
        await self.github.close()
        if self.llm_adapter is not None:
            await self.llm_adapter.close()
        await self.database.close()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


# =============================================================================
# Error translation
# =============================================================================

def http_error(error: ChangelogError) -> HTTPException:
    """Map a service error to an ``HTTPException`` with a stable error code."""
    if isinstance(error, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InvalidRequestError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, (GenerationNotReadyError, AlreadyPublishedError, VersionExistsError)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, PermissionDeniedError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, AuthenticationError):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(error, DeadlineExceededError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(error, UpstreamError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
        # Upstream text stays in the logs
        return HTTPException(
            status_code=status_code,
            detail={"code": error.code, "message": "Upstream service error"},
        )
    return HTTPException(status_code=status_code, detail={"code": error.code, "message": error.message})


# =============================================================================
# Authentication
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """The authenticated user plus the GitHub token they presented."""

    user: User
    token: str

    @property
    def id(self) -> str:
        return self.user.id


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: ServiceContainer = Depends(get_services),
) -> CurrentUser:
    """Resolve ``Authorization: Bearer <GitHub token>`` to a user."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_001", "message": "Authorization header required"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        github_user = await services.github.get_authenticated_user(credentials.credentials)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_002", "message": "Invalid or expired token"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ChangelogError as e:
        raise http_error(e)

    user = await services.users.find_or_create_from_github(github_user)
    return CurrentUser(user=user, token=credentials.credentials)
