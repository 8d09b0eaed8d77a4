"""FastAPI routes for the changelog service.

Endpoints:
- GET    /health                       - Health check
- GET    /auth/me                      - Current user info

Repositories:
- GET    /repositories                 - List synced repositories
- POST   /repositories/sync            - Sync repositories from GitHub
- GET    /repositories/{id}            - Repository details
- DELETE /repositories/{id}            - Forget a repository
- GET    /repositories/{id}/branches   - Branches on GitHub
- GET    /repositories/{id}/commits    - Commit history in a date range
- GET    /repositories/{id}/commits/{sha} - One commit with diff statistics

Generations:
- POST   /generations                  - Start a changelog generation (202)
- GET    /generations                  - Saved generations
- GET    /generations/{id}             - Poll generation status
- POST   /generations/{id}/save        - Save a generation
- DELETE /generations/{id}             - Delete a generation
- POST   /generations/{id}/publish     - Create a changelog document (201)

AI helpers:
- POST   /ai/enhance-description       - Rewrite a changelog entry
- POST   /ai/suggest-tags              - Suggest tags for an entry
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from changelog_api.api.deps import CurrentUser, ServiceContainer, get_current_user, get_services, http_error
from changelog_api.database.models import Repository, utcnow
from changelog_api.errors import ChangelogError, CommitNotFoundError, RepositoryNotFoundError, SourceNotFoundError
from changelog_api.schemas import (
    Branch,
    ChangelogResponse,
    Commit,
    CommitDetail,
    CreateFromGenerationRequest,
    EnhanceDescriptionRequest,
    EnhancedDescription,
    GenerationListResponse,
    GenerationRequest,
    GenerationResponse,
    RepositoryResponse,
    SuggestTagsResponse,
    SyncResponse,
    UserResponse,
    to_naive_utc,
)
from changelog_api.tools.github import split_repository_ref


logger = logging.getLogger(__name__)
router = APIRouter()


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health(services: ServiceContainer = Depends(get_services)) -> dict:
    """Health check endpoint."""
    settings = services.settings
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
        "features": {
            "ai": services.ai.enabled,
            "github_oauth": settings.github_oauth_enabled,
        },
    }


# =============================================================================
# Auth Endpoints
# =============================================================================

@router.get("/auth/me", response_model=UserResponse)
async def me(current: CurrentUser = Depends(get_current_user)) -> UserResponse:
    """Current user info."""
    return UserResponse.model_validate(current.user, from_attributes=True)


# =============================================================================
# Repository Endpoints
# =============================================================================

def _repository_response(repository) -> RepositoryResponse:
    return RepositoryResponse.model_validate(repository, from_attributes=True)


@router.get("/repositories", response_model=list[RepositoryResponse])
async def list_repositories(
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> list[RepositoryResponse]:
    return [_repository_response(r) for r in await services.repositories.list()]


@router.post("/repositories/sync", response_model=SyncResponse)
async def sync_repositories(
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> SyncResponse:
    """Pull the caller's repositories from GitHub into the store."""
    try:
        synced, failed = await services.repositories.sync(services.github, current.token)
    except ChangelogError as e:
        raise http_error(e)
    return SyncResponse(synced=synced, failed=failed)


async def _require_repository(services: ServiceContainer, repository_id: str) -> Repository:
    repository = await services.repositories.get(repository_id)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": RepositoryNotFoundError.code, "message": f"Repository {repository_id} not found"},
        )
    return repository


@router.get("/repositories/{repository_id}", response_model=RepositoryResponse)
async def get_repository(
    repository_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> RepositoryResponse:
    return _repository_response(await _require_repository(services, repository_id))


@router.delete("/repositories/{repository_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_repository(
    repository_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> None:
    try:
        await services.repositories.delete(repository_id)
    except RepositoryNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": e.code, "message": e.message},
        )


@router.get("/repositories/{repository_id}/branches", response_model=list[Branch])
async def list_branches(
    repository_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> list[Branch]:
    repository = await _require_repository(services, repository_id)
    try:
        owner, name = split_repository_ref(repository.full_name)
        return await services.github.list_branches(owner, name, token=current.token)
    except ChangelogError as e:
        raise http_error(e)


@router.get("/repositories/{repository_id}/commits", response_model=list[Commit])
async def list_commits(
    repository_id: str,
    branch: str | None = Query(default=None, description="Defaults to the repository's default branch"),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> list[Commit]:
    """Commit history; the range defaults to the 30 days before ``until``."""
    repository = await _require_repository(services, repository_id)
    until = to_naive_utc(until) if until else utcnow()
    since = to_naive_utc(since) if since else until - timedelta(days=30)
    if since > until:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_REQUEST", "message": "since must not be after until"},
        )
    try:
        return await services.github.list_commits(
            repository.full_name,
            branch or repository.default_branch,
            since,
            until,
            token=current.token,
        )
    except ChangelogError as e:
        raise http_error(e)


@router.get("/repositories/{repository_id}/commits/{sha}", response_model=CommitDetail)
async def get_commit(
    repository_id: str,
    sha: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> CommitDetail:
    repository = await _require_repository(services, repository_id)
    try:
        return await services.github.get_commit(repository.full_name, sha, token=current.token)
    except SourceNotFoundError:
        raise http_error(CommitNotFoundError(f"Commit {sha} not found in {repository.full_name}"))
    except ChangelogError as e:
        raise http_error(e)


# =============================================================================
# Generation Endpoints
# =============================================================================

@router.post(
    "/generations",
    response_model=GenerationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_generation(
    request: GenerationRequest,
    background_tasks: BackgroundTasks,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> GenerationResponse:
    """Start a changelog generation.

    The generation is processed asynchronously.
    Use GET /generations/{id} to poll for status updates.
    """
    try:
        record = await services.orchestrator.start_generation(
            current.id,
            request,
            access_token=current.token,
            schedule=background_tasks.add_task,
        )
    except ChangelogError as e:
        raise http_error(e)

    logger.info(f"[{record.id}] Queued generation for {record.repository_ref}")
    return GenerationResponse.from_record(record)


@router.get("/generations", response_model=GenerationListResponse)
async def list_saved_generations(
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> GenerationListResponse:
    records = await services.generations.list_saved(current.id)
    return GenerationListResponse(
        generations=[GenerationResponse.from_record(r) for r in records],
        total=len(records),
    )


async def _owned_generation(generation_id: str, current: CurrentUser, services: ServiceContainer):
    record = await services.orchestrator.get_generation(generation_id, user_id=current.id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "GENERATION_NOT_FOUND", "message": f"Generation {generation_id} not found"},
        )
    return record


@router.get("/generations/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> GenerationResponse:
    """Current generation snapshot."""
    record = await _owned_generation(generation_id, current, services)
    return GenerationResponse.from_record(record)


@router.post("/generations/{generation_id}/save", response_model=GenerationResponse)
async def save_generation(
    generation_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> GenerationResponse:
    try:
        record = await services.generations.save(generation_id, current.id)
    except ChangelogError as e:
        raise http_error(e)
    return GenerationResponse.from_record(record)


@router.delete("/generations/{generation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation(
    generation_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> None:
    try:
        await services.generations.delete(generation_id, current.id)
    except ChangelogError as e:
        raise http_error(e)


@router.post(
    "/generations/{generation_id}/publish",
    response_model=ChangelogResponse,
    status_code=status.HTTP_201_CREATED,
)
async def publish_generation(
    generation_id: str,
    body: CreateFromGenerationRequest | None = None,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    """Create a draft changelog document from a completed generation."""
    await _owned_generation(generation_id, current, services)
    try:
        return await services.assembler.create_from_generation(
            generation_id,
            current.id,
            customizations=body.customizations if body else None,
        )
    except ChangelogError as e:
        raise http_error(e)


# =============================================================================
# AI Helper Endpoints
# =============================================================================

def _require_ai(services: ServiceContainer) -> None:
    if not services.ai.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AI_UNAVAILABLE", "message": "AI integration not configured"},
        )


@router.post("/ai/enhance-description", response_model=EnhancedDescription)
async def enhance_description(
    request: EnhanceDescriptionRequest,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> EnhancedDescription:
    _require_ai(services)
    try:
        return await services.ai.enhance_description(request.description)
    except ChangelogError as e:
        raise http_error(e)


@router.post("/ai/suggest-tags", response_model=SuggestTagsResponse)
async def suggest_tags(
    request: EnhanceDescriptionRequest,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> SuggestTagsResponse:
    _require_ai(services)
    try:
        tags = await services.ai.suggest_tags(request.description)
    except ChangelogError as e:
        raise http_error(e)
    return SuggestTagsResponse(tags=tags)
