"""Changelog document routes.

Authenticated:
- GET    /changelogs                 - Changelogs visible to the caller
- POST   /changelogs                 - Create a hand-written draft (201)
- GET    /changelogs/{id}            - Changelog details
- GET    /changelogs/{id}/markdown   - Changelog rendered as markdown
- PUT    /changelogs/{id}            - Update metadata
- DELETE /changelogs/{id}            - Delete with sections and changes
- POST   /changelogs/{id}/publish    - Publish
- POST   /changelogs/{id}/unpublish  - Unpublish (admin only)

Public (no auth, published only):
- GET    /public/changelogs
- GET    /public/changelogs/{id}
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse

from changelog_api.api.deps import CurrentUser, ServiceContainer, get_current_user, get_services, http_error
from changelog_api.errors import ChangelogError
from changelog_api.schemas import (
    ChangelogCreateRequest,
    ChangelogListResponse,
    ChangelogResponse,
    ChangelogStatus,
    ChangelogUpdateRequest,
)


router = APIRouter(prefix="/changelogs", tags=["changelogs"])
public_router = APIRouter(prefix="/public", tags=["public"])


# =============================================================================
# Authenticated Endpoints
# =============================================================================

@router.get("", response_model=ChangelogListResponse)
async def list_changelogs(
    status_filter: ChangelogStatus | None = Query(default=None, alias="status"),
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogListResponse:
    changelogs = await services.changelogs.list(current.user, status=status_filter)
    return ChangelogListResponse(changelogs=changelogs, total=len(changelogs))


@router.post("", response_model=ChangelogResponse, status_code=status.HTTP_201_CREATED)
async def create_changelog(
    request: ChangelogCreateRequest,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    """Create a draft from hand-written sections and changes."""
    try:
        repository = await services.repositories.require(request.repository_ref)
        return await services.changelogs.create(request, repository.full_name, current.user)
    except ChangelogError as e:
        raise http_error(e)


@router.get("/{changelog_id}", response_model=ChangelogResponse)
async def get_changelog(
    changelog_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    try:
        return await services.changelogs.get(changelog_id, user=current.user)
    except ChangelogError as e:
        raise http_error(e)


@router.get("/{changelog_id}/markdown", response_class=PlainTextResponse)
async def get_changelog_markdown(
    changelog_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> str:
    try:
        changelog = await services.changelogs.get(changelog_id, user=current.user)
    except ChangelogError as e:
        raise http_error(e)
    return changelog.to_markdown()


@router.put("/{changelog_id}", response_model=ChangelogResponse)
async def update_changelog(
    changelog_id: str,
    request: ChangelogUpdateRequest,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    try:
        return await services.changelogs.update(changelog_id, current.user, request)
    except ChangelogError as e:
        raise http_error(e)


@router.delete("/{changelog_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_changelog(
    changelog_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> None:
    try:
        await services.changelogs.delete(changelog_id, current.user)
    except ChangelogError as e:
        raise http_error(e)


@router.post("/{changelog_id}/publish", response_model=ChangelogResponse)
async def publish_changelog(
    changelog_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    try:
        return await services.changelogs.publish(changelog_id, current.user)
    except ChangelogError as e:
        raise http_error(e)


@router.post("/{changelog_id}/unpublish", response_model=ChangelogResponse)
async def unpublish_changelog(
    changelog_id: str,
    current: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    try:
        return await services.changelogs.unpublish(changelog_id, current.user)
    except ChangelogError as e:
        raise http_error(e)


# =============================================================================
# Public Endpoints
# =============================================================================

@public_router.get("/changelogs", response_model=ChangelogListResponse)
async def list_public_changelogs(
    repository: str | None = Query(default=None, description="owner/name"),
    services: ServiceContainer = Depends(get_services),
) -> ChangelogListResponse:
    changelogs = await services.changelogs.list_published(repository_ref=repository)
    return ChangelogListResponse(changelogs=changelogs, total=len(changelogs))


@public_router.get("/changelogs/{changelog_id}", response_model=ChangelogResponse)
async def get_public_changelog(
    changelog_id: str,
    services: ServiceContainer = Depends(get_services),
) -> ChangelogResponse:
    try:
        return await services.changelogs.get_published(changelog_id)
    except ChangelogError as e:
        raise http_error(e)
