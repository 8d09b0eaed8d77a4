"""User store: GitHub-authenticated users."""

from __future__ import annotations

import logging
from typing import Any

from sqlmodel import select

from changelog_api.database.models import User, utcnow
from changelog_api.database.session import Database
from changelog_api.errors import NotFoundError
from changelog_api.schemas import UserRole


logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, database: Database):
        self.db = database

    async def find_or_create_from_github(self, github_user: dict[str, Any]) -> User:
        """Find the user for a ``GET /user`` payload, creating it on first login."""
        async with self.db.session() as session:
            result = await session.execute(select(User).where(User.github_id == github_user["id"]))
            user = result.scalars().first()
            if user is None:
                user = User(github_id=github_user["id"], role=UserRole.DEVELOPER.value)
                logger.info(f"Creating user for GitHub account {github_user.get('login')}")

            user.github_username = github_user.get("login")
            user.email = github_user.get("email") or user.email
            user.name = github_user.get("name") or github_user.get("login") or ""
            user.avatar_url = github_user.get("avatar_url")
            user.last_login_at = utcnow()
            user.updated_at = utcnow()
            session.add(user)
            return user

    async def set_role(self, user_ref: str, role: UserRole) -> User:
        """Assign ``role`` to a user given by id or GitHub username."""
        async with self.db.session() as session:
            user = await session.get(User, user_ref)
            if user is None:
                result = await session.execute(select(User).where(User.github_username == user_ref))
                user = result.scalars().first()
            if user is None:
                raise NotFoundError(f"User {user_ref} not found")
            user.role = role.value
            user.updated_at = utcnow()
            session.add(user)
        logger.info(f"User {user.github_username or user.id} is now {role.value}")
        return user
