"""SQLModel database tables.

Tables:
- User: GitHub authenticated users
- Repository: GitHub repositories synced for changelog generation
- Generation: AI changelog generations with status tracking
- Changelog: Publishable changelog documents
- ChangelogSection / ChangelogChange: Ordered document content
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, Index, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# User Model
# =============================================================================

class User(SQLModel, table=True):
    """GitHub authenticated user."""

    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    github_id: int | None = Field(default=None, unique=True, index=True, description="GitHub user ID")
    github_username: str | None = Field(default=None, index=True, description="GitHub username")
    email: str | None = Field(default=None, index=True)
    name: str = Field(default="")
    avatar_url: str | None = Field(default=None)
    role: str = Field(default="developer")  # Use UserRole enum values
    last_login_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Repository Model
# =============================================================================

class Repository(SQLModel, table=True):
    """A GitHub repository known to the service."""

    __tablename__ = "repositories"

    id: str = Field(default_factory=new_id, primary_key=True)
    github_id: int = Field(unique=True, index=True)
    name: str
    full_name: str = Field(index=True, description="owner/name")
    owner: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    url: str
    is_private: bool = Field(default=False)
    default_branch: str = Field(default="main")
    language: str | None = Field(default=None)
    star_count: int = Field(default=0)
    fork_count: int = Field(default=0)
    last_pushed_at: datetime | None = Field(default=None)
    last_sync_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Generation Model
# =============================================================================

class Generation(SQLModel, table=True):
    """One AI changelog generation.

    Only the background task that owns a generation mutates its row; every
    write replaces the whole row in a single transaction.
    """

    __tablename__ = "generations"
    __table_args__ = (
        Index("ix_generations_user_created", "user_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str | None = Field(default=None, foreign_key="users.id", index=True)

    # Request scope (immutable after creation)
    repository_ref: str = Field(index=True)
    branch: str
    date_start: datetime
    date_end: datetime
    options_json: str = Field(default="{}", sa_column=Column(Text))

    # Status
    status: str = Field(default="processing", index=True)  # Use GenerationStatus enum values
    progress: int = Field(default=0, description="0-100 progress indicator")
    failure_reason: str | None = Field(default=None, sa_column=Column(Text))

    # Results (stored as JSON strings)
    commit_analyses_json: str = Field(default="[]", sa_column=Column(Text))
    generated_content_json: str | None = Field(default=None, sa_column=Column(Text))
    ai_metadata_json: str | None = Field(default=None, sa_column=Column(Text))

    is_saved: bool = Field(default=False)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Changelog Models
# =============================================================================

class Changelog(SQLModel, table=True):
    """A publishable changelog document.

    ``ai_generation_id`` is a plain reference: the document is an owned copy
    and survives changes to (or deletion of) the generation it came from.
    """

    __tablename__ = "changelogs"
    __table_args__ = (
        Index("ix_changelogs_status_published", "status", "published_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    version: str
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    repository_ref: str = Field(index=True)
    branch: str
    date_start: datetime
    date_end: datetime
    status: str = Field(default="draft", index=True)  # Use ChangelogStatus enum values
    published_at: datetime | None = Field(default=None)
    published_by: str | None = Field(default=None, foreign_key="users.id")
    metadata_json: str = Field(default="{}", sa_column=Column(Text))
    tags_json: str = Field(default="[]", sa_column=Column(Text))
    ai_generation_id: str | None = Field(default=None, index=True)
    created_by: str | None = Field(default=None, foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChangelogSection(SQLModel, table=True):
    __tablename__ = "changelog_sections"

    id: str = Field(default_factory=new_id, primary_key=True)
    changelog_id: str = Field(foreign_key="changelogs.id", index=True)
    title: str
    order_index: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class ChangelogChange(SQLModel, table=True):
    __tablename__ = "changelog_changes"

    id: str = Field(default_factory=new_id, primary_key=True)
    section_id: str = Field(foreign_key="changelog_sections.id", index=True)
    order_index: int = Field(default=0)
    description: str = Field(sa_column=Column(Text, nullable=False))
    type: str  # Use ChangeType enum values
    impact: str  # Use Impact enum values
    tags_json: str = Field(default="[]", sa_column=Column(Text))
    commits_json: str = Field(default="[]", sa_column=Column(Text))
    pull_requests_json: str = Field(default="[]", sa_column=Column(Text))
    author: str | None = Field(default=None)
    affected_components_json: str = Field(default="[]", sa_column=Column(Text))
    migration_guide: str | None = Field(default=None, sa_column=Column(Text))
    code_examples_json: str = Field(default="{}", sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow)
