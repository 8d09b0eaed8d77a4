"""Pydantic schemas for all service I/O contracts.

These schemas define the strict contracts between:
- API endpoints and clients
- LLM model inputs/outputs
- The generation pipeline and its persisted records
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================

class GenerationStatus(str, Enum):
    """Status of a changelog generation."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CommitType(str, Enum):
    """Category assigned to a single commit by the analysis step."""
    FEATURE = "feature"
    BUGFIX = "bugfix"
    BREAKING = "breaking"
    DOCS = "docs"
    REFACTOR = "refactor"
    TEST = "test"
    CHORE = "chore"


class ChangeType(str, Enum):
    """Category of a change inside a changelog section."""
    FEATURE = "feature"
    BUGFIX = "bugfix"
    BREAKING = "breaking"
    ENHANCEMENT = "enhancement"
    DEPRECATION = "deprecation"
    SECURITY = "security"


class Impact(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class ChangelogStatus(str, Enum):
    """Publication status of a changelog document."""
    DRAFT = "draft"
    REVIEW = "review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class GroupBy(str, Enum):
    TYPE = "type"
    AUTHOR = "author"
    COMPONENT = "component"
    CHRONOLOGICAL = "chronological"


class TargetAudience(str, Enum):
    DEVELOPERS = "developers"
    END_USERS = "end-users"
    TECHNICAL = "technical"
    GENERAL = "general"


class UserRole(str, Enum):
    ADMIN = "admin"
    DEVELOPER = "developer"
    VIEWER = "viewer"


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC, the form stored in the database."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Source control
# =============================================================================

class Commit(BaseModel):
    """A commit as returned by the source-control client."""
    sha: str
    message: str = ""
    author_name: str | None = None
    author_login: str | None = None
    date: datetime | None = None
    url: str | None = None

    @property
    def subject(self) -> str:
        """First line of the commit message."""
        return self.message.splitlines()[0].strip() if self.message else ""

    @property
    def author(self) -> str | None:
        return self.author_login or self.author_name


class CommitFile(BaseModel):
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0


class CommitDetail(Commit):
    """A single commit with its diff statistics."""
    additions: int = 0
    deletions: int = 0
    files: list[CommitFile] = Field(default_factory=list)


class Branch(BaseModel):
    name: str
    sha: str
    is_default: bool = False
    is_protected: bool = False


# =============================================================================
# Generation request
# =============================================================================

class GenerationOptions(BaseModel):
    """Knobs for the synthesis step. Every field has a default."""
    group_by: GroupBy = GroupBy.TYPE
    include_breaking_changes: bool = True
    include_bug_fixes: bool = True
    include_features: bool = True
    include_documentation: bool = False
    exclude_patterns: list[str] = Field(default_factory=list)
    custom_prompt: str | None = None
    target_audience: TargetAudience = TargetAudience.END_USERS


class GenerationRequest(BaseModel):
    """Input to start a changelog generation."""
    repository_ref: str = Field(..., min_length=1, description="Repository id or owner/name")
    branch: str = Field(..., min_length=1)
    start_date: datetime
    end_date: datetime
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    model_config = {
        "json_schema_extra": {
            "example": {
                "repository_ref": "acme/widgets",
                "branch": "main",
                "start_date": "2025-01-01T00:00:00Z",
                "end_date": "2025-01-07T23:59:59Z",
                "options": {"target_audience": "end-users"},
            }
        }
    }

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "GenerationRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


# =============================================================================
# Commit analysis
# =============================================================================

class CommitAnalysis(BaseModel):
    """Per-commit categorization produced by the analysis step."""
    sha: str
    type: CommitType = CommitType.CHORE
    scope: str | None = None
    description: str = ""
    impact: Impact = Impact.PATCH
    breaking_change: bool = False
    affected_components: list[str] = Field(default_factory=list)
    user_facing: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


# =============================================================================
# Generated changelog
# =============================================================================

class GeneratedChange(BaseModel):
    id: str | None = None
    description: str
    type: ChangeType = ChangeType.ENHANCEMENT
    impact: Impact | None = None
    tags: list[str] = Field(default_factory=list)
    commits: list[str] = Field(default_factory=list)
    pull_requests: list[int] = Field(default_factory=list)
    author: str | None = None
    affected_components: list[str] = Field(default_factory=list)
    migration_guide: str | None = None
    code_examples: dict[str, str] = Field(default_factory=dict)


class GeneratedSection(BaseModel):
    id: str | None = None
    title: str
    order: int = 0
    changes: list[GeneratedChange] = Field(default_factory=list)


class ChangelogMetadata(BaseModel):
    """Aggregate statistics. Counts are recomputed from the commit analyses."""
    total_commits: int = 0
    contributors: int = 0
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    generation_method: Literal["ai", "manual", "hybrid"] = "ai"
    breaking_changes: int = 0
    new_features: int = 0
    bug_fixes: int = 0
    confidence: float = 0.0


class GeneratedChangelog(BaseModel):
    """Structured changelog produced by the synthesis step."""
    version: str
    title: str
    summary: str = ""
    sections: list[GeneratedSection] = Field(default_factory=list)
    metadata: ChangelogMetadata = Field(default_factory=ChangelogMetadata)
    migration_guide: str | None = None
    acknowledgments: list[str] = Field(default_factory=list)

    @property
    def change_count(self) -> int:
        return sum(len(section.changes) for section in self.sections)

    def to_markdown(self) -> str:
        """Render the generated changelog as markdown."""
        md = f"# {self.title} ({self.version})\n\n"
        if self.summary:
            md += f"{self.summary}\n\n"
        for section in sorted(self.sections, key=lambda s: s.order):
            md += f"## {section.title}\n"
            for change in section.changes:
                md += f"- {change.description}"
                if change.commits:
                    md += f" ({', '.join(c[:7] for c in change.commits)})"
                md += "\n"
            md += "\n"
        if self.migration_guide:
            md += f"{self.migration_guide}\n\n"
        if self.acknowledgments:
            md += "## Acknowledgments\n"
            md += ", ".join(self.acknowledgments) + "\n"
        return md


class AIMetadata(BaseModel):
    """Model usage and reconciled statistics for a completed generation."""
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    processing_time_ms: int = 0
    confidence: float = 0.0
    total_commits: int = 0
    breaking_changes: int = 0
    new_features: int = 0
    bug_fixes: int = 0


# =============================================================================
# Generation state (closed tagged variant)
# =============================================================================

class Processing(BaseModel):
    status: Literal["processing"] = "processing"
    progress: int = Field(default=0, ge=0, le=100)


class Completed(BaseModel):
    status: Literal["completed"] = "completed"
    progress: Literal[100] = 100
    content: GeneratedChangelog
    ai_metadata: AIMetadata


class Failed(BaseModel):
    status: Literal["failed"] = "failed"
    progress: int = Field(default=0, ge=0, le=100)
    reason: str | None = None


GenerationState = Annotated[Union[Processing, Completed, Failed], Field(discriminator="status")]


class GenerationRecord(BaseModel):
    """A single changelog generation and its current state."""
    id: str
    user_id: str | None = None
    repository_ref: str
    branch: str
    date_start: datetime
    date_end: datetime
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    state: GenerationState = Field(default_factory=Processing)
    commit_analyses: list[CommitAnalysis] = Field(default_factory=list)
    is_saved: bool = False
    created_at: datetime
    updated_at: datetime

    @property
    def status(self) -> GenerationStatus:
        return GenerationStatus(self.state.status)

    @property
    def progress(self) -> int:
        return self.state.progress

    @property
    def is_terminal(self) -> bool:
        return self.status != GenerationStatus.PROCESSING

    @property
    def generated_content(self) -> GeneratedChangelog | None:
        if isinstance(self.state, Completed):
            return self.state.content
        return None

    @property
    def ai_metadata(self) -> AIMetadata | None:
        if isinstance(self.state, Completed):
            return self.state.ai_metadata
        return None


# =============================================================================
# API Request/Response Schemas: generations
# =============================================================================

class DateRange(BaseModel):
    start: datetime
    end: datetime


class GenerationResponse(BaseModel):
    """API response for a generation snapshot.

    Failure reasons stay internal; a poller only sees ``status=failed``.
    """
    id: str
    repository_ref: str
    branch: str
    date_range: DateRange
    status: GenerationStatus
    progress: int = Field(ge=0, le=100)
    commit_analyses: list[CommitAnalysis] = Field(default_factory=list)
    generated_content: GeneratedChangelog | None = None
    ai_metadata: AIMetadata | None = None
    is_saved: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: GenerationRecord) -> "GenerationResponse":
        return cls(
            id=record.id,
            repository_ref=record.repository_ref,
            branch=record.branch,
            date_range=DateRange(start=record.date_start, end=record.date_end),
            status=record.status,
            progress=record.progress,
            commit_analyses=record.commit_analyses,
            generated_content=record.generated_content,
            ai_metadata=record.ai_metadata,
            is_saved=record.is_saved,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class GenerationListResponse(BaseModel):
    generations: list[GenerationResponse]
    total: int


class ChangelogCustomizations(BaseModel):
    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None


class CreateFromGenerationRequest(BaseModel):
    customizations: ChangelogCustomizations | None = None


# =============================================================================
# API Request/Response Schemas: changelog documents
# =============================================================================

class ChangeResponse(BaseModel):
    id: str
    description: str
    type: ChangeType
    impact: Impact
    tags: list[str] = Field(default_factory=list)
    commits: list[str] = Field(default_factory=list)
    pull_requests: list[int] = Field(default_factory=list)
    author: str | None = None
    affected_components: list[str] = Field(default_factory=list)
    migration_guide: str | None = None
    code_examples: dict[str, str] = Field(default_factory=dict)


class SectionResponse(BaseModel):
    id: str
    title: str
    order: int
    changes: list[ChangeResponse] = Field(default_factory=list)


class DocumentMetadata(BaseModel):
    total_commits: int = 0
    contributors: int = 0
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    generation_method: Literal["ai", "manual", "hybrid"] = "ai"
    ai_generation_id: str | None = None


class ChangelogResponse(BaseModel):
    """A persisted, publishable changelog document."""
    id: str
    version: str
    title: str
    description: str | None = None
    repository_ref: str
    branch: str
    date_range: DateRange
    status: ChangelogStatus
    sections: list[SectionResponse] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_by: str | None = None
    published_at: datetime | None = None
    published_by: str | None = None
    created_at: datetime
    updated_at: datetime

    def to_markdown(self) -> str:
        """Render changelog document as markdown."""
        md = f"# {self.title}\n\n"
        md += f"**Version:** {self.version}  \n"
        md += f"**Branch:** {self.branch}  \n"
        md += f"**Period:** {self.date_range.start:%Y-%m-%d} to {self.date_range.end:%Y-%m-%d}\n\n"
        if self.description:
            md += f"{self.description}\n\n"
        for section in self.sections:
            md += f"## {section.title}\n"
            for change in section.changes:
                marker = " **BREAKING**" if change.type == ChangeType.BREAKING else ""
                md += f"- {change.description}{marker}\n"
                if change.migration_guide:
                    md += f"  - Migration: {change.migration_guide}\n"
            md += "\n"
        if self.tags:
            md += "Tags: " + ", ".join(f"`{t}`" for t in self.tags) + "\n"
        return md


class ChangelogUpdateRequest(BaseModel):
    version: str | None = Field(default=None, min_length=1, max_length=255)
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    branch: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    status: ChangelogStatus | None = None

    @field_validator("status")
    @classmethod
    def _not_published(cls, value: ChangelogStatus | None) -> ChangelogStatus | None:
        if value == ChangelogStatus.PUBLISHED:
            raise ValueError("use the publish endpoint to publish a changelog")
        return value


class ChangeInput(BaseModel):
    description: str = Field(..., min_length=1)
    type: ChangeType = ChangeType.ENHANCEMENT
    impact: Impact | None = None
    tags: list[str] = Field(default_factory=list)
    commits: list[str] = Field(default_factory=list)
    pull_requests: list[int] = Field(default_factory=list)
    author: str | None = None
    affected_components: list[str] = Field(default_factory=list)
    migration_guide: str | None = None
    code_examples: dict[str, str] = Field(default_factory=dict)


class SectionInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    changes: list[ChangeInput] = Field(default_factory=list)


class ChangelogCreateRequest(BaseModel):
    """A hand-written changelog document.

    With ``ai_generation_id`` set the document is recorded as hybrid: written
    by hand, starting from that generation.
    """
    repository_ref: str = Field(..., min_length=1, description="Repository id or owner/name")
    version: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    branch: str = Field(..., min_length=1)
    start_date: datetime
    end_date: datetime
    tags: list[str] = Field(default_factory=list)
    sections: list[SectionInput] = Field(default_factory=list)
    ai_generation_id: str | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "ChangelogCreateRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class ChangelogListResponse(BaseModel):
    changelogs: list[ChangelogResponse]
    total: int


# =============================================================================
# API Request/Response Schemas: repositories, users, AI helpers
# =============================================================================

class RepositoryResponse(BaseModel):
    id: str
    github_id: int
    name: str
    full_name: str
    owner: str
    description: str | None = None
    url: str
    is_private: bool = False
    default_branch: str = "main"
    language: str | None = None
    star_count: int = 0
    fork_count: int = 0
    last_pushed_at: datetime | None = None
    last_sync_at: datetime | None = None


class SyncResponse(BaseModel):
    synced: int
    failed: int


class UserResponse(BaseModel):
    id: str
    github_id: int | None = None
    github_username: str | None = None
    email: str | None = None
    name: str
    avatar_url: str | None = None
    role: UserRole
    created_at: datetime


class EnhanceDescriptionRequest(BaseModel):
    description: str = Field(..., min_length=1)


class EnhancedDescription(BaseModel):
    enhanced: str
    suggestions: list[str] = Field(default_factory=list)


class SuggestTagsResponse(BaseModel):
    tags: list[str]


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)
    name: str | None = Field(default=None)


class LLMResponse(BaseModel):
    """Response from an LLM provider."""
    content: str | None = None
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.finish_reason == "error"

    @property
    def prompt_tokens(self) -> int:
        return int(self.usage.get("prompt_tokens", 0) or 0)

    @property
    def completion_tokens(self) -> int:
        return int(self.usage.get("completion_tokens", 0) or 0)
