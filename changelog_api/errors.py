"""Typed errors raised by collaborators and services.

Every failure that crosses a component boundary is one of these, so the
generation pipeline can map them uniformly to a failed record and the HTTP
layer can map them to status codes.
"""

from __future__ import annotations


class ChangelogError(Exception):
    """Base class for all service errors."""

    code: str = "CHANGELOG_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# =============================================================================
# Input / lookup errors (synchronous, returned to the caller)
# =============================================================================

class InvalidRequestError(ChangelogError):
    code = "INVALID_REQUEST"


class RepositoryNotFoundError(InvalidRequestError):
    code = "REPOSITORY_NOT_FOUND"


class NotFoundError(ChangelogError):
    code = "NOT_FOUND"


class GenerationNotFoundError(NotFoundError):
    code = "GENERATION_NOT_FOUND"


class ChangelogNotFoundError(NotFoundError):
    code = "CHANGELOG_NOT_FOUND"


class CommitNotFoundError(NotFoundError):
    code = "COMMIT_NOT_FOUND"


class GenerationNotReadyError(ChangelogError):
    """Assembly was requested for a generation that is not completed."""

    code = "GENERATION_NOT_READY"


class PermissionDeniedError(ChangelogError):
    code = "PERMISSION_DENIED"


class AlreadyPublishedError(ChangelogError):
    code = "ALREADY_PUBLISHED"


class VersionExistsError(ChangelogError):
    """Another live document of the repository already uses this version."""

    code = "VERSION_EXISTS"


class AuthenticationError(ChangelogError):
    code = "AUTH_002"


# =============================================================================
# Upstream errors (captured by the pipeline, reflected as status=failed)
# =============================================================================

class UpstreamError(ChangelogError):
    """A collaborator call to an external service failed."""

    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, code)
        self.retryable = retryable


class SourceControlError(UpstreamError):
    code = "GITHUB_ERROR"


class SourceNotFoundError(SourceControlError):
    code = "GITHUB_NOT_FOUND"


class RateLimitError(SourceControlError):
    code = "GITHUB_RATE_LIMITED"


class NoCommitsError(SourceControlError):
    code = "NO_COMMITS"


class LanguageModelError(UpstreamError):
    code = "LLM_ERROR"


class ResponseParseError(LanguageModelError):
    """Model output could not be turned into JSON, even after repair."""

    code = "PARSE_ERROR"


class DeadlineExceededError(ChangelogError):
    code = "DEADLINE_EXCEEDED"
