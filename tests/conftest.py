import asyncio
import json
from datetime import datetime

import pytest
from sqlalchemy.pool import NullPool

from changelog_api.agent.analysis import ChangelogAI
from changelog_api.agent.workflow import GenerationOrchestrator
from changelog_api.config import Settings
from changelog_api.database.session import Database
from changelog_api.errors import AuthenticationError, SourceNotFoundError
from changelog_api.llm.base import LLMAdapter
from changelog_api.schemas import Branch, Commit, CommitDetail, CommitFile, GenerationRequest, LLMResponse
from changelog_api.services.generations import GenerationStore
from changelog_api.services.repositories import RepositoryStore


GOOD_TOKEN = "good-token"
OTHER_TOKEN = "other-token"

REPO_PAYLOAD = {
    "id": 101,
    "name": "widgets",
    "full_name": "acme/widgets",
    "owner": {"login": "acme"},
    "description": "Widget toolkit",
    "html_url": "https://github.com/acme/widgets",
    "private": False,
    "default_branch": "main",
    "language": "Python",
    "stargazers_count": 42,
    "forks_count": 7,
    "pushed_at": "2025-01-07T12:00:00Z",
}

GITHUB_USERS = {
    GOOD_TOKEN: {"id": 1, "login": "alice", "name": "Alice", "email": "alice@example.com", "avatar_url": None},
    OTHER_TOKEN: {"id": 2, "login": "bob", "name": "Bob", "email": None, "avatar_url": None},
}


def make_commits() -> list[Commit]:
    return [
        Commit(
            sha="a1b2c3d" + "0" * 33,
            message="feat: add widget export",
            author_name="Alice",
            author_login="alice",
            date=datetime(2025, 1, 2, 10, 0),
        ),
        Commit(
            sha="b2c3d4e" + "0" * 33,
            message="fix: crash on empty widget list",
            author_name="Bob",
            author_login="bob",
            date=datetime(2025, 1, 3, 11, 0),
        ),
        Commit(
            sha="c3d4e5f" + "0" * 33,
            message="fix: typo in settings page",
            author_name="Alice",
            author_login="alice",
            date=datetime(2025, 1, 5, 9, 30),
        ),
    ]


ANALYSIS_JSON = json.dumps([
    {
        "sha": "a1b2c3d",
        "type": "feature",
        "description": "Add widget export",
        "impact": "minor",
        "breakingChange": False,
        "affectedComponents": ["export"],
        "userFacing": True,
        "confidence": 0.9,
    },
    {
        "sha": "b2c3d4e",
        "type": "bugfix",
        "description": "Fix crash on empty widget list",
        "impact": "patch",
        "breakingChange": False,
        "affectedComponents": ["widgets"],
        "userFacing": True,
        "confidence": 0.8,
    },
    {
        "sha": "c3d4e5f",
        "type": "bugfix",
        "description": "Fix typo in settings page",
        "impact": "patch",
        "breakingChange": False,
        "affectedComponents": "settings",
        "userFacing": True,
        "confidence": 0.7,
    },
])

CHANGELOG_PAYLOAD = {
    "version": "1.4.0",
    "title": "Widget export and stability fixes",
    "summary": "Export widgets and fewer crashes.",
    "sections": [
        {
            "id": "features",
            "title": "Features",
            "order": 1,
            "changes": [
                {
                    "id": "feat-export",
                    "description": "Export widgets to CSV",
                    "type": "feature",
                    "tags": ["export"],
                    "commits": ["a1b2c3d"],
                    "pullRequests": [12],
                    "author": "alice",
                },
            ],
        },
        {
            "id": "bugfixes",
            "title": "Bug Fixes",
            "order": 2,
            "changes": [
                {
                    "id": "fix-empty-list",
                    "description": "Fix crash on empty widget list",
                    "type": "bugfix",
                    "impact": "patch",
                    "commits": ["b2c3d4e"],
                },
                {
                    "id": "fix-typo",
                    "description": "Fix typo in settings page",
                    "type": "bugfix",
                    "commits": ["c3d4e5f"],
                },
            ],
        },
    ],
    # Deliberately wrong; reconciliation recomputes these
    "metadata": {"totalCommits": 99, "breakingChanges": 5, "newFeatures": 7, "filesChanged": 4},
}

CHANGELOG_JSON = json.dumps(CHANGELOG_PAYLOAD)


REQUEST_BODY = {
    "repository_ref": "acme/widgets",
    "branch": "main",
    "start_date": "2025-01-01T00:00:00Z",
    "end_date": "2025-01-07T23:59:59Z",
}


def make_request(**overrides) -> GenerationRequest:
    return GenerationRequest(**{**REQUEST_BODY, **overrides})


# =============================================================================
# Fakes
# =============================================================================

class FakeGitHub:
    """In-process stand-in for GitHubClient."""

    def __init__(self, commits=None, delay: float = 0.0, commit_error: Exception | None = None):
        self.commits = make_commits() if commits is None else commits
        self.repositories = [REPO_PAYLOAD]
        self.delay = delay
        self.commit_error = commit_error
        self.commit_calls = []

    async def get_authenticated_user(self, token):
        if token not in GITHUB_USERS:
            raise AuthenticationError("Invalid or expired GitHub token")
        return GITHUB_USERS[token]

    async def list_repositories(self, token):
        return list(self.repositories)

    async def get_repository(self, owner, repo, token=None):
        return REPO_PAYLOAD

    async def list_branches(self, owner, repo, token=None):
        return [
            Branch(name="main", sha="a1b2c3d", is_default=True),
            Branch(name="develop", sha="b2c3d4e"),
        ]

    async def list_commits(self, repository_ref, branch, since, until, token=None):
        self.commit_calls.append((repository_ref, branch, since, until, token))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.commit_error is not None:
            raise self.commit_error
        return list(self.commits)

    async def get_commit(self, repository_ref, sha, token=None):
        for commit in self.commits:
            if commit.sha.startswith(sha):
                return CommitDetail(
                    **commit.model_dump(),
                    additions=12,
                    deletions=3,
                    files=[CommitFile(filename="widgets/export.py", additions=12, deletions=3)],
                )
        raise SourceNotFoundError(f"GitHub resource not found: {sha}")

    async def close(self):
        return None


class FakeLLM(LLMAdapter):
    """Scripted LLM adapter: each call returns the next queued response."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def default_model(self) -> str:
        return "fake-model"

    async def chat_completion(self, messages, model=None, temperature=0.7, max_tokens=2000, response_format=None):
        self.calls.append(messages)
        if not self.responses:
            return LLMResponse(content=None, model="fake-model", finish_reason="error", raw_response={"error": "no response queued"})
        response = self.responses.pop(0)
        if isinstance(response, LLMResponse):
            return response
        return LLMResponse(
            content=response,
            model="fake-model",
            usage={"prompt_tokens": 10, "completion_tokens": 20},
            finish_reason="stop",
        )


def error_response(status_code: int = 500) -> LLMResponse:
    return LLMResponse(
        content=None,
        model="fake-model",
        finish_reason="error",
        raw_response={"error": "upstream exploded", "status_code": status_code},
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'changelog-test.db'}",
        openai_api_key="test-key",
        generation_timeout_seconds=5,
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url, poolclass=NullPool)
    asyncio.run(db.init())
    yield db
    asyncio.run(db.close())


@pytest.fixture
def seeded_database(database):
    asyncio.run(RepositoryStore(database).upsert_from_github(REPO_PAYLOAD))
    return database


def make_orchestrator(database, settings, github=None, llm=None, timeout_seconds=None):
    store = GenerationStore(database)
    orchestrator = GenerationOrchestrator(
        store=store,
        repositories=RepositoryStore(database),
        source_control=github or FakeGitHub(),
        ai=ChangelogAI(llm, settings=settings),
        timeout_seconds=timeout_seconds or settings.generation_timeout_seconds,
    )
    return orchestrator, store
