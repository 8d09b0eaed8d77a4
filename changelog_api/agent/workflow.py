"""LangGraph workflow for changelog generation.

Graph structure:
START → fetch → analyze → synthesize → reconcile → complete → END
          ↓        ↓          ↓            ↓
          └────────┴──── fail ┴────────────┘ → END

Each node persists progress through the ``GenerationStore``; every failure
ends in the ``fail`` node, which marks the record failed. Calls to GitHub
and to the language model run under one deadline for the whole generation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Literal, TypedDict, TypeVar

from langgraph.graph import END, StateGraph

from changelog_api.agent.analysis import ChangelogAI, filter_excluded, reconcile_metadata
from changelog_api.errors import ChangelogError, DeadlineExceededError, NoCommitsError
from changelog_api.schemas import (
    AIMetadata,
    Commit,
    CommitAnalysis,
    GeneratedChangelog,
    GenerationRecord,
    GenerationRequest,
)
from changelog_api.services.generations import GenerationStore
from changelog_api.services.repositories import RepositoryStore
from changelog_api.tools.github import GitHubClient


logger = logging.getLogger(__name__)

T = TypeVar("T")

PROGRESS_FETCHED = 10
PROGRESS_ANALYZED = 40
PROGRESS_SYNTHESIZED = 80
PROGRESS_RECONCILED = 95


# =============================================================================
# State Definition
# =============================================================================

class PipelineState(TypedDict, total=False):
    """State for the generation workflow.

    Attributes:
        generation_id: Record being produced
        request: The original generation request
        access_token: GitHub token of the requester, if any
        deadline: ``time.monotonic()`` value after which outbound calls fail
        started_at: ``time.monotonic()`` value when the pipeline started
        repository_name: ``owner/name`` of the repository
        commits: Commits after exclude patterns
        analyses: Per-commit categorization
        changelog: Synthesized (later reconciled) changelog
        model_metadata: Metadata block reported by the model
        model: Model name reported by the provider
        prompt_tokens / completion_tokens: Accumulated usage
        error: ``CODE: message`` of the failure, when one occurred
    """

    generation_id: str
    request: GenerationRequest
    access_token: str | None
    deadline: float
    started_at: float
    repository_name: str
    commits: list[Commit]
    analyses: list[CommitAnalysis]
    changelog: GeneratedChangelog
    model_metadata: dict[str, Any]
    model: str
    prompt_tokens: int
    completion_tokens: int
    error: str


async def with_deadline(awaitable: Awaitable[T], deadline: float, what: str) -> T:
    """Await ``awaitable`` unless ``deadline`` passes first."""
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise DeadlineExceededError(f"Deadline exceeded before {what}")
    try:
        return await asyncio.wait_for(awaitable, timeout=remaining)
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(f"{what} did not finish before the deadline") from e


def _describe(error: ChangelogError) -> str:
    return f"{error.code}: {error.message}"


def _route(state: PipelineState) -> Literal["next", "fail"]:
    return "fail" if state.get("error") else "next"


# =============================================================================
# Orchestrator
# =============================================================================

class GenerationOrchestrator:
    """Starts generations and drives them through the workflow graph.

    Collaborators are injected so tests can substitute fakes for GitHub and
    the language model.
    """

    def __init__(
        self,
        store: GenerationStore,
        repositories: RepositoryStore,
        source_control: GitHubClient,
        ai: ChangelogAI,
        timeout_seconds: float = 300.0,
    ):
        self.store = store
        self.repositories = repositories
        self.source_control = source_control
        self.ai = ai
        self.timeout_seconds = timeout_seconds
        self._tasks: set[asyncio.Task] = set()
        self._graph = self._build_workflow().compile()

    # =========================================================================
    # Public API
    # =========================================================================

    async def start_generation(
        self,
        requester_id: str | None,
        request: GenerationRequest,
        access_token: str | None = None,
        schedule: Callable[..., Any] | None = None,
    ) -> GenerationRecord:
        """Validate, persist a ``processing`` record and schedule the pipeline.

        Returns immediately with the initial record. ``schedule`` is a
        ``BackgroundTasks.add_task``-style callable; without one the
        pipeline runs as an asyncio task owned by the orchestrator.

        Raises:
            RepositoryNotFoundError: When the repository is not known
        """
        repository = await self.repositories.require(request.repository_ref)
        request = request.model_copy(update={"repository_ref": repository.full_name})
        record = await self.store.create(request, user_id=requester_id)

        if schedule is not None:
            schedule(self.run_pipeline, record.id, request, access_token)
        else:
            task = asyncio.create_task(
                self.run_pipeline(record.id, request, access_token),
                name=f"generation-{record.id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return record

    async def get_generation(self, generation_id: str, user_id: str | None = None) -> GenerationRecord | None:
        return await self.store.get(generation_id, user_id=user_id)

    async def run_pipeline(
        self,
        generation_id: str,
        request: GenerationRequest,
        access_token: str | None = None,
    ) -> GenerationRecord | None:
        """Run the workflow for one generation and return its final snapshot."""
        started_at = time.monotonic()
        state: PipelineState = {
            "generation_id": generation_id,
            "request": request,
            "access_token": access_token,
            "started_at": started_at,
            "deadline": started_at + self.timeout_seconds,
            "repository_name": request.repository_ref,
            "prompt_tokens": 0,
            "completion_tokens": 0,
        }

        logger.info(f"[{generation_id}] Starting generation pipeline")
        try:
            await self._graph.ainvoke(state)
        except asyncio.CancelledError:
            logger.warning(f"[{generation_id}] Generation cancelled")
            await self.store.fail(generation_id, "CANCELLED: generation task was cancelled")
            raise
        except Exception as e:
            logger.exception(f"[{generation_id}] Generation pipeline crashed: {e}")
            await self.store.fail(generation_id, f"INTERNAL_ERROR: {e}")

        return await self.store.get(generation_id)

    async def drain(self) -> None:
        """Wait for every pipeline task started by this orchestrator."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Node Functions
    # =========================================================================

    async def _fetch_node(self, state: PipelineState) -> dict[str, Any]:
        """Fetch commits in the requested range.

        Input: request, access_token
        Output: commits, repository_name
        """
        generation_id = state["generation_id"]
        request = state["request"]
        try:
            repository = await self.repositories.get_by_ref(request.repository_ref)
            repository_name = repository.full_name if repository else request.repository_ref

            commits = await with_deadline(
                self.source_control.list_commits(
                    repository_name,
                    request.branch,
                    request.start_date,
                    request.end_date,
                    token=state.get("access_token"),
                ),
                state["deadline"],
                "fetching commits",
            )
            commits = filter_excluded(commits, request.options.exclude_patterns)
            if not commits:
                raise NoCommitsError("No commits found in the selected range")
        except ChangelogError as e:
            return {"error": _describe(e)}

        logger.info(f"[{generation_id}] Fetched {len(commits)} commits")
        await self.store.update_progress(generation_id, PROGRESS_FETCHED)
        return {"commits": commits, "repository_name": repository_name}

    async def _analyze_node(self, state: PipelineState) -> dict[str, Any]:
        """Categorize each commit with the language model.

        Input: commits
        Output: analyses (persisted)
        """
        generation_id = state["generation_id"]
        try:
            analyses, response = await with_deadline(
                self.ai.analyze_commits(state["commits"]),
                state["deadline"],
                "analyzing commits",
            )
        except ChangelogError as e:
            return {"error": _describe(e)}

        logger.info(f"[{generation_id}] Analyzed {len(analyses)} commits")
        await self.store.update_progress(generation_id, PROGRESS_ANALYZED, commit_analyses=analyses)
        return {
            "analyses": analyses,
            "model": response.model,
            "prompt_tokens": state.get("prompt_tokens", 0) + response.prompt_tokens,
            "completion_tokens": state.get("completion_tokens", 0) + response.completion_tokens,
        }

    async def _synthesize_node(self, state: PipelineState) -> dict[str, Any]:
        """Generate the structured changelog.

        Input: analyses, request
        Output: changelog, model_metadata
        """
        generation_id = state["generation_id"]
        try:
            changelog, model_metadata, response = await with_deadline(
                self.ai.generate_changelog(
                    state["analyses"],
                    state["request"],
                    state["repository_name"],
                ),
                state["deadline"],
                "generating changelog",
            )
        except ChangelogError as e:
            return {"error": _describe(e)}

        await self.store.update_progress(generation_id, PROGRESS_SYNTHESIZED)
        return {
            "changelog": changelog,
            "model_metadata": model_metadata,
            "model": response.model or state.get("model", ""),
            "prompt_tokens": state.get("prompt_tokens", 0) + response.prompt_tokens,
            "completion_tokens": state.get("completion_tokens", 0) + response.completion_tokens,
        }

    async def _reconcile_node(self, state: PipelineState) -> dict[str, Any]:
        """Replace model-reported counts with counts derived from the analyses."""
        changelog = reconcile_metadata(
            state["changelog"],
            state["analyses"],
            state["commits"],
            state.get("model_metadata"),
        )
        await self.store.update_progress(state["generation_id"], PROGRESS_RECONCILED)
        return {"changelog": changelog}

    async def _complete_node(self, state: PipelineState) -> dict[str, Any]:
        generation_id = state["generation_id"]
        changelog = state["changelog"]
        metadata = changelog.metadata
        ai_metadata = AIMetadata(
            model=state.get("model") or self.ai.model,
            prompt_tokens=state.get("prompt_tokens", 0),
            completion_tokens=state.get("completion_tokens", 0),
            processing_time_ms=int((time.monotonic() - state["started_at"]) * 1000),
            confidence=metadata.confidence,
            total_commits=metadata.total_commits,
            breaking_changes=metadata.breaking_changes,
            new_features=metadata.new_features,
            bug_fixes=metadata.bug_fixes,
        )
        await self.store.complete(generation_id, changelog, ai_metadata, commit_analyses=state["analyses"])
        logger.info(
            f"[{generation_id}] Completed: {len(changelog.sections)} sections, "
            f"{changelog.change_count} changes in {ai_metadata.processing_time_ms}ms"
        )
        return {}

    async def _fail_node(self, state: PipelineState) -> dict[str, Any]:
        generation_id = state["generation_id"]
        logger.error(f"[{generation_id}] Generation failed: {state['error']}")
        await self.store.fail(generation_id, state["error"])
        return {}

    # =========================================================================
    # Workflow Builder
    # =========================================================================

    def _build_workflow(self) -> StateGraph:
        workflow = StateGraph(PipelineState)

        workflow.add_node("fetch", self._fetch_node)
        workflow.add_node("analyze", self._analyze_node)
        workflow.add_node("synthesize", self._synthesize_node)
        workflow.add_node("reconcile", self._reconcile_node)
        workflow.add_node("complete", self._complete_node)
        workflow.add_node("fail", self._fail_node)

        workflow.set_entry_point("fetch")

        for node, next_node in (
            ("fetch", "analyze"),
            ("analyze", "synthesize"),
            ("synthesize", "reconcile"),
            ("reconcile", "complete"),
        ):
            workflow.add_conditional_edges(node, _route, {"next": next_node, "fail": "fail"})

        workflow.add_edge("complete", END)
        workflow.add_edge("fail", END)

        return workflow
