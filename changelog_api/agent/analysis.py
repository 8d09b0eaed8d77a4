"""LLM-backed commit analysis and changelog synthesis.

``ChangelogAI`` wraps an ``LLMAdapter`` and turns model output into typed
schemas. Model output is untrusted: every element is normalized into the
documented defaults before it reaches the pipeline.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any

from changelog_api.agent import prompts
from changelog_api.agent.parsing import parse_json_response
from changelog_api.config import Settings, get_settings
from changelog_api.errors import LanguageModelError, ResponseParseError
from changelog_api.llm.base import LLMAdapter
from changelog_api.schemas import (
    ChangeType,
    ChangelogMetadata,
    Commit,
    CommitAnalysis,
    CommitType,
    EnhancedDescription,
    GeneratedChange,
    GeneratedChangelog,
    GeneratedSection,
    GenerationRequest,
    Impact,
    LLMMessage,
    LLMResponse,
)


logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5

_COMMIT_TYPE_ALIASES = {
    "feat": CommitType.FEATURE,
    "features": CommitType.FEATURE,
    "fix": CommitType.BUGFIX,
    "bug": CommitType.BUGFIX,
    "bugfixes": CommitType.BUGFIX,
    "doc": CommitType.DOCS,
    "documentation": CommitType.DOCS,
    "tests": CommitType.TEST,
    "perf": CommitType.REFACTOR,
    "style": CommitType.CHORE,
    "build": CommitType.CHORE,
    "ci": CommitType.CHORE,
}

_CHANGE_TYPE_ALIASES = {
    "feat": ChangeType.FEATURE,
    "fix": ChangeType.BUGFIX,
    "deprecated": ChangeType.DEPRECATION,
}

_IMPACT_BY_TYPE = {
    CommitType.BREAKING: Impact.MAJOR,
    CommitType.FEATURE: Impact.MINOR,
}


# =============================================================================
# Normalization helpers
# =============================================================================

def _field(data: dict[str, Any], *names: str) -> Any:
    """First present value among snake_case / camelCase spellings."""
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _enum(enum_cls, value: Any, aliases: dict | None = None):
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if aliases and key in aliases:
        return aliases[key]
    try:
        return enum_cls(key)
    except ValueError:
        return None


def fallback_analysis(commit: Commit) -> CommitAnalysis:
    """Analysis for a commit the model did not categorize."""
    return CommitAnalysis(
        sha=commit.sha,
        type=CommitType.CHORE,
        description=commit.message,
        impact=Impact.PATCH,
        confidence=FALLBACK_CONFIDENCE,
    )


def normalize_commit_analysis(raw: dict[str, Any], commit: Commit) -> CommitAnalysis:
    """Fill defaults and coerce types for one model-produced analysis."""
    commit_type = _enum(CommitType, raw.get("type"), _COMMIT_TYPE_ALIASES) or CommitType.CHORE
    impact = _enum(Impact, raw.get("impact")) or _IMPACT_BY_TYPE.get(commit_type, Impact.PATCH)
    breaking = _field(raw, "breaking_change", "breakingChange")
    description = raw.get("description")

    return CommitAnalysis(
        sha=commit.sha,
        type=commit_type,
        scope=raw.get("scope") if isinstance(raw.get("scope"), str) else None,
        description=description if isinstance(description, str) and description.strip() else commit.message,
        impact=impact,
        breaking_change=commit_type == CommitType.BREAKING or breaking is True,
        affected_components=_string_list(_field(raw, "affected_components", "affectedComponents")),
        user_facing=_field(raw, "user_facing", "userFacing") is True,
        confidence=_confidence(raw.get("confidence")),
    )


def _sha_matches(candidate: Any, commit: Commit) -> bool:
    if not isinstance(candidate, str) or len(candidate.strip()) < 4:
        return False
    candidate = candidate.strip().lower()
    sha = commit.sha.lower()
    return sha.startswith(candidate) or candidate.startswith(sha)


def normalize_commit_analyses(items: list[Any], commits: list[Commit]) -> list[CommitAnalysis]:
    """Match model output to the fetched commits.

    Items are matched by SHA prefix first, then by position for items whose
    SHA matches no commit. Every commit gets exactly one analysis, in commit
    order; commits the model skipped get a low-confidence fallback.
    """
    elements = [item for item in items if isinstance(item, dict)]
    used: set[int] = set()
    analyses: list[CommitAnalysis] = []
    skipped = 0

    for index, commit in enumerate(commits):
        match = None
        for position, element in enumerate(elements):
            if position not in used and _sha_matches(element.get("sha"), commit):
                match = position
                break
        if match is None and index < len(elements) and index not in used:
            sha = elements[index].get("sha")
            if not any(_sha_matches(sha, other) for other in commits):
                match = index

        if match is None:
            skipped += 1
            analyses.append(fallback_analysis(commit))
            continue
        used.add(match)
        analyses.append(normalize_commit_analysis(elements[match], commit))

    if skipped:
        logger.info(f"Model skipped {skipped} of {len(commits)} commits; using fallback analyses")
    return analyses


def _normalize_change(raw: dict[str, Any]) -> GeneratedChange | None:
    description = raw.get("description")
    if not isinstance(description, str) or not description.strip():
        return None
    pull_requests = []
    raw_pull_requests = _field(raw, "pull_requests", "pullRequests")
    for value in raw_pull_requests if isinstance(raw_pull_requests, list) else []:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            pull_requests.append(value)
        elif isinstance(value, str) and value.lstrip("#").isdigit():
            pull_requests.append(int(value.lstrip("#")))
    code_examples = _field(raw, "code_examples", "codeExamples")
    migration_guide = _field(raw, "migration_guide", "migrationGuide")
    author = raw.get("author")

    return GeneratedChange(
        id=str(raw["id"]) if raw.get("id") is not None else None,
        description=description.strip(),
        type=_enum(ChangeType, raw.get("type"), _CHANGE_TYPE_ALIASES) or ChangeType.ENHANCEMENT,
        impact=_enum(Impact, raw.get("impact")),
        tags=_string_list(raw.get("tags")),
        commits=_string_list(raw.get("commits")),
        pull_requests=pull_requests,
        author=author if isinstance(author, str) and author else None,
        affected_components=_string_list(_field(raw, "affected_components", "affectedComponents")),
        migration_guide=migration_guide if isinstance(migration_guide, str) and migration_guide else None,
        code_examples={
            str(k): str(v) for k, v in code_examples.items()
        } if isinstance(code_examples, dict) else {},
    )


def normalize_generated_changelog(raw: Any, request: GenerationRequest) -> GeneratedChangelog:
    """Turn a parsed synthesis response into a ``GeneratedChangelog``.

    Raises:
        ResponseParseError: When the response has no ``sections`` list
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("sections"), list):
        raise ResponseParseError("Changelog response has no sections list")

    sections = []
    for position, item in enumerate(raw["sections"], start=1):
        if not isinstance(item, dict):
            continue
        order = item.get("order")
        changes = [
            change
            for change in (_normalize_change(c) for c in item.get("changes") or [] if isinstance(c, dict))
            if change is not None
        ]
        sections.append(
            GeneratedSection(
                id=str(item["id"]) if item.get("id") is not None else None,
                title=str(item.get("title") or f"Section {position}"),
                order=order if isinstance(order, int) and not isinstance(order, bool) else position,
                changes=changes,
            )
        )

    version = raw.get("version")
    title = raw.get("title")
    migration_guide = _field(raw, "migration_guide", "migrationGuide")
    return GeneratedChangelog(
        version=str(version) if version else request.end_date.strftime("%Y-%m-%d"),
        title=str(title) if title else f"Changes in {request.branch}",
        summary=str(raw.get("summary") or ""),
        sections=sections,
        metadata=ChangelogMetadata(),
        migration_guide=migration_guide if isinstance(migration_guide, str) and migration_guide else None,
        acknowledgments=_string_list(raw.get("acknowledgments")),
    )


def reconcile_metadata(
    changelog: GeneratedChangelog,
    analyses: list[CommitAnalysis],
    commits: list[Commit],
    model_metadata: dict[str, Any] | None = None,
) -> GeneratedChangelog:
    """Recompute aggregate counts from the analyses and fetched commits.

    Model-reported counts are discarded; diff statistics the service cannot
    compute are kept when the model supplied them.
    """
    model_metadata = model_metadata or {}

    def _count(*names: str) -> int:
        value = _field(model_metadata, *names)
        return value if isinstance(value, int) and not isinstance(value, bool) and value >= 0 else 0

    authors = {commit.author for commit in commits if commit.author}
    confidence = min((a.confidence for a in analyses), default=0.0)
    metadata = ChangelogMetadata(
        total_commits=len(commits),
        contributors=len(authors),
        files_changed=_count("files_changed", "filesChanged"),
        lines_added=_count("lines_added", "linesAdded"),
        lines_removed=_count("lines_removed", "linesRemoved"),
        generation_method="ai",
        breaking_changes=sum(1 for a in analyses if a.breaking_change),
        new_features=sum(1 for a in analyses if a.type == CommitType.FEATURE),
        bug_fixes=sum(1 for a in analyses if a.type == CommitType.BUGFIX),
        confidence=round(confidence, 3),
    )
    return changelog.model_copy(update={"metadata": metadata})


def filter_excluded(commits: list[Commit], patterns: list[str]) -> list[Commit]:
    """Drop commits whose subject matches any exclude pattern (case-insensitive)."""
    if not patterns:
        return commits
    lowered = [p.lower() for p in patterns if p]
    kept = [
        commit
        for commit in commits
        if not any(fnmatch.fnmatch(commit.subject.lower(), f"*{p}*") for p in lowered)
    ]
    if len(kept) != len(commits):
        logger.info(f"Excluded {len(commits) - len(kept)} commits by pattern")
    return kept


# =============================================================================
# ChangelogAI service
# =============================================================================

class ChangelogAI:
    """Categorization and synthesis on top of an LLM adapter."""

    def __init__(self, adapter: LLMAdapter | None, settings: Settings | None = None):
        settings = settings or get_settings()
        self.adapter = adapter
        self.temperature = settings.openai_temperature
        self.max_tokens = settings.openai_max_tokens

    @property
    def enabled(self) -> bool:
        return self.adapter is not None

    @property
    def model(self) -> str:
        return self.adapter.default_model if self.adapter else ""

    async def _complete(self, system: str, user: str, temperature: float | None = None) -> LLMResponse:
        if self.adapter is None:
            raise LanguageModelError("AI integration not configured")

        response = await self.adapter.chat_completion(
            messages=[
                LLMMessage(role="system", content=system),
                LLMMessage(role="user", content=user),
            ],
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=self.max_tokens,
        )
        if response.failed:
            error = (response.raw_response or {}).get("error", "unknown error")
            status_code = (response.raw_response or {}).get("status_code")
            raise LanguageModelError(
                f"Language model request failed: {error}",
                retryable=status_code is None or status_code >= 500 or status_code == 429,
            )
        if response.finish_reason == "length":
            logger.warning(f"Model output hit the {self.max_tokens} token limit")
        return response

    async def analyze_commits(self, commits: list[Commit]) -> tuple[list[CommitAnalysis], LLMResponse]:
        """Categorize each commit.

        Returns one analysis per commit plus the raw response (for usage).
        """
        lines = [f"{commit.sha[:7]}: {commit.message}" for commit in commits]
        response = await self._complete(
            prompts.ANALYSIS_SYSTEM_PROMPT,
            prompts.format_analyze_prompt(lines),
            temperature=0.3,
        )
        items = parse_json_response(response.content, expect=list)
        return normalize_commit_analyses(items, commits), response

    async def generate_changelog(
        self,
        analyses: list[CommitAnalysis],
        request: GenerationRequest,
        repository_name: str,
    ) -> tuple[GeneratedChangelog, dict[str, Any], LLMResponse]:
        """Synthesize a structured changelog from commit analyses.

        Returns the changelog, the model-reported metadata (for diff stats)
        and the raw response.
        """
        commit_data = [
            {
                "sha": a.sha,
                "message": a.description,
                "type": a.type.value,
                "impact": a.impact.value,
                "breakingChange": a.breaking_change,
                "userFacing": a.user_facing,
                "confidence": a.confidence,
            }
            for a in analyses
        ]
        prompt = prompts.format_generate_prompt(
            repository_name=repository_name,
            branch=request.branch,
            start_date=request.start_date.isoformat(),
            end_date=request.end_date.isoformat(),
            options=request.options.model_dump(mode="json"),
            analyses=commit_data,
        )
        response = await self._complete(prompts.CHANGELOG_SYSTEM_PROMPT, prompt)
        raw = parse_json_response(response.content, expect=dict)
        changelog = normalize_generated_changelog(raw, request)
        logger.info(
            f"Parsed changelog {changelog.version}: {len(changelog.sections)} sections, "
            f"{changelog.change_count} changes"
        )
        model_metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
        return changelog, model_metadata, response

    async def enhance_description(self, description: str) -> EnhancedDescription:
        """Rewrite a changelog entry and offer alternative phrasings."""
        response = await self._complete(
            prompts.CHANGELOG_SYSTEM_PROMPT,
            prompts.format_enhance_prompt(description),
        )
        raw = parse_json_response(response.content, expect=dict)
        enhanced = raw.get("enhanced")
        return EnhancedDescription(
            enhanced=enhanced.strip() if isinstance(enhanced, str) and enhanced.strip() else description,
            suggestions=_string_list(raw.get("suggestions"))[:3],
        )

    async def suggest_tags(self, description: str) -> list[str]:
        """Suggest up to five lowercase tags for a changelog entry."""
        response = await self._complete(
            prompts.CHANGELOG_SYSTEM_PROMPT,
            prompts.format_suggest_tags_prompt(description),
            temperature=0.3,
        )
        items = parse_json_response(response.content, expect=list)
        tags: list[str] = []
        for tag in _string_list(items):
            tag = tag.strip().lower()
            if tag not in tags:
                tags.append(tag)
        return tags[:5]
