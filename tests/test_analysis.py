import asyncio
import json

import pytest

from changelog_api.agent.analysis import (
    FALLBACK_CONFIDENCE,
    ChangelogAI,
    filter_excluded,
    normalize_commit_analyses,
    normalize_commit_analysis,
    normalize_generated_changelog,
    reconcile_metadata,
)
from changelog_api.errors import LanguageModelError, ResponseParseError
from changelog_api.schemas import ChangeType, Commit, CommitType, Impact

from tests.conftest import (
    ANALYSIS_JSON,
    CHANGELOG_JSON,
    CHANGELOG_PAYLOAD,
    FakeLLM,
    error_response,
    make_commits,
    make_request,
)


def test_missing_fields_get_defaults():
    commit = make_commits()[0]
    analysis = normalize_commit_analysis({}, commit)
    assert analysis.sha == commit.sha
    assert analysis.type == CommitType.CHORE
    assert analysis.impact == Impact.PATCH
    assert analysis.confidence == 0.5
    assert analysis.breaking_change is False
    assert analysis.description == commit.message


def test_breaking_type_implies_breaking_change():
    analysis = normalize_commit_analysis({"type": "breaking"}, make_commits()[0])
    assert analysis.breaking_change is True
    assert analysis.impact == Impact.MAJOR


def test_type_aliases_and_camel_case():
    raw = {"type": "feat", "affectedComponents": ["api", None, ""], "userFacing": True}
    analysis = normalize_commit_analysis(raw, make_commits()[0])
    assert analysis.type == CommitType.FEATURE
    assert analysis.impact == Impact.MINOR
    assert analysis.affected_components == ["api"]
    assert analysis.user_facing is True


@pytest.mark.parametrize("value, expected", [(1.7, 1.0), (-0.2, 0.0), (True, 0.5), ("0.9", 0.5), (0.42, 0.42)])
def test_confidence_is_clamped(value, expected):
    analysis = normalize_commit_analysis({"confidence": value}, make_commits()[0])
    assert analysis.confidence == expected


def test_non_list_components_become_empty():
    analysis = normalize_commit_analysis({"affected_components": "api"}, make_commits()[0])
    assert analysis.affected_components == []


def test_analyses_match_by_sha_out_of_order():
    commits = make_commits()
    items = [
        {"sha": commits[2].sha[:7], "type": "bugfix"},
        {"sha": commits[0].sha[:7], "type": "feature"},
        {"sha": commits[1].sha[:7], "type": "docs"},
    ]
    analyses = normalize_commit_analyses(items, commits)
    assert [a.sha for a in analyses] == [c.sha for c in commits]
    assert [a.type for a in analyses] == [CommitType.FEATURE, CommitType.DOCS, CommitType.BUGFIX]


def test_skipped_commit_gets_fallback():
    """Every commit has an analysis even when the model leaves one out."""
    commits = make_commits()
    items = [{"sha": commits[0].sha[:7], "type": "feature"}]
    analyses = normalize_commit_analyses(items, commits)
    assert len(analyses) == 3
    assert analyses[1].confidence == FALLBACK_CONFIDENCE
    assert analyses[1].type == CommitType.CHORE
    assert analyses[1].description == commits[1].message


def test_position_used_when_sha_missing():
    commits = make_commits()
    items = [{"type": "feature"}, {"type": "bugfix"}, "garbage"]
    analyses = normalize_commit_analyses(items, commits)
    assert analyses[0].type == CommitType.FEATURE
    assert analyses[1].type == CommitType.BUGFIX
    assert analyses[2].confidence == FALLBACK_CONFIDENCE


def test_changelog_without_sections_rejected():
    with pytest.raises(ResponseParseError):
        normalize_generated_changelog({"version": "1.0", "title": "x"}, make_request())


def test_changelog_normalization_defaults():
    raw = {
        "sections": [
            {
                "title": "Misc",
                "changes": [
                    {"description": "Improve docs", "type": "docs", "pullRequests": ["#12", True, 7]},
                    {"type": "feature"},
                ],
            }
        ]
    }
    changelog = normalize_generated_changelog(raw, make_request())
    assert changelog.version == "2025-01-07"
    assert changelog.title == "Changes in main"
    section = changelog.sections[0]
    assert section.order == 1
    assert len(section.changes) == 1
    change = section.changes[0]
    assert change.type == ChangeType.ENHANCEMENT
    assert change.pull_requests == [12, 7]


def test_reconcile_overrides_model_counts():
    commits = make_commits()
    analyses = normalize_commit_analyses(json.loads(ANALYSIS_JSON), commits)
    changelog = normalize_generated_changelog(CHANGELOG_PAYLOAD, make_request())
    reconciled = reconcile_metadata(changelog, analyses, commits, CHANGELOG_PAYLOAD["metadata"])
    metadata = reconciled.metadata
    assert metadata.total_commits == 3
    assert metadata.contributors == 2
    assert metadata.breaking_changes == 0
    assert metadata.new_features == 1
    assert metadata.bug_fixes == 2
    assert metadata.files_changed == 4
    assert metadata.confidence == 0.7


def test_filter_excluded_is_case_insensitive():
    commits = make_commits() + [Commit(sha="d4e5f6a" + "0" * 33, message="WIP: chore(deps) bump httpx")]
    kept = filter_excluded(commits, ["wip", "typo"])
    assert [c.sha[:7] for c in kept] == ["a1b2c3d", "b2c3d4e"]


def test_filter_excluded_without_patterns():
    commits = make_commits()
    assert filter_excluded(commits, []) == commits


def test_analyze_commits_parses_fenced_output(settings):
    ai = ChangelogAI(FakeLLM([f"```json\n{ANALYSIS_JSON}\n```"]), settings=settings)
    analyses, response = asyncio.run(ai.analyze_commits(make_commits()))
    assert [a.type for a in analyses] == [CommitType.FEATURE, CommitType.BUGFIX, CommitType.BUGFIX]
    assert response.prompt_tokens == 10


def test_generate_changelog_returns_model_metadata(settings):
    ai = ChangelogAI(FakeLLM([CHANGELOG_JSON]), settings=settings)
    analyses = normalize_commit_analyses(json.loads(ANALYSIS_JSON), make_commits())
    changelog, model_metadata, _ = asyncio.run(ai.generate_changelog(analyses, make_request(), "acme/widgets"))
    assert [s.title for s in changelog.sections] == ["Features", "Bug Fixes"]
    assert changelog.change_count == 3
    assert model_metadata["filesChanged"] == 4


def test_failed_model_call_raises(settings):
    ai = ChangelogAI(FakeLLM([error_response(503)]), settings=settings)
    with pytest.raises(LanguageModelError) as excinfo:
        asyncio.run(ai.analyze_commits(make_commits()))
    assert excinfo.value.retryable is True


def test_missing_adapter_raises(settings):
    ai = ChangelogAI(None, settings=settings)
    assert ai.enabled is False
    with pytest.raises(LanguageModelError):
        asyncio.run(ai.suggest_tags("Add export"))


def test_suggest_tags_normalized(settings):
    ai = ChangelogAI(FakeLLM(['["Export", "export", "CSV", "ui", "api", "perf", "docs"]']), settings=settings)
    tags = asyncio.run(ai.suggest_tags("Add CSV export"))
    assert tags == ["export", "csv", "ui", "api", "perf"]


def test_enhance_description_falls_back_to_input(settings):
    ai = ChangelogAI(FakeLLM(['{"enhanced": "", "suggestions": ["a", "b", "c", "d"]}']), settings=settings)
    result = asyncio.run(ai.enhance_description("add export"))
    assert result.enhanced == "add export"
    assert result.suggestions == ["a", "b", "c"]
