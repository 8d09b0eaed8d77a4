import asyncio
import json
from datetime import timedelta

import pytest

from changelog_api.agent.analysis import normalize_commit_analyses
from changelog_api.database.models import utcnow
from changelog_api.errors import GenerationNotFoundError
from changelog_api.schemas import (
    AIMetadata,
    GeneratedChangelog,
    GenerationStatus,
)
from changelog_api.services.generations import GenerationStore

from tests.conftest import ANALYSIS_JSON, CHANGELOG_PAYLOAD, make_commits, make_request


def _content() -> GeneratedChangelog:
    return GeneratedChangelog(version="1.4.0", title="Widgets", sections=[])


def test_create_starts_processing(database):
    store = GenerationStore(database)
    record = asyncio.run(store.create(make_request(), user_id="user-1"))
    assert record.status == GenerationStatus.PROCESSING
    assert record.progress == 0
    assert record.generated_content is None
    assert record.date_start < record.date_end


def test_progress_never_decreases(database):
    store = GenerationStore(database)

    async def _run():
        record = await store.create(make_request())
        await store.update_progress(record.id, 40)
        await store.update_progress(record.id, 10)
        return await store.get(record.id)

    assert asyncio.run(_run()).progress == 40


def test_progress_persists_analyses(database):
    store = GenerationStore(database)
    analyses = normalize_commit_analyses(json.loads(ANALYSIS_JSON), make_commits())

    async def _run():
        record = await store.create(make_request())
        await store.update_progress(record.id, 40, commit_analyses=analyses)
        return await store.get(record.id)

    record = asyncio.run(_run())
    assert [a.sha for a in record.commit_analyses] == [c.sha for c in make_commits()]


def test_terminal_states_are_final(database):
    """Writes after completion are ignored."""
    store = GenerationStore(database)

    async def _run():
        record = await store.create(make_request())
        await store.complete(record.id, _content(), AIMetadata(model="m"))
        await store.fail(record.id, "LLM_ERROR: late failure")
        await store.update_progress(record.id, 50)
        return await store.get(record.id)

    record = asyncio.run(_run())
    assert record.status == GenerationStatus.COMPLETED
    assert record.progress == 100
    assert record.generated_content.title == "Widgets"


def test_fail_clears_content_and_keeps_reason(database):
    store = GenerationStore(database)

    async def _run():
        record = await store.create(make_request())
        await store.update_progress(record.id, 40)
        await store.fail(record.id, "PARSE_ERROR: bad output")
        await store.complete(record.id, _content(), AIMetadata())
        return await store.get(record.id)

    record = asyncio.run(_run())
    assert record.status == GenerationStatus.FAILED
    assert record.generated_content is None
    assert record.state.reason == "PARSE_ERROR: bad output"
    assert record.progress == 40


def test_completed_content_round_trips(database):
    store = GenerationStore(database)
    content = GeneratedChangelog.model_validate(
        {**CHANGELOG_PAYLOAD, "metadata": {"total_commits": 3, "bug_fixes": 2}}
    )

    async def _run():
        record = await store.create(make_request())
        await store.complete(record.id, content, AIMetadata(model="m", bug_fixes=2))
        return await store.get(record.id)

    record = asyncio.run(_run())
    assert record.generated_content == content
    assert record.ai_metadata.bug_fixes == 2


def test_get_is_owner_scoped(database):
    store = GenerationStore(database)
    record = asyncio.run(store.create(make_request(), user_id="user-1"))
    assert asyncio.run(store.get(record.id, user_id="user-1")) is not None
    assert asyncio.run(store.get(record.id, user_id="user-2")) is None
    assert asyncio.run(store.get("missing")) is None


def test_update_missing_generation_is_ignored(database):
    store = GenerationStore(database)
    assert asyncio.run(store.update_progress("missing", 10)) is None


def test_save_list_and_delete(database):
    store = GenerationStore(database)

    async def _run():
        record = await store.create(make_request(), user_id="user-1")
        await store.create(make_request(), user_id="user-1")
        await store.save(record.id, "user-1")
        saved = await store.list_saved("user-1")
        await store.delete(record.id, "user-1")
        return record, saved, await store.get(record.id)

    record, saved, deleted = asyncio.run(_run())
    assert [r.id for r in saved] == [record.id]
    assert saved[0].is_saved is True
    assert deleted is None


def test_save_rejects_other_owner(database):
    store = GenerationStore(database)
    record = asyncio.run(store.create(make_request(), user_id="user-1"))
    with pytest.raises(GenerationNotFoundError):
        asyncio.run(store.save(record.id, "user-2"))
    with pytest.raises(GenerationNotFoundError):
        asyncio.run(store.delete(record.id, "user-2"))


def test_expire_stale_respects_cutoff(database):
    store = GenerationStore(database)

    async def _run():
        record = await store.create(make_request())
        recent = await store.expire_stale(older_than=utcnow() - timedelta(minutes=30))
        everything = await store.expire_stale()
        return recent, everything, await store.get(record.id)

    recent, everything, record = asyncio.run(_run())
    assert recent == 0
    assert everything == 1
    assert record.status == GenerationStatus.FAILED
    assert record.state.reason.startswith("STALE")
