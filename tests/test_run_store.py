"""Run/candidate persistence against a throwaway SQLite file."""

import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest

from database.models import CandidateStatus, RunStatus
from database.run_store import RunNotFoundError, RunStateError, check_transition, utcnow


def _run_fields(**overrides):
    fields = {
        "target_country": "BR",
        "language": "PT",
        "keywords_input": ["ebook fitness"],
        "filter_params": {},
    }
    fields.update(overrides)
    return fields


def _candidate(run_id, name, score, status=CandidateStatus.PENDING.value):
    return {
        "run_id": run_id,
        "keyword_origin": "ebook fitness",
        "advertiser_name": name,
        "ad_library_page_url": f"https://facebook.com/{name}",
        "product_detected": "ebook fitness",
        "active_ads_count": 10,
        "uniproduct_ratio": 0.5,
        "duplicates_score": 0.1,
        "total_score": score,
        "validation_reasons": "✗ Only 10 active ads (<20)",
        "status": status,
    }


@pytest.mark.asyncio
async def test_create_and_get_run(store):
    run_id = await store.create_run(**_run_fields())
    run = await store.get_run(run_id)

    assert len(run_id) == 36
    assert run.status == RunStatus.IN_PROGRESS.value
    assert run.keywords_input == ["ebook fitness"]
    assert run.created_at is not None
    assert run.finished_at is None


@pytest.mark.asyncio
async def test_get_unknown_run_returns_none(store):
    assert await store.get_run("does-not-exist") is None


@pytest.mark.asyncio
async def test_create_rejects_unknown_fields(store):
    with pytest.raises(TypeError):
        await store.create_run(**_run_fields(colour="blue"))


@pytest.mark.asyncio
async def test_update_run_to_completed(store):
    run_id = await store.create_run(**_run_fields())
    finished = utcnow()
    await store.update_run(
        run_id, status=RunStatus.COMPLETED.value, finished_at=finished, summary_logs="done",
    )

    run = await store.get_run(run_id)
    assert run.status == "completed"
    assert run.summary_logs == "done"
    assert run.finished_at == finished


@pytest.mark.asyncio
async def test_terminal_run_cannot_change_status(store):
    run_id = await store.create_run(**_run_fields())
    await store.update_run(run_id, status=RunStatus.ERROR.value)

    with pytest.raises(RunStateError):
        await store.update_run(run_id, status=RunStatus.COMPLETED.value)
    assert (await store.get_run(run_id)).status == "error"


@pytest.mark.asyncio
async def test_update_unknown_run(store):
    with pytest.raises(RunNotFoundError):
        await store.update_run("missing", status=RunStatus.COMPLETED.value)


def test_check_transition_rules():
    check_transition("in_progress", "completed")
    check_transition("in_progress", "error")
    check_transition("completed", "completed")
    with pytest.raises(RunStateError):
        check_transition("completed", "in_progress")
    with pytest.raises(ValueError):
        check_transition("in_progress", "paused")


@pytest.mark.asyncio
async def test_candidates_listed_by_score(store):
    run_id = await store.create_run(**_run_fields())
    await store.insert_candidates([
        _candidate(run_id, "low", 20),
        _candidate(run_id, "top", 95, CandidateStatus.APPROVED_FOR_SECONDARY_CHECK.value),
        _candidate(run_id, "mid", 60),
    ])

    candidates = await store.list_candidates(run_id)
    assert [c.advertiser_name for c in candidates] == ["top", "mid", "low"]
    assert candidates[0].platform_origin == "Meta Ad Library"
    assert candidates[1].secondary_ads_count is None
    assert await store.count_candidates(run_id) == 3

    approved = await store.list_candidates(
        run_id, status=CandidateStatus.APPROVED_FOR_SECONDARY_CHECK.value,
    )
    assert [c.advertiser_name for c in approved] == ["top"]


@pytest.mark.asyncio
async def test_candidates_scoped_to_run(store):
    first = await store.create_run(**_run_fields())
    second = await store.create_run(**_run_fields(target_country="MX", language="ES"))
    await store.insert_candidates([_candidate(first, "a", 10), _candidate(second, "b", 10)])

    assert [c.advertiser_name for c in await store.list_candidates(second)] == ["b"]
    assert await store.count_candidates(first) == 1


@pytest.mark.asyncio
async def test_insert_is_all_or_nothing(store):
    run_id = await store.create_run(**_run_fields())
    broken = _candidate(run_id, "broken", 10)
    broken["advertiser_name"] = None  # NOT NULL

    with pytest.raises(Exception):
        await store.insert_candidates([_candidate(run_id, "ok", 50), broken])
    assert await store.count_candidates(run_id) == 0


@pytest.mark.asyncio
async def test_insert_empty_list_is_noop(store):
    run_id = await store.create_run(**_run_fields())
    await store.insert_candidates([])
    assert await store.count_candidates(run_id) == 0


@pytest.mark.asyncio
async def test_list_runs_newest_first(store):
    base = datetime(2026, 3, 1, 12, 0, 0)
    ids = [
        await store.create_run(**_run_fields(created_at=base + timedelta(minutes=i)))
        for i in range(3)
    ]

    runs = await store.list_runs()
    assert [r.id for r in runs] == list(reversed(ids))
    assert [r.id for r in await store.list_runs(limit=2)] == [ids[2], ids[1]]
