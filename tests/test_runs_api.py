"""HTTP surface of the runs API, served in-process through httpx's ASGI transport."""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
import pytest
import pytest_asyncio

from api.deps import get_orchestrator, get_store
from api.main import app
from processor.config import PipelineSettings
from processor.run_pipeline import RunOrchestrator
from processor.run_supervisor import RunSupervisor


@pytest_asyncio.fixture
async def services(store, fake_source, scenario_ads, reference_ads):
    source = fake_source(by_market={"BR": scenario_ads, "AR": reference_ads})
    orchestrator = RunOrchestrator(store, source, supervisor=RunSupervisor(), settings=PipelineSettings())
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        yield orchestrator
    finally:
        app.dependency_overrides.clear()
        await orchestrator.supervisor.shutdown()


@pytest_asyncio.fixture
async def client(services):
    # fresh middleware instances, so rate-limit buckets start empty
    app.middleware_stack = None
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create_and_finish(client, services, payload):
    resp = await client.post("/api/runs/create", json=payload)
    assert resp.status_code == 201
    run_id = resp.json()["run_id"]
    await services.supervisor.wait(run_id)
    return run_id


@pytest.mark.asyncio
async def test_create_run_returns_immediately(client, services):
    resp = await client.post("/api/runs/create", json={"country": "BR", "keywords": ["ebook fitness"]})

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "in_progress"
    assert len(body["run_id"]) == 36
    assert "background" in body["message"]
    await services.supervisor.wait(body["run_id"])


@pytest.mark.asyncio
async def test_run_detail_after_completion(client, services):
    run_id = await _create_and_finish(client, services, {"country": "BR", "keywords": ["ebook fitness"]})

    resp = await client.get(f"/api/runs/{run_id}")
    assert resp.status_code == 200
    run = resp.json()
    assert run["status"] == "completed"
    assert run["country"] == "BR"
    assert run["language"] == "PT"
    assert run["keywords"] == ["ebook fitness"]
    assert run["candidates_count"] == 3
    assert run["summary"] == "Found 3 advertisers, 3 candidates saved"
    assert run["finished_at"] is not None


@pytest.mark.asyncio
async def test_candidates_sorted_and_filterable(client, services):
    run_id = await _create_and_finish(client, services, {"country": "BR", "keywords": ["ebook fitness"]})

    resp = await client.get(f"/api/runs/{run_id}/candidates")
    assert resp.status_code == 200
    scores = [c["total_score"] for c in resp.json()]
    assert scores == sorted(scores, reverse=True)

    resp = await client.get(
        f"/api/runs/{run_id}/candidates", params={"status": "approved_for_secondary_check"},
    )
    approved = resp.json()
    assert len(approved) == 1
    assert approved[0]["advertiser_name"] == "NutriForce Brasil"
    assert approved[0]["secondary_ads_count"] == 7
    assert approved[0]["secondary_check_status"] == "measured"
    assert approved[0]["platform_origin"] == "Meta Ad Library"


@pytest.mark.asyncio
async def test_camel_case_filters_accepted(client, services):
    run_id = await _create_and_finish(
        client, services,
        {"country": "BR", "keywords": ["ebook fitness"], "filters": {"minActiveAds": 5}},
    )

    resp = await client.get(
        f"/api/runs/{run_id}/candidates", params={"status": "approved_for_secondary_check"},
    )
    assert len(resp.json()) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"keywords": ["ebook"]},
    {"country": "BR"},
    {"country": "BR", "keywords": []},
    {"country": "", "keywords": ["ebook"]},
])
async def test_create_run_missing_fields(client, payload):
    resp = await client.post("/api/runs/create", json=payload)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required fields: country, keywords"


@pytest.mark.asyncio
async def test_create_run_unsupported_country(client):
    resp = await client.post("/api/runs/create", json={"country": "DE", "keywords": ["ebook"]})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_run_invalid_filter_value(client):
    resp = await client.post(
        "/api/runs/create",
        json={"country": "BR", "keywords": ["ebook"], "filters": {"min_active_ads": 0}},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unknown_run_is_404(client):
    assert (await client.get("/api/runs/nope")).status_code == 404
    assert (await client.get("/api/runs/nope/candidates")).status_code == 404


@pytest.mark.asyncio
async def test_list_runs_newest_first(client, services):
    first = await _create_and_finish(client, services, {"country": "BR", "keywords": ["ebook fitness"]})
    second = await _create_and_finish(client, services, {"country": "US", "keywords": ["keto"]})

    resp = await client.get("/api/runs", params={"limit": 10})
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == [second, first]


@pytest.mark.asyncio
async def test_markets(client):
    resp = await client.get("/api/markets")
    assert resp.status_code == 200
    markets = {m["code"]: m for m in resp.json()}
    assert set(markets) == {"BR", "MX", "CO", "CL", "US", "AR"}
    assert markets["BR"]["language"] == "PT"
    assert markets["US"]["name"] == "United States"


@pytest.mark.asyncio
async def test_security_headers(client):
    resp = await client.get("/api/markets")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_create_run_logs_start_and_rejection(client, services, caplog):
    with caplog.at_level(logging.INFO, logger="adscout.api.runs"):
        run_id = await _create_and_finish(client, services, {"country": "BR", "keywords": ["ebook fitness"]})
        await client.post("/api/runs/create", json={"country": "DE", "keywords": ["ebook"]})

    messages = [r.getMessage() for r in caplog.records if r.name == "adscout.api.runs"]
    assert f"Run {run_id} started for BR" in messages
    assert any(m.startswith("Run rejected (country='DE')") for m in messages)


@pytest.mark.asyncio
async def test_requests_are_logged_under_http_logger(client, caplog):
    with caplog.at_level(logging.INFO, logger="adscout.api.http"):
        await client.get("/api/runs/nope")

    assert "GET /api/runs/nope -> 404" in caplog.text
