"""Research runs API -- start a run, poll it, list its candidates."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.deps import get_orchestrator, get_store
from database.models import Run
from database.run_store import RunStore
from database.schemas import (
    CandidateOut,
    CreateRunRequest,
    CreateRunResponse,
    RunOut,
    RunSummaryOut,
)
from processor.run_pipeline import RunInputError, RunOrchestrator

logger = logging.getLogger("adscout.api.runs")
router = APIRouter(prefix="/api/runs", tags=["runs"])


def _run_out(run: Run, candidates_count: int) -> RunOut:
    return RunOut(
        id=run.id,
        country=run.target_country,
        language=run.language,
        keywords=run.keywords_input or [],
        status=run.status,
        summary=run.summary_logs,
        created_at=run.created_at,
        finished_at=run.finished_at,
        candidates_count=candidates_count,
    )


@router.post("/create", status_code=status.HTTP_201_CREATED, response_model=CreateRunResponse)
async def create_run(
    body: CreateRunRequest,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    """Start a research run; processing continues in the background."""
    filters = body.filters.model_dump(exclude_none=True) if body.filters else None
    try:
        handle = await orchestrator.create_run(body.country, body.keywords, filters)
    except RunInputError as exc:
        logger.warning("Run rejected (country=%r): %s", body.country, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.info("Run %s started for %s", handle.run_id, body.country)
    return CreateRunResponse(
        run_id=handle.run_id,
        status="in_progress",
        message="Research started. Processing in background.",
    )


@router.get("", response_model=list[RunSummaryOut])
async def list_runs(
    limit: int = Query(50, ge=1, le=200),
    store: RunStore = Depends(get_store),
):
    """Most recent runs first."""
    runs = await store.list_runs(limit=limit)
    return [
        RunSummaryOut(
            id=r.id,
            country=r.target_country,
            keywords=r.keywords_input or [],
            status=r.status,
            created_at=r.created_at,
            finished_at=r.finished_at,
            summary=r.summary_logs,
        )
        for r in runs
    ]


@router.get("/{run_id}", response_model=RunOut)
async def get_run(run_id: str, store: RunStore = Depends(get_store)):
    run = await store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return _run_out(run, await store.count_candidates(run_id))


@router.get("/{run_id}/candidates", response_model=list[CandidateOut])
async def list_candidates(
    run_id: str,
    status_filter: str | None = Query(None, alias="status"),
    store: RunStore = Depends(get_store),
):
    """Candidates of one run, highest total_score first."""
    if await store.get_run(run_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    candidates = await store.list_candidates(run_id, status=status_filter)
    return [CandidateOut.model_validate(c) for c in candidates]
