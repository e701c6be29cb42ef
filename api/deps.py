"""Service dependencies for FastAPI routers.

The lifespan builds one store and one orchestrator per app and parks them on
``app.state``; tests swap them through ``app.dependency_overrides``.
"""

from fastapi import HTTPException, Request, status

from database.run_store import RunStore
from processor.run_pipeline import RunOrchestrator


def get_store(request: Request) -> RunStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Run store not initialized",
        )
    return store


def get_orchestrator(request: Request) -> RunOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Run orchestrator not initialized",
        )
    return orchestrator
