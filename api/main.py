"""FastAPI app entrypoint."""

import asyncio
import logging
import os
import time
import traceback
from collections import defaultdict
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from api.logging_config import setup_logging
from api.routers import markets, runs
from crawler.ad_library import get_ad_library_source
from database import async_session, engine, init_db
from database.run_store import RunStore
from processor.run_pipeline import RunOrchestrator
from processor.run_supervisor import RunSupervisor

logger = logging.getLogger("adscout.api")
http_logger = logging.getLogger("adscout.api.http")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Init DB, build the run services, tear them down on shutdown."""
    setup_logging()
    logger.info("AdScout API starting up")
    await init_db()

    source = get_ad_library_source()
    supervisor = RunSupervisor()
    app.state.store = RunStore(async_session)
    app.state.supervisor = supervisor
    app.state.orchestrator = RunOrchestrator(app.state.store, source, supervisor=supervisor)
    logger.info("Ad library provider: %s", type(source).__name__)
    try:
        yield
    finally:
        logger.info("AdScout API shutting down")
        await supervisor.shutdown()
        await source.close()
        await engine.dispose()
        logger.info("Database engine disposed")


app = FastAPI(
    title="AdScout API",
    description="Meta Ad Library advertiser research for LATAM/US markets",
    version=VERSION,
    lifespan=lifespan,
    redirect_slashes=False,
)

_cors_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001")
CORS_ORIGINS = [o.strip() for o in _cors_origins.split(",") if o.strip()]


# ---------------------------------------------------------------------------
# Rate limiting middleware
# ---------------------------------------------------------------------------
class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory rate limiter per client IP + route group."""

    _CLEANUP_INTERVAL = 3600  # 1 hour

    def __init__(self, app):
        super().__init__(app)
        self.requests: dict[str, list[float]] = defaultdict(list)
        self._last_cleanup = time.time()
        self._lock = asyncio.Lock()

    def _cleanup_stale_keys(self):
        """Remove keys whose timestamp lists are entirely expired (>120s old)."""
        now = time.time()
        if now - self._last_cleanup < self._CLEANUP_INTERVAL:
            return
        self._last_cleanup = now
        stale_keys = [
            k for k, ts_list in self.requests.items()
            if not ts_list or (now - ts_list[-1]) > 120
        ]
        for k in stale_keys:
            del self.requests[k]
        if stale_keys:
            logger.debug("Rate limiter cleanup: removed %d stale keys", len(stale_keys))

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        # Rate limit config: (max_requests, window_seconds, bucket_key)
        if path.startswith("/api/runs/create"):
            limit, window, bucket = 10, 60, "create"
        elif path.startswith("/api/"):
            limit, window, bucket = 120, 60, "api"
        else:
            return await call_next(request)

        async with self._lock:
            self._cleanup_stale_keys()

            key = f"{client_ip}:{bucket}"
            now = time.time()
            self.requests[key] = [t for t in self.requests[key] if now - t < window]

            if len(self.requests[key]) >= limit:
                oldest = self.requests[key][0]
                retry_after = int(window - (now - oldest)) + 1
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Too many requests. Please try again later."},
                    headers={"Retry-After": str(retry_after)},
                )

            self.requests[key].append(now)

        return await call_next(request)


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject standard security headers into every response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        http_logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        headers = getattr(exc, "headers", None) or {}
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.error(
        "Unhandled exception on %s %s: %s (type=%s)",
        request.method,
        request.url.path,
        str(exc),
        type(exc).__name__,
    )
    logger.debug(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(runs.router)
app.include_router(markets.router)


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API docs."""
    from fastapi.responses import RedirectResponse
    return RedirectResponse(url="/docs")


@app.get("/health")
async def health(request: Request):
    health_status = {"status": "ok", "service": "adscout-api", "version": VERSION}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["database"] = f"error: {str(e)}"

    supervisor = getattr(request.app.state, "supervisor", None)
    if supervisor is not None:
        health_status["active_runs"] = len(supervisor.active_runs())
    return health_status
