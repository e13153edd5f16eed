"""
Back2U — FastAPI Application Entry Point

Application with:
- Async lifespan management (DB pool warm-up, shared outbound HTTP client)
- CORS, request deadline and request-id logging middleware
- Liveness and readiness probes
- Error handlers rendering service, HTTP and unexpected errors as
  ``{"error": message}``
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from back2u.config import get_settings
from back2u.database import async_session_factory, engine
from back2u.services.errors import Back2UError

settings = get_settings()

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("back2u")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    # -- Startup --------------------------------------------------------- #
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
        match_scorer=settings.MATCH_SCORER,
    )

    # 1. Database connection pool (a trivial query warms it)
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    # 2. Shared outbound HTTP client (AI gateway, notification sink)
    app.state.http_client = httpx.AsyncClient(
        timeout=settings.AI_REQUEST_TIMEOUT_SECONDS
    )
    logger.info("http_client_opened")

    logger.info("startup_complete")

    yield

    # -- Shutdown -------------------------------------------------------- #
    logger.info("shutdown_begin")

    await app.state.http_client.aclose()
    logger.info("http_client_closed")

    await engine.dispose()
    logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class DeadlineMiddleware(BaseHTTPMiddleware):
    """Answer 504 once a request has run past ``REQUEST_TIMEOUT_SECONDS``.

    A matching invocation interrupted here keeps whatever match records it
    had already committed.
    """

    def __init__(self, app, deadline_seconds: float = 70.0) -> None:
        super().__init__(app)
        self.deadline_seconds = deadline_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), self.deadline_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "request_deadline_exceeded",
                path=request.url.path,
                deadline_seconds=self.deadline_seconds,
            )
            return JSONResponse(status_code=504, content={"error": "Request timed out"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id into the structlog context and log the outcome.

    Every event logged while the request runs (selection, scoring, match
    recording, notification dispatch) carries the same ``request_id``.
    The id is taken from ``X-Request-ID`` when the caller supplies one
    and is echoed back on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", elapsed_ms=_elapsed_ms(started))
            raise

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            status=response.status_code,
            elapsed_ms=_elapsed_ms(started),
        )
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 1)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Back2U",
    description="Lost & found matching service",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (last added runs first) ------------------------------------ #

app.add_middleware(RequestContextMiddleware)
app.add_middleware(DeadlineMiddleware, deadline_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -- Error handlers -------------------------------------------------------- #

@app.exception_handler(Back2UError)
async def service_error_handler(request: Request, exc: Back2UError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "service_error",
        error_type=type(exc).__name__,
        error=exc.message,
        path=request.url.path,
        status=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Starlette re-raises after this response is sent, so the traceback
    # still reaches the server log.
    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
    )
    return JSONResponse(status_code=500, content={"error": str(exc) or "Unknown error"})


# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Liveness probe: healthy whenever the process is
    running."""
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness probe: a database round-trip plus the scorer and
    notification wiring this process is running with."""
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "scorer": settings.MATCH_SCORER,
        "notification_sink": "http" if settings.NOTIFICATION_SINK_URL else "local",
        "email": "enabled" if settings.email_enabled else "disabled",
    }

    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    if settings.MATCH_SCORER == "oracle" and not settings.AI_GATEWAY_API_KEY:
        result["scorer"] = "oracle: AI_GATEWAY_API_KEY not set"
        result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from back2u.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
