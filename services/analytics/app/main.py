import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.database import init_db
from app.dependencies import get_settings
from app.ingestion.router import router as ingestion_router
from app.rate_limit import limiter
from app.summary.admin_router import router as summary_admin_router
from app.summary.router import router as progress_router
from shared.database.redis_client import get_redis_client
from shared.middleware import (
    RequestIdLogFilter,
    error_envelope_middleware,
    http_exception_handler,
    request_id_middleware,
    validation_exception_handler,
)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"

# Swagger tag groups displayed in the OpenAPI docs sidebar
_OPENAPI_TAGS = [
    {
        "name": "Ingestion",
        "description": (
            "Playback telemetry from video players: session start, periodic progress, "
            "completion. Idempotent by session_id; anonymous viewers allowed. "
            "Rate limits per client IP: view 60/min, progress 120/min, complete 60/min."
        ),
    },
    {
        "name": "Progress",
        "description": "Resume checkpoints for the signed-in viewer.",
    },
    {
        "name": "Analytics Admin",
        "description": (
            "Dashboard reads served cache-aside from the hourly summary projection: "
            "per-video and per-course summaries, popular videos, heatmaps, session "
            "drill-down, and on-demand refresh. Requires an analyst or admin role."
        ),
    },
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
]


class HealthResponse(BaseModel):
    status: str
    service: str


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)
    request_filter = RequestIdLogFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(request_filter)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    # Ingestion round-trips are cut short by bounded(); the engine-wide limit
    # has to leave room for the inline admin refresh.
    init_db(
        settings.analytics_database_url,
        command_timeout=max(
            settings.analytics_db_timeout_secs, settings.analytics_refresh_timeout_secs
        ),
    )
    redis_client = get_redis_client(
        settings.redis_url, socket_timeout=settings.analytics_cache_timeout_secs
    )
    app.state.redis = redis_client

    # Catalog lookups are optional; without a base URL the client values are used.
    app.state.catalog_client = None
    if settings.catalog_base_url:
        app.state.catalog_client = httpx.AsyncClient(timeout=settings.catalog_timeout_secs)

    yield

    await redis_client.aclose()
    if app.state.catalog_client is not None:
        await app.state.catalog_client.aclose()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="VidPulse Analytics Service",
        description=(
            "Video engagement telemetry: ingests playback events into session records, "
            "heatmap segments and resume checkpoints, and serves pre-aggregated "
            "summaries to the admin dashboard."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=_OPENAPI_TAGS,
        lifespan=lifespan,
    )

    # Attach rate limiter state before middleware
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # CORS must be outermost so ALL responses (including 429s) carry CORS headers.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(ingestion_router, prefix="/api/v1")
    app.include_router(progress_router, prefix="/api/v1")
    app.include_router(summary_admin_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        """Lightweight liveness probe. Does not hit the database."""
        return HealthResponse(status="ok", service="analytics")

    return app


app = create_app()
