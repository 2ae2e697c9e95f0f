"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subsync.api.errors import ApiError
from subsync.api.logging import setup_logging
from subsync.api.routes import router
from subsync.api.sessions import SessionManager
from subsync.core.assrt import AssrtClient
from subsync.core.opensubtitles import OpenSubtitlesClient
from subsync.utils.config import get_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = structlog.get_logger()


def _build_client() -> AssrtClient | None:
    """Create the remote client, or None when no token is configured."""
    try:
        return AssrtClient.from_settings(get_settings())
    except ValueError as exc:
        logger.warning("remote_search_disabled", reason=str(exc))
        return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: setup/teardown."""
    setup_logging()
    settings = get_settings()
    client = _build_client()
    fallback = OpenSubtitlesClient.from_settings(settings)
    if fallback is None:
        logger.info("fallback_search_disabled", reason="OPENSUBTITLES_API_KEY not set")
    manager = SessionManager(
        client,
        fallback=fallback,
        ttl_seconds=settings.session_ttl_seconds,
        interval_ms=settings.sync_interval_ms,
        delay_step_ms=settings.delay_step_ms,
    )
    app.state.session_manager = manager
    await manager.start_cleanup_loop()
    yield
    await manager.stop_cleanup_loop()
    await manager.close_all()
    for source in (client, fallback):
        if source is not None:
            source.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="subsync",
        description="Subtitle search, parsing and playback synchronization",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global error handler
    @app.exception_handler(ApiError)
    async def api_error_handler(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "code": exc.code,
                "message": exc.message,
                "detail": exc.detail,
            },
            headers=exc.headers,
        )

    app.include_router(router)
    return app


app = create_app()
