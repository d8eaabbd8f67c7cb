"""
Talesy Comments — FastAPI application entrypoint.
Wires the comment routes, the notification socket, CORS, the shared
rate limiter and the error envelope into one app.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from talesy.api.v1.comments import limiter
from talesy.api.v1.router import api_router
from talesy.core.config import settings
from talesy.core.exceptions import register_exception_handlers
from talesy.db.session import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Starting %s v%s (max length=%d, max depth=%d, comment rate=%s)",
        settings.APP_NAME,
        settings.APP_VERSION,
        settings.COMMENT_MAX_LENGTH,
        settings.COMMENT_MAX_DEPTH,
        settings.RATE_LIMIT_COMMENT,
    )
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Threaded comment engine for Talesy stories: nested replies, "
            "edits, cascading deletes and likes, with real-time notifications."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Per-route limits are declared on the comment write endpoints.
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    return app


app = create_application()
