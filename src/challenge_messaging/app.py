from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from challenge_messaging.api.middleware.correlation_id import CorrelationIdMiddleware
from challenge_messaging.api.middleware.metrics import RequestTimingMiddleware
from challenge_messaging.api.v1.routers import health, kpi, messages, notifications, ws
from challenge_messaging.application.exceptions import (
    ForbiddenError,
    ValidationError,
)
from challenge_messaging.config import settings
from challenge_messaging.infrastructure.bus.redis_change_feed import redis_change_feed_factory
from challenge_messaging.infrastructure.db.session import dispose_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    app.state.change_feed_factory = redis_change_feed_factory(
        app.state.redis,
        settings.CHANGE_FEED_CHANNEL,
        subscribe_timeout=settings.FEED_SUBSCRIBE_TIMEOUT_SECONDS,
    )
    logger.info("Redis connection pool created (change feed channel=%s)", settings.CHANGE_FEED_CHANNEL)

    yield

    await app.state.redis.aclose()
    await dispose_engine()
    logger.info("Redis and database pools closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Challenge Messaging Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(messages.router)
    app.include_router(notifications.router)
    app.include_router(kpi.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})
