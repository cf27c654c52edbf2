from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from challenge_messaging.config import settings
from challenge_messaging.infrastructure.db.session import AsyncSessionLocal

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    """Database and change-feed broker reachability, plus live feed subscriber count."""
    errors: list[str] = []
    body: dict[str, Any] = {"change_feed": settings.CHANGE_FEED_CHANNEL}

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        errors.append(f"postgres: {exc}")

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        errors.append("redis: not connected")
    else:
        try:
            await redis.ping()
            [(_, subscribers)] = await redis.pubsub_numsub(settings.CHANGE_FEED_CHANNEL)
            body["subscribers"] = int(subscribers)
        except Exception as exc:  # noqa: BLE001
            errors.append(f"redis: {exc}")

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": errors, **body},
        )
    return JSONResponse(content={"status": "ready", **body})
