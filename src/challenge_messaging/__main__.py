"""Entrypoint: python -m challenge_messaging"""
from __future__ import annotations

import logging

import uvicorn

from challenge_messaging.api.middleware.correlation_id import RequestIdLogFilter
from challenge_messaging.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [rid=%(request_id)s]: %(message)s"


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdLogFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        "challenge_messaging.app:create_app",
        factory=True,
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
