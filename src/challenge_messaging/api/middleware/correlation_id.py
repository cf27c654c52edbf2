"""Request id propagation.

The id arrives in X-Request-ID (or is minted), is echoed on the response, and
is stamped on every log record emitted while the request is handled.
"""
from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")

HEADER = "X-Request-ID"
MAX_ID_LENGTH = 128


class RequestIdLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = correlation_id_ctx.get() or "-"
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming = request.headers.get(HEADER, "")
        # Client-supplied ids end up in logs; keep them short.
        rid = incoming if 0 < len(incoming) <= MAX_ID_LENGTH else uuid.uuid4().hex
        token = correlation_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(token)
        response.headers[HEADER] = rid
        return response
