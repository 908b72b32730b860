"""Request context middleware: X-Request-Id becomes the correlation id."""
from __future__ import annotations

import uuid
from typing import Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Bind the request id into structlog contextvars.

    The incoming X-Request-Id (or a fresh UUID) is stored on
    request.state.correlation_id, propagated to outbox events as their
    correlationId and echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def correlation_id(request: Request) -> str | None:
    """FastAPI dependency returning the request's correlation id."""
    return getattr(request.state, "correlation_id", None) or request.headers.get(
        REQUEST_ID_HEADER
    )
