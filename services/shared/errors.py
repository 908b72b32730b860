"""
Error taxonomy shared by every service.

Each ServiceError carries the HTTP status it maps to at the route
boundary. Expected business outcomes (idempotent replay, insufficient
stock, duplicate messages) are returned as typed results instead.
"""
from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class BadRequestError(ServiceError):
    status_code = 400
    code = "BAD_REQUEST"


class ValidationError(ServiceError):
    status_code = 422
    code = "VALIDATION_ERROR"


class UnauthorizedError(ServiceError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class ConcurrencyError(ConflictError):
    code = "CONCURRENCY_CONFLICT"


class AlreadyProcessingError(ConflictError):
    code = "ALREADY_PROCESSING"

    def __init__(self, key: str) -> None:
        super().__init__(
            "A request with this idempotency key is still in progress",
            details={"idempotencyKey": key},
        )


class SignatureVerificationError(ServiceError):
    status_code = 422
    code = "INVALID_SNAPSHOT_SIGNATURE"


class DownstreamError(ServiceError):
    """A call to another service failed."""

    status_code = 502
    code = "DOWNSTREAM_ERROR"

    def __init__(self, service: str, message: str, *, details: Any = None) -> None:
        super().__init__(f"{service}: {message}", details=details)
        self.service = service


class DownstreamStatusError(DownstreamError):
    code = "DOWNSTREAM_STATUS"

    def __init__(self, service: str, status: int, body: Any) -> None:
        super().__init__(
            service,
            f"responded with status {status}",
            details={"status": status, "body": body},
        )
        self.status = status
        self.body = body


class DownstreamTimeoutError(DownstreamError):
    status_code = 504
    code = "DOWNSTREAM_TIMEOUT"


class DownstreamAbortError(DownstreamError):
    code = "DOWNSTREAM_ABORTED"


class PublishError(Exception):
    """Broker publish failed; the outbox row is marked failed."""


class UnknownEventTypeError(Exception):
    """Inbound event type is not part of the consumer's event union."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


def install_error_handlers(app: FastAPI) -> None:
    """Map the taxonomy to JSON ``{error, code, details}`` responses."""

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                code=exc.code,
                error=exc.message,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "Invalid request",
                "code": "VALIDATION_ERROR",
                "details": _jsonable_errors(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
        )


def _jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in errors
    ]
