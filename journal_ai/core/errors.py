# =============================================
# File: journal_ai/core/errors.py
# Purpose: Error taxonomy + FastAPI exception handlers ({code, message, details} envelope)
# =============================================
"""
Every HTTP error carries a machine-readable `code` so clients can branch on
it without parsing English messages.

Only Validation / Auth / Quota errors are meant to reach the client.
ProviderError is raised by the provider client and always absorbed by the
generation cascade.
"""
from __future__ import annotations

from typing import Any, Dict

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette import status

from journal_ai.utils import slog


class ServiceError(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(ServiceError):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class AuthError(ServiceError):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "User authentication required"):
        super().__init__(message)

    def headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class QuotaExceeded(ServiceError):
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, limit: int, reset_at_iso: str):
        super().__init__(
            message=(
                f"You've reached your daily limit of {limit} AI interactions. "
                "Upgrade to Premium for unlimited access."
            ),
            details={"limit": limit, "remaining": 0, "resetAt": reset_at_iso},
        )
        self.limit = limit
        self.reset_at_iso = reset_at_iso

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": self.reset_at_iso,
        }


class ProviderError(ServiceError):
    """Transport/HTTP failure talking to the generation provider."""
    http_status = status.HTTP_502_BAD_GATEWAY
    code = "PROVIDER_ERROR"

    # auth | rate-limit | bad-request | server | timeout | transport
    def __init__(self, failure: str, message: str = ""):
        super().__init__(message or failure, details={"failure": failure})
        self.failure = failure


class InternalError(ServiceError):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.opt(exception=exc).error(f"{exc.code} on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body/query validation failures surface as 400 with per-field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    slog.log_event(
        "request.unhandled",
        method=request.method,
        path=str(request.url.path),
        error_type=type(exc).__name__,
        error=str(exc),
    )
    err = InternalError("An unexpected error occurred.")
    return JSONResponse(status_code=err.http_status, content=err.to_dict())
