"""
Domain errors for the refund lifecycle and their HTTP rendering.

Services raise these before any write so a failed guard never leaves a
partial mutation behind. Routes let them propagate; `register_error_handlers`
turns them into JSON responses of the form::

    {"detail": "...", "error_code": "INVALID_STATE_TRANSITION", "details": {...}}

GatewayError is the exception to the rule: the dispatcher catches it and
records a `failed` refund instead of letting it reach the HTTP layer.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = 400
    default_error_code: str = "APPLICATION_ERROR"

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {"detail": self.message, "error_code": self.error_code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(AppError):
    status_code = 400
    default_error_code = "VALIDATION_ERROR"


class InvalidStateTransition(AppError):
    status_code = 400
    default_error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: str, action: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {action} a refund request in status '{current}'",
            details={"current_status": current, "action": action},
        )
        self.current = current
        self.action = action


class NotFoundError(AppError):
    status_code = 404
    default_error_code = "NOT_FOUND"


class PermissionDenied(AppError):
    status_code = 403
    default_error_code = "FORBIDDEN"


class ConflictError(AppError):
    status_code = 409
    default_error_code = "CONFLICT"


class ActiveRefundExists(ConflictError):
    default_error_code = "ACTIVE_REFUND_EXISTS"

    def __init__(self, booking_id: str, refund_id: str | None = None):
        super().__init__(
            "An active refund request already exists for this booking",
            details={"booking_id": booking_id, "refund_id": refund_id} if refund_id else {"booking_id": booking_id},
        )


class RefundLockActive(ConflictError):
    default_error_code = "REFUND_LOCK_ACTIVE"

    def __init__(self, booking_id: str, refund_id: str | None = None):
        super().__init__(
            "This booking has an active refund request and cannot be changed until it is resolved",
            details={"booking_id": booking_id, "refund_id": refund_id},
        )


class GatewayError(Exception):
    """Payment provider failure: network error, timeout, rejection."""

    def __init__(self, provider: str, message: str, code: str = ""):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.code = code


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Body/query shape errors share the envelope and status of service-level validation
    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Invalid request",
                "error_code": ValidationError.default_error_code,
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        )
