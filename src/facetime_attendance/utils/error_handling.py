"""
Error types and FastAPI exception handlers.

Every failure is scoped to the request that caused it; nothing here retries.
Domain errors carry the HTTP status they map to and are rendered as
``{"error": message}``. Ceremony failures additionally carry
``"verified": false`` so browser code can branch on a single field.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.utils.logging_utils import log_error_with_context

logger = get_logger(prefix="[Error Handling]")

INTERNAL_ERROR_MESSAGE = "Internal Server Error"


@dataclass
class ErrorContext:
    """Context information attached to error logs."""

    operation: str
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "operation": self.operation,
            "user_id": self.user_id,
            "request_id": self.request_id,
            "ip_address": self.ip_address,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class AttendanceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    ceremony_failure: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.ceremony_failure:
            payload["verified"] = False
        return payload


class InputError(AttendanceError):
    """Malformed or missing request input."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AttendanceError):
    """A user (or a user's authenticators) does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class AuthenticatorNotFoundError(NotFoundError):
    """The credential presented is not registered to the user."""

    ceremony_failure = True

    def __init__(self, message: str = "Authenticator is not registered for this user"):
        super().__init__(message)


class ConflictError(AttendanceError):
    """A name or credential ID is already taken."""

    status_code = status.HTTP_409_CONFLICT


class ChallengeNotFoundError(AttendanceError):
    """No live challenge is stored for the user; the ceremony must restart."""

    status_code = status.HTTP_400_BAD_REQUEST
    ceremony_failure = True

    def __init__(self, message: str = "Challenge not found or expired, please retry the ceremony"):
        super().__init__(message)


class VerificationFailedError(AttendanceError):
    """A WebAuthn response did not verify."""

    status_code = status.HTTP_400_BAD_REQUEST
    ceremony_failure = True

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return getattr(request.client, "host", "unknown")


async def attendance_error_handler(request: Request, exc: AttendanceError) -> JSONResponse:
    logger.info(
        "%s on %s %s -> %d: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "invalid value")
    else:
        message = "Invalid request"
    logger.info("Request validation failed on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    context = ErrorContext(
        operation=f"{request.method} {request.url.path}",
        ip_address=_client_ip(request),
    )
    log_error_with_context(exc, context=context.to_dict(), operation=context.operation)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": INTERNAL_ERROR_MESSAGE},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on ``app``."""
    app.add_exception_handler(AttendanceError, attendance_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
