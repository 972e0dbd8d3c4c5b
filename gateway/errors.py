"""Error taxonomy and the handlers that turn it into envelope responses.

Services raise ``APIError`` subclasses; raw exceptions never leave the
gateway. Every error response carries a machine code, a user-facing message,
a ``retryable`` flag and suggested actions.
"""

import logging
from typing import List, Optional, Sequence

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from contracts.schemas.envelope import Envelope, ErrorAction, ErrorBody, ErrorDetail

logger = logging.getLogger(__name__)

RETRY = ErrorAction(type="retry", label="Try again")
LOGIN = ErrorAction(type="login", label="Sign in again")
CONTACT_SUPPORT = ErrorAction(type="contact_support", label="Contact support")


class APIError(Exception):
    """Base class of every error that crosses the gateway boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    user_message: str = "Something went wrong. Please try again later."
    retryable: bool = False
    actions: Sequence[ErrorAction] = ()

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message or self.user_message
        if code is not None:
            self.code = code
        if user_message is not None:
            self.user_message = user_message
        if retryable is not None:
            self.retryable = retryable
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> ErrorBody:
        return ErrorBody(
            code=self.code,
            message=self.message,
            user_message=self.user_message,
            retryable=self.retryable,
            actions=list(self.actions) or None,
            details=self.details,
        )


class ValidationError(APIError):
    """Carries every offending field, never only the first one."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    user_message = "Some of the information provided is invalid."

    def __init__(self, details: List[ErrorDetail], message: Optional[str] = None, *, unprocessable: bool = False):
        if unprocessable:
            self.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        fields = ", ".join(d.field for d in details)
        super().__init__(message or f"Invalid fields: {fields}", details=details)


class AuthenticationError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_FAILED"
    user_message = "Please sign in to continue."
    actions = (LOGIN,)

    @classmethod
    def invalid_credentials(cls) -> "AuthenticationError":
        return cls(
            "Invalid email or password",
            code="INVALID_CREDENTIALS",
            user_message="The email or password you entered is incorrect.",
        )

    @classmethod
    def token_expired(cls) -> "AuthenticationError":
        return cls(
            "Access token has expired",
            code="TOKEN_EXPIRED",
            user_message="Your session has expired. Please sign in again.",
        )

    @classmethod
    def token_invalid(cls, reason: str = "Invalid token") -> "AuthenticationError":
        return cls(reason, code="TOKEN_INVALID")

    @classmethod
    def refresh_token_invalid_or_reused(cls) -> "AuthenticationError":
        return cls(
            "Refresh token is invalid or has already been used",
            code="REFRESH_TOKEN_INVALID_OR_REUSED",
            user_message="Your session is no longer valid. Please sign in again.",
        )


class AuthorizationError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    user_message = "You don't have access to this resource."


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    user_message = "The requested item could not be found."

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class ConflictError(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    user_message = "This request conflicts with the current state."

    @classmethod
    def duplicate_email(cls) -> "ConflictError":
        return cls(
            "Email is already registered",
            code="DUPLICATE_EMAIL",
            user_message="An account with this email already exists.",
        )

    @classmethod
    def slot_unavailable(cls, facility_id: str, day: str, time_slot: str) -> "ConflictError":
        return cls(
            f"Slot {day} {time_slot} at facility {facility_id} is not available",
            code="SLOT_UNAVAILABLE",
            user_message="That time slot was just taken. Please pick another one.",
        )

    @classmethod
    def invalid_transition(cls, resource: str, current: str, target: str) -> "ConflictError":
        return cls(
            f"{resource} cannot move from {current} to {target}",
            code="INVALID_STATE_TRANSITION",
            user_message="This action is not available right now.",
        )


class RateLimitError(APIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    user_message = "Too many attempts. Please wait a moment and try again."
    retryable = True
    actions = (RETRY,)

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")


class ProcessingError(APIError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "PROCESSING_ERROR"
    user_message = "We couldn't process this document."

    def __init__(self, message: str, *, step: str, recoverable: bool):
        self.step = step
        self.recoverable = recoverable
        if recoverable:
            self.actions = (RETRY,)
        super().__init__(message, retryable=recoverable)


class ServiceUnavailableError(APIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    user_message = "The service is temporarily unavailable. Please try again shortly."
    retryable = True
    actions = (RETRY,)


class InternalError(APIError):
    actions = (RETRY, CONTACT_SUPPORT)


_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_FAILED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def error_response(exc: APIError) -> JSONResponse:
    envelope = Envelope(success=False, data=None, error=exc.to_body())
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    elif exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=envelope.to_wire(), headers=headers)


def request_validation_details(exc: RequestValidationError) -> List[ErrorDetail]:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        value = err.get("input")
        details.append(
            ErrorDetail(
                field=".".join(loc) or "body",
                message=err.get("msg", "Invalid value"),
                value=None if value is None or isinstance(value, (dict, list)) else str(value),
            )
        )
    return details


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Install envelope-producing handlers on ``app``."""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response(ValidationError(request_validation_details(exc)))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error = APIError(
            str(exc.detail),
            code=_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
            user_message=str(exc.detail),
        )
        error.status_code = exc.status_code
        return error_response(error)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        error = InternalError(str(exc) if debug else "Internal server error")
        return error_response(error)
