"""
Snapgram Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for every failure the gateway,
       services and query layer can surface.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) turn these into
       structured JSON error responses with correct HTTP status codes, so a
       caller always receives a failure envelope it can show as a
       notification, never a raw stack trace.
Who:   Raised by the gateway, services and query layer; caught by handlers.

Exception Hierarchy:
    SnapgramError (base)
    ├── ValidationError          → 400 Bad Request (caught before any backend call)
    ├── AuthenticationError      → 401 Unauthorized
    ├── PermissionDeniedError    → 403 Forbidden (acting on another user's document)
    ├── NotFoundError            → 404 Not Found
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── PartialWriteError        → 500 (multi-step write failed after a side effect)
    └── TransportError           → 503 (backend unreachable / timed out / failed)
        ├── CircuitBreakerOpenError
        └── FileStorageError
"""

from typing import Any, Dict, Optional


class SnapgramError(Exception):
    """
    Base exception for all Snapgram application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SnapgramError):
    """
    Raised when caller input is malformed.

    When:  Coordinates out of range, negative distance, bad file type/size,
           empty caption, weak password, non-string ids in a likes array.
    HTTP:  400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(SnapgramError):
    """
    Raised when credentials or a session token are rejected.

    HTTP:  401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Authentication failed. Please sign in again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(SnapgramError):
    """
    Raised when a signed-in user acts on a document they do not own.

    When:  Editing or deleting another user's post, reading another
           user's saved posts.
    HTTP:  403 Forbidden
    """

    def __init__(
        self,
        message: str = "You are not allowed to do that.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(SnapgramError):
    """
    Raised when a referenced document does not exist.

    When:  get/update/delete of a missing post, follow target missing,
           unknown file id.
    HTTP:  404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class RateLimitExceededError(SnapgramError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:  429 Too Many Requests (with Retry-After header)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class PartialWriteError(SnapgramError):
    """
    Raised when a multi-step write fails after an earlier step already had
    a side effect (file uploaded, account created).

    Raised only AFTER the compensating cleanup has run. `cleaned_up` reports
    whether the cleanup itself succeeded; when it did not, the orphan's id
    is kept in context for operators.

    HTTP:  500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "The operation could not be completed. Please try again.",
        cleaned_up: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["cleaned_up"] = cleaned_up
        super().__init__(message=message, context=ctx)
        self.cleaned_up = cleaned_up


class TransportError(SnapgramError):
    """
    Raised when the backend is unreachable, times out, or fails.

    The gateway translates every raw driver/OS exception into this type;
    nothing lower-level crosses the gateway boundary.

    HTTP:  503 Service Unavailable
    """

    def __init__(
        self,
        message: str = "The service is temporarily unavailable. Please try again.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(TransportError):
    """
    Raised when the gateway's circuit breaker is OPEN.

    Calls fail immediately until `recovery_time` seconds have elapsed, then
    one trial call is let through (HALF_OPEN).
    """

    def __init__(
        self,
        recovery_time: int = 30,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                "The backend is temporarily unavailable due to repeated failures. "
                f"Please retry in approximately {recovery_time} seconds."
            ),
            retry_after=recovery_time,
            context=ctx,
        )
        self.recovery_time = recovery_time


class FileStorageError(TransportError):
    """
    Raised when the file store cannot read, write or delete a file.

    The response message is generic; paths and OS errors stay in context.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
