# app/core/errors.py
"""
Error taxonomy for the class access service.

Every error carries a category, an HTTP status, structured details and a
retryable flag so callers can decide whether to retry, redirect, or give up.
"""

from typing import Optional


class ErrorCategory:
    """Error categories for structured error handling"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    STORE_UNAVAILABLE = "store_unavailable"
    LOCK_TIMEOUT = "lock_timeout"
    VALIDATION = "validation_error"
    INTERNAL = "internal_error"


class AppError(Exception):
    """Base application error with structured information"""

    def __init__(
        self,
        message: str,
        category: str = ErrorCategory.INTERNAL,
        status_code: int = 500,
        details: Optional[dict] = None,
        retry_after: Optional[int] = None,
        retryable: bool = False,
    ):
        self.message = message
        self.category = category
        self.status_code = status_code
        self.details = details or {}
        self.retry_after = retry_after
        self.retryable = retryable
        super().__init__(self.message)


class NotFoundError(AppError):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found",
            category=ErrorCategory.NOT_FOUND,
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class CredentialInactiveError(AppError):
    def __init__(self, credential_id: str):
        super().__init__(
            message="Class login is deactivated",
            category=ErrorCategory.INACTIVE,
            status_code=403,
            details={"credential_id": credential_id},
        )


class CredentialExpiredError(AppError):
    def __init__(self, credential_id: str):
        super().__init__(
            message="Class login has expired",
            category=ErrorCategory.EXPIRED,
            status_code=403,
            details={"credential_id": credential_id},
        )


class SessionInactiveError(AppError):
    """Raised when a heartbeat arrives for a device session that is no longer active."""

    def __init__(self, device_session_id: str, termination_reason: str):
        super().__init__(
            message="Device session is no longer active; admit the device again",
            category=ErrorCategory.INACTIVE,
            status_code=403,
            details={
                "device_session_id": device_session_id,
                "termination_reason": termination_reason,
            },
        )


class CapacityExceededError(AppError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.CAPACITY_EXCEEDED,
            status_code=403,
            details=details,
        )


class ConflictError(AppError):
    """Carries the conflicting resource id and/or current status so the caller can redirect."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFLICT,
            status_code=409,
            details=details,
        )


class ForbiddenError(AppError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.FORBIDDEN,
            status_code=403,
            details=details,
        )


class StoreUnavailableError(AppError):
    """Transient persistence failure. Retryable by the caller."""

    def __init__(self, message: str = "Session store temporarily unavailable", details: Optional[dict] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.STORE_UNAVAILABLE,
            status_code=503,
            details=details,
            retry_after=5,
            retryable=True,
        )


class LockTimeoutError(AppError):
    """
    Gave up waiting for a class login or live session critical section. The
    store is reachable, so admission does not fail open on this.
    """

    def __init__(self, key: str):
        super().__init__(
            message="Too many concurrent requests for this resource",
            category=ErrorCategory.LOCK_TIMEOUT,
            status_code=503,
            details={"lock_key": key},
            retry_after=1,
            retryable=True,
        )


class InvalidRequestError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=400,
            details=details,
        )
