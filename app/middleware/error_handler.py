"""
Exception handlers that render every error as the same JSON envelope:

    {"error": {"category", "message", "timestamp", "path", ...details}}

Retryable errors carry a Retry-After header.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import AppError, ErrorCategory
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _envelope(request: Request, category: str, message: str, **details) -> dict:
    return {
        "error": {
            "category": category,
            "message": message,
            "timestamp": utcnow().isoformat(),
            "path": request.url.path,
            **details,
        }
    }


async def app_error_handler(request: Request, error: AppError) -> JSONResponse:
    """Handle structured application errors"""

    log = logger.error if error.status_code >= 500 else logger.info
    log(
        f"Application error: {error.category}",
        extra={
            "category": error.category,
            "error_message": error.message,
            "status_code": error.status_code,
            "path": request.url.path,
            "method": request.method,
            "details": error.details,
        },
    )

    headers = {}
    if error.retry_after:
        headers["Retry-After"] = str(error.retry_after)

    content = _envelope(request, error.category, error.message, **error.details)
    content["error"]["retryable"] = error.retryable

    return JSONResponse(status_code=error.status_code, content=content, headers=headers)


async def validation_error_handler(request: Request, error: RequestValidationError) -> JSONResponse:
    """Handle FastAPI validation errors"""

    errors = []
    for err in error.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        })

    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"errors": errors, "method": request.method},
    )

    return JSONResponse(
        status_code=400,
        content=_envelope(
            request,
            ErrorCategory.VALIDATION,
            "Request validation failed",
            validation_errors=errors,
        ),
    )


async def unexpected_error_handler(request: Request, error: Exception) -> JSONResponse:
    """Catch-all for unexpected errors"""

    logger.error(
        f"Unexpected error on {request.url.path}: {type(error).__name__}",
        extra={"method": request.method},
        exc_info=error,
    )

    return JSONResponse(
        status_code=500,
        content=_envelope(request, ErrorCategory.INTERNAL, "An unexpected error occurred"),
    )
