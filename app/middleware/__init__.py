"""Middleware module"""

from app.middleware.error_handler import (
    app_error_handler,
    validation_error_handler,
    unexpected_error_handler,
)

__all__ = [
    "app_error_handler",
    "validation_error_handler",
    "unexpected_error_handler",
]
