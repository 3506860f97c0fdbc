from src.core.exceptions.base import (
    AppException,
    ConflictError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppException",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
]
