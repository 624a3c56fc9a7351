"""Identity resolution and semantic recall for a personal relationship tracker."""

from .errors import (
    ConflictError,
    DependencyUnavailable,
    IntegrityError,
    NotFoundError,
    RecallError,
    ValidationError,
)
from .service import RecallService

__version__ = "0.3.0"

__all__ = [
    "ConflictError",
    "DependencyUnavailable",
    "IntegrityError",
    "NotFoundError",
    "RecallError",
    "RecallService",
    "ValidationError",
]
