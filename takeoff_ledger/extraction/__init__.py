"""External extraction service boundary."""

from .client import (
    ExtractionClient,
    ExtractionError,
    ExtractionKind,
    ExtractionRateLimitError,
    HttpExtractionClient,
    ProjectDocument,
    StaticExtractionClient,
)

__all__ = [
    "ExtractionClient",
    "ExtractionError",
    "ExtractionKind",
    "ExtractionRateLimitError",
    "HttpExtractionClient",
    "ProjectDocument",
    "StaticExtractionClient",
]
