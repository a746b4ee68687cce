"""Pydantic models for API requests and responses."""

from kb_ingest.api.models.requests import IngestRequest
from kb_ingest.api.models.responses import (
    HealthResponse,
    RefreshResponse,
    IngestResult,
    FileActionResult,
)

__all__ = [
    "IngestRequest",
    "HealthResponse",
    "RefreshResponse",
    "IngestResult",
    "FileActionResult",
]
