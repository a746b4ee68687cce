"""Pydantic models for API responses."""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from kb_ingest.models import IngestionStatus


# ============================================================================
# HEALTH RESPONSE
# ============================================================================

class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service status")
    database_connected: bool = Field(..., description="Database connection status")
    stale_sources: List[str] = Field(
        default_factory=list, description="Sources served from a last-known-good snapshot"
    )
    version: str = Field(default="1.0.0", description="API version")


# ============================================================================
# REFRESH RESPONSE
# ============================================================================

class RefreshResponse(BaseModel):
    """Response model for a reconciliation refresh."""

    ok: bool = Field(..., description="Whether both sources were fetched")
    errors: List[str] = Field(default_factory=list, description="Source failures")
    stale_sources: List[str] = Field(default_factory=list, description="Stale sources")


# ============================================================================
# FILE ACTION RESPONSES
# ============================================================================

class IngestResult(BaseModel):
    """Response model for a completed ingestion."""

    file_id: str = Field(..., description="Object store file ID")
    file_name: str = Field(..., description="File name")
    status: IngestionStatus = Field(..., description="Ingestion status")
    vector_count: int = Field(default=0, description="Vectors stored")
    chunk_count: int = Field(default=0, description="Chunks created")
    ingestion_completed_at: Optional[datetime] = Field(None, description="Completion timestamp")


class FileActionResult(BaseModel):
    """Response model for archive and restore."""

    file_id: str = Field(..., description="Object store file ID")
    file_name: str = Field(..., description="Display name")
    message: str = Field(..., description="Status message")
