"""Pydantic models for API requests."""

from pydantic import BaseModel, Field
from typing import Optional


# ============================================================================
# INGESTION REQUESTS
# ============================================================================

class IngestRequest(BaseModel):
    """Request model for ingesting a file."""

    file_name: Optional[str] = Field(
        None,
        max_length=500,
        description="File name (defaults to the name in the object store listing)",
    )
