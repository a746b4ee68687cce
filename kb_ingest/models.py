"""Domain models for files, ingestion records and derived dashboard views."""

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, Field, ConfigDict


class IngestionStatus(str, Enum):
    """Persisted ingestion status of a file."""

    NOT_STARTED = "not_started"
    PENDING = "pending"
    INGESTED = "ingested"
    FAILED = "failed"


# ============================================================================
# EXTERNAL FILE (object store snapshot)
# ============================================================================

class ExternalFile(BaseModel):
    """A file as listed by the external object store."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Object store file ID")
    name: str = Field(..., description="Display name")
    mime_type: Optional[str] = Field(None, alias="mimeType", description="MIME type")
    size: Optional[int] = Field(None, description="Size in bytes (absent for native docs)")
    created_at: Optional[datetime] = Field(
        None, alias="createdTime", description="Creation timestamp"
    )
    web_view_link: Optional[str] = Field(
        None, alias="webViewLink", description="Link to view the file"
    )
    icon_link: Optional[str] = Field(None, alias="iconLink", description="Icon URL")


# ============================================================================
# INGESTION RECORD (metadata store)
# ============================================================================

class IngestionMetadata(BaseModel):
    """Advisory statistics reported by the ingestion worker."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    average_chunk_size: float = Field(
        0, alias="averageChunkSize", description="Average chunk length in characters"
    )
    processing_time: float = Field(
        0, alias="processingTime", description="Embedding time in milliseconds"
    )
    document_count: int = Field(
        0, alias="documentCount", description="Documents extracted from the file"
    )
    vector_dimensions: Optional[int] = Field(None, alias="vectorDimensions")
    min_chunk_size: Optional[int] = Field(None, alias="minChunkSize")
    max_chunk_size: Optional[int] = Field(None, alias="maxChunkSize")


class IngestionRecord(BaseModel):
    """Persisted ingestion lifecycle of one file."""

    model_config = ConfigDict(from_attributes=True)

    file_id: str = Field(..., description="Object store file ID")
    file_name: str = Field(default="", description="File name at submission time")
    file_type: Optional[str] = Field(None, description="Extension derived from the name")
    status: IngestionStatus = Field(
        default=IngestionStatus.NOT_STARTED, description="Ingestion status"
    )
    vector_count: int = Field(default=0, description="Vectors stored (ingested only)")
    chunk_count: int = Field(default=0, description="Chunks created (ingested only)")
    error_message: Optional[str] = Field(None, description="Failure reason (failed only)")
    created_at: datetime = Field(..., description="Record creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    ingestion_completed_at: Optional[datetime] = Field(
        None, description="Completion timestamp (ingested only)"
    )
    soft_deleted_at: Optional[datetime] = Field(None, description="Archive timestamp")
    metadata: Optional[IngestionMetadata] = Field(None, description="Worker statistics")

    @property
    def is_archived(self) -> bool:
        return self.soft_deleted_at is not None


def file_type_from_name(file_name: str) -> Optional[str]:
    """Return the lowercase extension of a file name, without the dot."""
    ext = os.path.splitext(file_name)[1]
    return ext[1:].lower() if ext else None


# ============================================================================
# DERIVED VIEWS
# ============================================================================

class FileView(BaseModel):
    """A listed file joined with its ingestion record."""

    file: ExternalFile = Field(..., description="Object store snapshot")
    status: IngestionStatus = Field(..., description="Effective ingestion status")
    vector_count: int = Field(default=0, description="Vectors stored")
    chunk_count: int = Field(default=0, description="Chunks created")
    error_message: Optional[str] = Field(None, description="Failure reason")
    ingestion_completed_at: Optional[datetime] = Field(None)
    archived: bool = Field(default=False, description="Whether the file is soft-deleted")
    optimistic: bool = Field(
        default=False, description="Status comes from a pending local override"
    )


class DashboardStats(BaseModel):
    """Aggregate metrics over the active files."""

    total_files: int = Field(default=0, description="Active (non-archived) files")
    not_started: int = Field(default=0)
    pending: int = Field(default=0)
    ingested: int = Field(default=0)
    failed: int = Field(default=0)
    archived: int = Field(default=0, description="Listed files that are archived")
    total_vectors: int = Field(default=0)
    total_chunks: int = Field(default=0)
    average_chunk_size: int = Field(default=0)
    storage_used: int = Field(default=0, description="Bytes held by the object store")
    recent_uploads: int = Field(default=0)
    success_rate: int = Field(default=0, description="Ingested share of active files, %")
    stale_sources: List[str] = Field(
        default_factory=list, description="Sources served from a last-known-good snapshot"
    )
    computed_at: Optional[datetime] = Field(None)


# ============================================================================
# UPLOADS
# ============================================================================

class UploadOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadSource:
    """A file handed to an upload batch."""
    name: str
    content: bytes
    mime_type: str = "application/octet-stream"
    declared_size: Optional[int] = None  # set when content was not read

    @property
    def size(self) -> int:
        if self.declared_size is not None:
            return self.declared_size
        return len(self.content)


@dataclass
class UploadTask:
    """Progress of one file inside an upload session."""
    task_id: str
    file_name: str
    size: int
    progress: int = 0
    phase: str = "queued"
    outcome: Optional[UploadOutcome] = None
    error: Optional[str] = None

    def advance(self, percent: float) -> None:
        """Move progress forward; never backwards and never past 100."""
        self.progress = max(self.progress, min(100, int(percent)))


class BatchSummary(BaseModel):
    """Result of an upload batch."""

    succeeded: int = Field(default=0, description="Files uploaded")
    failed: int = Field(default=0, description="Files that failed")
    failures: Dict[str, str] = Field(
        default_factory=dict, description="Failure reason per file name"
    )
