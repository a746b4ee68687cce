"""Typed access to persisted ingestion records (PostgreSQL)."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg

from kb_ingest.models import IngestionMetadata, IngestionRecord

logger = logging.getLogger(__name__)


_RECORD_COLUMNS = """file_id, file_name, file_type, status, vector_count, chunk_count,
                     error_message, metadata, created_at, updated_at,
                     ingestion_completed_at, soft_deleted_at"""


def parse_metadata(metadata: Any) -> Optional[IngestionMetadata]:
    """
    Safely parse metadata from database to a model.

    Args:
        metadata: Metadata from database (can be dict, str, or None)

    Returns:
        IngestionMetadata or None when absent or unreadable
    """
    if metadata is None:
        return None
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            return None
    if isinstance(metadata, dict):
        return IngestionMetadata.model_validate(metadata)
    return None


def row_to_record(row: Any) -> IngestionRecord:
    """Convert a database row into an IngestionRecord."""
    return IngestionRecord(
        file_id=row["file_id"],
        file_name=row["file_name"] or "",
        file_type=row["file_type"],
        status=row["status"],
        vector_count=row["vector_count"] or 0,
        chunk_count=row["chunk_count"] or 0,
        error_message=row["error_message"],
        metadata=parse_metadata(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        ingestion_completed_at=row["ingestion_completed_at"],
        soft_deleted_at=row["soft_deleted_at"],
    )


class IngestionRecordStore:
    """Reads and writes ingestion records for one owner."""

    def __init__(self, pool: asyncpg.Pool, owner_id: str):
        self.pool = pool
        self.owner_id = owner_id

    async def fetch_all(self) -> Dict[str, IngestionRecord]:
        """
        Get every ingestion record of the owner, archived ones included.

        Returns:
            Records keyed by file ID
        """
        rows = await self.pool.fetch(
            f"""SELECT {_RECORD_COLUMNS}
                FROM ingestion_records
                WHERE owner_id = $1
                ORDER BY created_at DESC""",
            self.owner_id
        )
        return {row["file_id"]: row_to_record(row) for row in rows}

    async def get(self, file_id: str) -> Optional[IngestionRecord]:
        """
        Get the ingestion record of one file.

        Args:
            file_id: Object store file ID

        Returns:
            The record, or None if the file was never submitted
        """
        row = await self.pool.fetchrow(
            f"""SELECT {_RECORD_COLUMNS}
                FROM ingestion_records
                WHERE owner_id = $1 AND file_id = $2""",
            self.owner_id, file_id
        )
        return row_to_record(row) if row else None

    async def save(self, record: IngestionRecord) -> IngestionRecord:
        """
        Insert or replace the record of a file.

        The (owner_id, file_id) pair is unique, so a file never has more
        than one record.

        Args:
            record: Record to persist

        Returns:
            The record as stored
        """
        metadata = (
            json.dumps(record.metadata.model_dump()) if record.metadata else None
        )
        row = await self.pool.fetchrow(
            f"""INSERT INTO ingestion_records
                   (owner_id, file_id, file_name, file_type, status, vector_count,
                    chunk_count, error_message, metadata, created_at, updated_at,
                    ingestion_completed_at, soft_deleted_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10, $11, $12, $13)
                ON CONFLICT (owner_id, file_id) DO UPDATE SET
                    file_name = EXCLUDED.file_name,
                    file_type = EXCLUDED.file_type,
                    status = EXCLUDED.status,
                    vector_count = EXCLUDED.vector_count,
                    chunk_count = EXCLUDED.chunk_count,
                    error_message = EXCLUDED.error_message,
                    metadata = EXCLUDED.metadata,
                    updated_at = EXCLUDED.updated_at,
                    ingestion_completed_at = EXCLUDED.ingestion_completed_at,
                    soft_deleted_at = EXCLUDED.soft_deleted_at
                RETURNING {_RECORD_COLUMNS}""",
            self.owner_id,
            record.file_id,
            record.file_name,
            record.file_type,
            record.status.value,
            record.vector_count,
            record.chunk_count,
            record.error_message,
            metadata,
            record.created_at,
            record.updated_at,
            record.ingestion_completed_at,
            record.soft_deleted_at,
        )
        logger.debug(f"Saved ingestion record: file={record.file_id}, status={record.status.value}")
        return row_to_record(row)

    async def soft_delete(self, file_id: str, file_name: str, deleted_at: datetime) -> str:
        """
        Mark a file as archived, creating its record if needed.

        An already archived file keeps its first soft_deleted_at.

        Args:
            file_id: Object store file ID
            file_name: Display name used when the record does not exist yet
            deleted_at: Archive timestamp

        Returns:
            Display name of the archived file
        """
        name = await self.pool.fetchval(
            """INSERT INTO ingestion_records
                   (owner_id, file_id, file_name, status, created_at, updated_at, soft_deleted_at)
               VALUES ($1, $2, $3, 'not_started', $4, $4, $4)
               ON CONFLICT (owner_id, file_id) DO UPDATE SET
                   soft_deleted_at = COALESCE(ingestion_records.soft_deleted_at, EXCLUDED.soft_deleted_at),
                   updated_at = CASE
                       WHEN ingestion_records.soft_deleted_at IS NULL THEN EXCLUDED.updated_at
                       ELSE ingestion_records.updated_at
                   END
               RETURNING file_name""",
            self.owner_id, file_id, file_name, deleted_at
        )
        logger.info(f"Archived file: {file_id}")
        return name or file_name
