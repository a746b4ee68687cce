"""
Dashboard statistics derived from the file listing and ingestion records.

Everything here is a pure reduction over two snapshots: no I/O, no
mutation of the inputs, and no exceptions for well-formed data.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from kb_ingest.models import (
    DashboardStats,
    ExternalFile,
    FileView,
    IngestionRecord,
    IngestionStatus,
)

DEFAULT_RECENT_WINDOW = timedelta(days=7)


def _aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def join_files(
    files: Iterable[ExternalFile],
    records: Mapping[str, IngestionRecord],
    overrides: Optional[Mapping[str, IngestionStatus]] = None,
) -> List[FileView]:
    """
    Join listed files with their ingestion records by file ID.

    Files without a record are not_started. Records for files the object
    store no longer lists are dropped. An override replaces the persisted
    status of a non-archived file.

    Args:
        files: Object store snapshot
        records: Ingestion record snapshot keyed by file ID
        overrides: Pending local status overrides keyed by file ID

    Returns:
        One view per listed file, in listing order
    """
    overrides = overrides or {}
    views = []

    for file in files:
        record = records.get(file.id)
        archived = record is not None and record.is_archived
        status = record.status if record else IngestionStatus.NOT_STARTED
        override = overrides.get(file.id)

        if override is not None and not archived:
            status = override
        elif archived:
            # Archived files re-expose ingestion from scratch once restored
            status = IngestionStatus.NOT_STARTED

        ingested = status == IngestionStatus.INGESTED and record is not None
        views.append(FileView(
            file=file,
            status=status,
            vector_count=record.vector_count if ingested else 0,
            chunk_count=record.chunk_count if ingested else 0,
            error_message=record.error_message if record and status == IngestionStatus.FAILED else None,
            ingestion_completed_at=record.ingestion_completed_at if ingested else None,
            archived=archived,
            optimistic=override is not None and not archived,
        ))

    return views


def aggregate_stats(
    files: List[ExternalFile],
    records: Mapping[str, IngestionRecord],
    now: Optional[datetime] = None,
    recent_window: timedelta = DEFAULT_RECENT_WINDOW,
    overrides: Optional[Mapping[str, IngestionStatus]] = None,
    stale_sources: Optional[List[str]] = None,
) -> DashboardStats:
    """
    Compute dashboard statistics from the two snapshots.

    Args:
        files: Object store snapshot
        records: Ingestion record snapshot keyed by file ID
        now: Aggregation time (defaults to the current UTC time)
        recent_window: Trailing window for the recent uploads count
        overrides: Pending local status overrides keyed by file ID
        stale_sources: Names of sources served from a last-known-good snapshot

    Returns:
        DashboardStats
    """
    now = _aware(now or datetime.now(timezone.utc))
    views = join_files(files, records, overrides)

    counts: Dict[IngestionStatus, int] = {status: 0 for status in IngestionStatus}
    total_vectors = 0
    total_chunks = 0
    chunk_sizes = []
    archived = 0

    for view in views:
        if view.archived:
            archived += 1
            continue

        counts[view.status] += 1
        if view.status == IngestionStatus.INGESTED:
            total_vectors += view.vector_count
            total_chunks += view.chunk_count
            record = records.get(view.file.id)
            metadata = record.metadata if record else None
            chunk_sizes.append(metadata.average_chunk_size if metadata else 0)

    active = len(views) - archived
    ingested = counts[IngestionStatus.INGESTED]

    # Byte accounting mirrors the object store, archived files included
    storage_used = sum(file.size or 0 for file in files)

    cutoff = now - recent_window
    recent_uploads = sum(
        1 for file in files
        if file.created_at is not None and _aware(file.created_at) >= cutoff
    )

    return DashboardStats(
        total_files=active,
        not_started=counts[IngestionStatus.NOT_STARTED],
        pending=counts[IngestionStatus.PENDING],
        ingested=ingested,
        failed=counts[IngestionStatus.FAILED],
        archived=archived,
        total_vectors=total_vectors,
        total_chunks=total_chunks,
        average_chunk_size=round(sum(chunk_sizes) / len(chunk_sizes)) if chunk_sizes else 0,
        storage_used=storage_used,
        recent_uploads=recent_uploads,
        success_rate=round(ingested / active * 100) if active else 0,
        stale_sources=sorted(stale_sources or []),
        computed_at=now,
    )


class StatsAggregator:
    """Holds the aggregation settings and recomputes stats on demand."""

    def __init__(self, recent_window: timedelta = DEFAULT_RECENT_WINDOW, clock=None):
        self.recent_window = recent_window
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def compute(
        self,
        files: List[ExternalFile],
        records: Mapping[str, IngestionRecord],
        overrides: Optional[Mapping[str, IngestionStatus]] = None,
        stale_sources: Optional[List[str]] = None,
    ) -> DashboardStats:
        return aggregate_stats(
            files,
            records,
            now=self.clock(),
            recent_window=self.recent_window,
            overrides=overrides,
            stale_sources=stale_sources,
        )
