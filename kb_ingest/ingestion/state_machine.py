"""
Legal status transitions for a single file's ingestion record.

States:
    not_started -> pending -> {ingested, failed}
    {not_started, ingested, failed} -> archived (soft delete)
    archived -> not_started (restore, prior status discarded)
    pending -> failed (pending for longer than the timeout)

Every transition is validated against the persisted record before anything
is written, so a rejected request never touches the store.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from kb_ingest.errors import AlreadyInProgress, TransitionRejected
from kb_ingest.models import (
    IngestionMetadata,
    IngestionRecord,
    IngestionStatus,
    file_type_from_name,
)

logger = logging.getLogger(__name__)

ARCHIVED = "archived"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def state_of(record: Optional[IngestionRecord]) -> str:
    """Name of the lifecycle state a record is in; no record means not_started."""
    if record is None:
        return IngestionStatus.NOT_STARTED.value
    if record.is_archived:
        return ARCHIVED
    return record.status.value


class IngestionStateMachine:
    """Validates and persists ingestion status transitions."""

    def __init__(
        self,
        store,
        clock: Callable[[], datetime] = utcnow,
        pending_timeout: Optional[timedelta] = None,
    ):
        """
        Args:
            store: Record store exposing get, save and soft_delete
            clock: Source of the current time
            pending_timeout: Age after which a pending record is treated as a
                timed out ingestion (None keeps pending records forever)
        """
        self.store = store
        self.clock = clock
        self.pending_timeout = pending_timeout

    async def expire_stale(self, file_id: str) -> Optional[IngestionRecord]:
        """Get a file's record, failing it first if it has been pending too long."""
        return await self._expire_if_stale(await self.store.get(file_id))

    async def _expire_if_stale(self, record: Optional[IngestionRecord]) -> Optional[IngestionRecord]:
        if (
            record is None
            or self.pending_timeout is None
            or state_of(record) != IngestionStatus.PENDING.value
        ):
            return record

        updated_at = record.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        now = self.clock()
        if now - updated_at < self.pending_timeout:
            return record

        timed_out = record.model_copy(update={
            "status": IngestionStatus.FAILED,
            "vector_count": 0,
            "chunk_count": 0,
            "error_message": (
                f"Ingestion timed out after {self.pending_timeout.total_seconds():g}s"
            ),
            "metadata": None,
            "ingestion_completed_at": None,
            "updated_at": now,
        })
        saved = await self.store.save(timed_out)
        logger.warning(f"Expired stale pending ingestion: file={record.file_id}")
        return saved

    async def begin_ingestion(self, file_id: str, file_name: str) -> IngestionRecord:
        """
        Move a file to pending.

        Accepted from not_started, failed (explicit re-trigger) and archived
        (ingesting clears the archive marker). An ingested file is returned
        unchanged. A pending record older than the pending timeout is failed
        first and then re-triggered.

        Raises:
            AlreadyInProgress: If the file is already pending
        """
        record = await self.expire_stale(file_id)
        current = state_of(record)

        if current == IngestionStatus.PENDING.value:
            raise AlreadyInProgress(file_id)
        if current == IngestionStatus.INGESTED.value:
            logger.info(f"File {file_id} already ingested, skipping")
            return record

        now = self.clock()
        name = file_name or (record.file_name if record else "")
        pending = IngestionRecord(
            file_id=file_id,
            file_name=name,
            file_type=file_type_from_name(name),
            status=IngestionStatus.PENDING,
            created_at=record.created_at if record else now,
            updated_at=now,
        )
        saved = await self.store.save(pending)
        logger.info(f"Ingestion started: file={file_id}, from={current}")
        return saved

    async def complete_ingestion(
        self,
        file_id: str,
        vector_count: int,
        chunk_count: int,
        metadata: Optional[IngestionMetadata] = None,
    ) -> IngestionRecord:
        """
        Move a pending file to ingested.

        Raises:
            ValueError: If a count is negative
            TransitionRejected: If the file is not pending
        """
        if vector_count < 0 or chunk_count < 0:
            raise ValueError(
                f"Counts must be non-negative (vectors={vector_count}, chunks={chunk_count})"
            )

        record = await self._require_pending(file_id, IngestionStatus.INGESTED.value)
        now = self.clock()
        ingested = record.model_copy(update={
            "status": IngestionStatus.INGESTED,
            "vector_count": vector_count,
            "chunk_count": chunk_count,
            "error_message": None,
            "metadata": metadata,
            "updated_at": now,
            "ingestion_completed_at": now,
        })
        saved = await self.store.save(ingested)
        logger.info(
            f"Ingestion completed: file={file_id}, vectors={vector_count}, chunks={chunk_count}"
        )
        return saved

    async def fail_ingestion(self, file_id: str, error_message: str) -> IngestionRecord:
        """
        Move a pending file to failed.

        Raises:
            ValueError: If the error message is empty
            TransitionRejected: If the file is not pending
        """
        if not error_message or not error_message.strip():
            raise ValueError("A failed ingestion requires an error message")

        record = await self._require_pending(file_id, IngestionStatus.FAILED.value)
        failed = record.model_copy(update={
            "status": IngestionStatus.FAILED,
            "vector_count": 0,
            "chunk_count": 0,
            "error_message": error_message,
            "metadata": None,
            "updated_at": self.clock(),
            "ingestion_completed_at": None,
        })
        saved = await self.store.save(failed)
        logger.warning(f"Ingestion failed: file={file_id}, error={error_message}")
        return saved

    async def archive(self, file_id: str, file_name: str = "") -> str:
        """
        Soft-delete a file. Archiving an archived file is a no-op.

        Returns:
            Display name of the archived file

        Raises:
            TransitionRejected: If the file is pending
        """
        record = await self.expire_stale(file_id)
        current = state_of(record)

        if current == ARCHIVED:
            return record.file_name or file_name
        if current == IngestionStatus.PENDING.value:
            raise TransitionRejected(file_id, current, ARCHIVED)

        name = (record.file_name if record and record.file_name else file_name)
        return await self.store.soft_delete(file_id, name, self.clock())

    async def restore(self, file_id: str) -> IngestionRecord:
        """
        Bring an archived file back as not_started.

        Vector and chunk counts are zeroed; the file has to be ingested
        again to regain the ingested status.

        Raises:
            TransitionRejected: If the file is not archived
        """
        record = await self.store.get(file_id)
        current = state_of(record)
        if current != ARCHIVED:
            raise TransitionRejected(file_id, current, IngestionStatus.NOT_STARTED.value)

        restored = record.model_copy(update={
            "status": IngestionStatus.NOT_STARTED,
            "vector_count": 0,
            "chunk_count": 0,
            "error_message": None,
            "metadata": None,
            "ingestion_completed_at": None,
            "soft_deleted_at": None,
            "updated_at": self.clock(),
        })
        saved = await self.store.save(restored)
        logger.info(f"Restored file: {file_id}")
        return saved

    async def revert(self, file_id: str, previous: Optional[IngestionRecord]) -> None:
        """
        Put a pending record back to the state captured before ingestion began.

        Only a record that is still pending is reverted; anything else has
        moved on and is left alone.
        """
        record = await self.store.get(file_id)
        if state_of(record) != IngestionStatus.PENDING.value:
            return

        if previous is None:
            previous = record.model_copy(update={"status": IngestionStatus.NOT_STARTED})
        await self.store.save(previous.model_copy(update={"updated_at": self.clock()}))
        logger.info(f"Rolled back pending ingestion: file={file_id}, to={state_of(previous)}")

    async def _require_pending(self, file_id: str, requested: str) -> IngestionRecord:
        record = await self.store.get(file_id)
        current = state_of(record)
        if current != IngestionStatus.PENDING.value:
            raise TransitionRejected(file_id, current, requested)
        return record
