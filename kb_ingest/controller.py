"""
Reconciliation of the object store listing with the ingestion records.

The controller keeps two independent snapshots, one per source, and derives
every view from them with a pure join. Mutations go through the state
machine and are followed by a refresh of both sources.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from kb_ingest.errors import (
    AlreadyInProgress,
    FileNotFound,
    IngestionFailed,
    SourceUnavailable,
    TransitionRejected,
)
from kb_ingest.ingestion.state_machine import IngestionStateMachine, state_of
from kb_ingest.models import (
    BatchSummary,
    DashboardStats,
    ExternalFile,
    FileView,
    IngestionRecord,
    IngestionStatus,
    UploadSource,
)
from kb_ingest.stats import StatsAggregator, join_files

logger = logging.getLogger(__name__)

FILES_SOURCE = "files"
RECORDS_SOURCE = "records"


@dataclass
class Snapshot:
    """Last-known-good read of one source."""
    data: object
    seq: int = 0
    stale: bool = False
    error: Optional[SourceUnavailable] = None


@dataclass
class PendingOverride:
    """Optimistic local status, cleared by the next records snapshot."""
    status: IngestionStatus
    set_at_seq: int


@dataclass
class RefreshResult:
    """Outcome of one refresh; failures are reported, not raised."""
    seq: int
    errors: List[SourceUnavailable] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ReconciliationController:
    """Orchestrates snapshots, mutations and dashboard statistics."""

    def __init__(
        self,
        listing,
        store,
        worker,
        state_machine: Optional[IngestionStateMachine] = None,
        aggregator: Optional[StatsAggregator] = None,
    ):
        """
        Initialize controller.

        Args:
            listing: Object exposing list_files()
            store: Record store exposing fetch_all(), get(), save(), soft_delete()
            worker: Object exposing request_ingestion(file_id, file_name)
            state_machine: Transition validator (built on the store by default)
            aggregator: Stats aggregator
        """
        self.listing = listing
        self.store = store
        self.worker = worker
        self.state_machine = state_machine or IngestionStateMachine(store)
        self.aggregator = aggregator or StatsAggregator()
        self.uploads = None

        self._files = Snapshot(data=[])
        self._records = Snapshot(data={})
        self._seq = 0
        self._overrides: Dict[str, PendingOverride] = {}
        self._busy: Set[str] = set()

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    @property
    def files(self) -> List[ExternalFile]:
        return self._files.data

    @property
    def records(self) -> Dict[str, IngestionRecord]:
        return self._records.data

    @property
    def stale_sources(self) -> List[str]:
        return [
            name for name, snap in ((FILES_SOURCE, self._files), (RECORDS_SOURCE, self._records))
            if snap.stale
        ]

    async def _refresh_source(self, name: str, snapshot: Snapshot, fetch, seq: int) -> Optional[SourceUnavailable]:
        try:
            data = await fetch()
        except Exception as e:
            logger.warning(f"Refresh of {name} failed, keeping last snapshot: {e}")
            error = SourceUnavailable(name, e)
            if seq > snapshot.seq:
                snapshot.stale = True
                snapshot.error = error
            return error

        if seq < snapshot.seq:
            logger.debug(f"Dropping superseded {name} snapshot (seq={seq}, current={snapshot.seq})")
            return None

        snapshot.data = data
        snapshot.seq = seq
        snapshot.stale = False
        snapshot.error = None

        if name == RECORDS_SOURCE:
            self._clear_overrides(seq)
        return None

    def _clear_overrides(self, seq: int) -> None:
        for file_id, override in list(self._overrides.items()):
            if seq > override.set_at_seq:
                del self._overrides[file_id]

    async def refresh(self) -> RefreshResult:
        """
        Re-read both sources concurrently.

        Each source updates its own snapshot as soon as it answers. A failed
        source keeps its last-known-good snapshot and is marked stale. A
        response that resolves after a newer one has been applied is dropped.

        Returns:
            RefreshResult listing the sources that failed
        """
        self._seq += 1
        seq = self._seq

        results = await asyncio.gather(
            self._refresh_source(FILES_SOURCE, self._files, self.listing.list_files, seq),
            self._refresh_source(RECORDS_SOURCE, self._records, self.store.fetch_all, seq),
        )
        return RefreshResult(seq=seq, errors=[error for error in results if error])

    # ========================================================================
    # DERIVED VIEWS
    # ========================================================================

    def _override_statuses(self) -> Dict[str, IngestionStatus]:
        return {file_id: o.status for file_id, o in self._overrides.items()}

    def get_dashboard_stats(self) -> DashboardStats:
        """Stats over the cached snapshots with pending overrides applied."""
        return self.aggregator.compute(
            self.files,
            self.records,
            overrides=self._override_statuses(),
            stale_sources=self.stale_sources,
        )

    def list_files(self, include_archived: bool = False) -> List[FileView]:
        """Joined file views, newest first as listed by the object store."""
        views = join_files(self.files, self.records, self._override_statuses())
        if include_archived:
            return views
        return [view for view in views if not view.archived]

    def get_file(self, file_id: str) -> Optional[FileView]:
        for view in join_files(self.files, self.records, self._override_statuses()):
            if view.file.id == file_id:
                return view
        return None

    def _display_name(self, file_id: str) -> str:
        """Name of a file known to either snapshot; raises FileNotFound otherwise."""
        for file in self.files:
            if file.id == file_id:
                return file.name
        record = self.records.get(file_id)
        if record is None:
            raise FileNotFound(file_id)
        return record.file_name

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def ingest_file(self, file_id: str, file_name: Optional[str] = None) -> IngestionRecord:
        """
        Ingest one file.

        The file is marked pending locally and in the store before the worker
        is called. A worker-reported failure is persisted as failed. Any other
        way out before the outcome is persisted (the worker call raising, a
        store error, cancellation) rolls the record back to what it was
        before the call. Both sources are refreshed afterwards.

        Returns:
            The ingested record

        Raises:
            FileNotFound: If no name is given and neither snapshot knows the file
            AlreadyInProgress: If the file is already being ingested
            IngestionFailed: If the worker reported a failure or timed out
            WorkerUnavailable: If the worker call raised
        """
        file_name = file_name or self._display_name(file_id)

        if file_id in self._busy:
            raise AlreadyInProgress(file_id)
        self._busy.add(file_id)

        try:
            previous = await self.state_machine.expire_stale(file_id)
            if state_of(previous) == IngestionStatus.INGESTED.value:
                logger.info(f"File {file_id} already ingested")
                return previous

            await self.state_machine.begin_ingestion(file_id, file_name)
            self._overrides[file_id] = PendingOverride(IngestionStatus.PENDING, self._seq)

            settled = False
            try:
                outcome = await self.worker.request_ingestion(file_id, file_name)
                if outcome.success:
                    record = await self.state_machine.complete_ingestion(
                        file_id, outcome.vector_count, outcome.chunk_count, outcome.metadata
                    )
                    settled = True
                    return record

                error_message = outcome.error_message or "Ingestion failed"
                await self.state_machine.fail_ingestion(file_id, error_message)
                settled = True
                raise IngestionFailed(file_id, error_message)
            except BaseException:
                if not settled:
                    await self._roll_back(file_id, previous)
                raise
            finally:
                await self.refresh()
        finally:
            self._busy.discard(file_id)

    async def _roll_back(self, file_id: str, previous: Optional[IngestionRecord]) -> None:
        logger.exception(f"Ingestion of {file_id} did not complete, rolling back")
        self._overrides.pop(file_id, None)
        try:
            await self.state_machine.revert(file_id, previous)
        except Exception:
            logger.exception(f"Rollback of {file_id} failed, record left pending until it expires")

    async def archive_file(self, file_id: str) -> str:
        """
        Soft-delete a file. The object store copy is left untouched.

        Returns:
            Display name of the archived file

        Raises:
            FileNotFound: If neither snapshot knows the file
            TransitionRejected: If the file is pending or has a mutation in flight
        """
        display_name = self._display_name(file_id)
        if file_id in self._busy:
            raise TransitionRejected(file_id, IngestionStatus.PENDING.value, "archived")
        self._busy.add(file_id)
        try:
            name = await self.state_machine.archive(file_id, display_name)
        finally:
            self._busy.discard(file_id)

        await self.refresh()
        return name

    async def restore_file(self, file_id: str) -> IngestionRecord:
        """
        Bring an archived file back as not_started.

        Raises:
            FileNotFound: If neither snapshot knows the file
            TransitionRejected: If the file is not archived or has a mutation in flight
        """
        self._display_name(file_id)
        if file_id in self._busy:
            raise TransitionRejected(file_id, IngestionStatus.PENDING.value, IngestionStatus.NOT_STARTED.value)
        self._busy.add(file_id)
        try:
            record = await self.state_machine.restore(file_id)
        finally:
            self._busy.discard(file_id)

        await self.refresh()
        return record

    async def upload_batch(self, files: Sequence[UploadSource]) -> BatchSummary:
        """Upload files through the attached tracker (one refresh per batch)."""
        if self.uploads is None:
            raise RuntimeError("No upload tracker attached to the controller")
        return await self.uploads.upload_batch(files)
