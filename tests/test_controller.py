"""
Tests for the reconciliation controller: refresh, ingest, archive and restore.
"""
import asyncio
from datetime import timedelta

import pytest

from kb_ingest.errors import (
    AlreadyInProgress,
    FileNotFound,
    IngestionFailed,
    TransitionRejected,
    WorkerUnavailable,
)
from kb_ingest.controller import ReconciliationController
from kb_ingest.ingestion.state_machine import IngestionStateMachine
from kb_ingest.ingestion.worker import IngestionOutcome
from kb_ingest.models import IngestionStatus
from kb_ingest.stats import StatsAggregator

from tests.conftest import NOW, make_file, make_record


async def wait_for(predicate):
    while not predicate():
        await asyncio.sleep(0)


class TestRefresh:
    """Tests for snapshot refresh."""

    @pytest.mark.asyncio
    async def test_refresh_loads_both_sources(self, controller, listing, store):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.INGESTED, vector_count=5)

        result = await controller.refresh()

        assert result.ok
        assert [f.id for f in controller.files] == ["A"]
        assert controller.records["A"].vector_count == 5
        assert controller.stale_sources == []

    @pytest.mark.asyncio
    async def test_failed_source_keeps_last_snapshot(self, controller, listing, store):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.INGESTED, vector_count=5)
        await controller.refresh()

        store.fail_fetch = ConnectionError("database is down")
        listing.files = [make_file("A"), make_file("B")]
        result = await controller.refresh()

        assert not result.ok
        assert [e.source for e in result.errors] == ["records"]
        assert controller.records["A"].vector_count == 5
        assert [f.id for f in controller.files] == ["A", "B"]
        assert controller.stale_sources == ["records"]

        stats = controller.get_dashboard_stats()
        assert stats.stale_sources == ["records"]
        assert stats.ingested == 1

        store.fail_fetch = None
        assert (await controller.refresh()).ok
        assert controller.stale_sources == []

    @pytest.mark.asyncio
    async def test_failure_before_first_snapshot_leaves_empty_data(self, controller, listing):
        listing.fail = RuntimeError("403 Forbidden")

        result = await controller.refresh()

        assert [e.source for e in result.errors] == ["files"]
        assert controller.files == []
        assert controller.get_dashboard_stats().total_files == 0

    @pytest.mark.asyncio
    async def test_superseded_response_is_dropped(self, controller, listing):
        gate = asyncio.Event()
        listing.files = [make_file("A")]
        listing.gates = [gate]

        slow = asyncio.create_task(controller.refresh())
        await wait_for(lambda: listing.calls == 1)

        listing.files = [make_file("A"), make_file("B")]
        await controller.refresh()
        assert [f.id for f in controller.files] == ["A", "B"]

        gate.set()
        await slow

        assert [f.id for f in controller.files] == ["A", "B"]


class TestIngestFile:
    """Tests for ingest_file."""

    @pytest.mark.asyncio
    async def test_successful_ingestion(self, controller, listing, store, worker):
        listing.files = [make_file("A", name="Handbook.pdf")]
        await controller.refresh()
        worker.outcome = IngestionOutcome(success=True, vector_count=120, chunk_count=40)

        record = await controller.ingest_file("A")

        assert worker.calls == [("A", "Handbook.pdf")]
        assert record.status == IngestionStatus.INGESTED
        assert record.vector_count == 120
        assert controller.records["A"].status == IngestionStatus.INGESTED
        stats = controller.get_dashboard_stats()
        assert stats.ingested == 1
        assert stats.total_vectors == 120
        assert stats.success_rate == 100

    @pytest.mark.asyncio
    async def test_pending_is_visible_while_worker_runs(self, controller, listing, worker):
        listing.files = [make_file("A"), make_file("B")]
        await controller.refresh()
        worker.gate = asyncio.Event()
        worker.started = asyncio.Event()

        task = asyncio.create_task(controller.ingest_file("A"))
        await worker.started.wait()

        view = controller.get_file("A")
        assert view.status == IngestionStatus.PENDING
        assert view.optimistic
        assert controller.get_dashboard_stats().pending == 1

        worker.gate.set()
        await task

        view = controller.get_file("A")
        assert view.status == IngestionStatus.INGESTED
        assert not view.optimistic

    @pytest.mark.asyncio
    async def test_concurrent_ingest_of_same_file(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.gate = asyncio.Event()
        worker.started = asyncio.Event()

        first = asyncio.create_task(controller.ingest_file("A"))
        await worker.started.wait()

        with pytest.raises(AlreadyInProgress):
            await controller.ingest_file("A")

        worker.gate.set()
        await first

        assert len(worker.calls) == 1
        pending_writes = [r for r in store.saves if r.status == IngestionStatus.PENDING]
        assert len(pending_writes) == 1

    @pytest.mark.asyncio
    async def test_worker_reported_failure(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.outcome = IngestionOutcome(success=False, error_message="Unsupported file type")

        with pytest.raises(IngestionFailed) as exc_info:
            await controller.ingest_file("A")

        assert exc_info.value.error_message == "Unsupported file type"
        assert store.records["A"].status == IngestionStatus.FAILED
        assert controller.get_file("A").error_message == "Unsupported file type"
        assert controller.get_dashboard_stats().failed == 1

    @pytest.mark.asyncio
    async def test_failed_file_can_be_retried(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.FAILED)
        await controller.refresh()

        record = await controller.ingest_file("A")

        assert record.status == IngestionStatus.INGESTED
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_worker_error_rolls_back(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.error = WorkerUnavailable("Ingestion worker unreachable: connection refused")

        with pytest.raises(WorkerUnavailable):
            await controller.ingest_file("A")

        assert store.records["A"].status == IngestionStatus.NOT_STARTED
        view = controller.get_file("A")
        assert view.status == IngestionStatus.NOT_STARTED
        assert not view.optimistic

        worker.error = None
        record = await controller.ingest_file("A")
        assert record.status == IngestionStatus.INGESTED

    @pytest.mark.asyncio
    async def test_worker_error_restores_failed_state(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.FAILED)
        await controller.refresh()
        worker.error = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await controller.ingest_file("A")

        assert store.records["A"].status == IngestionStatus.FAILED

    @pytest.mark.asyncio
    async def test_ingested_file_is_not_resubmitted(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.INGESTED, vector_count=7)
        await controller.refresh()

        record = await controller.ingest_file("A")

        assert record.vector_count == 7
        assert worker.calls == []
        assert store.saves == []


class TestIngestRollback:
    """Ingestion that stops before its outcome is stored leaves no pending record."""

    @pytest.mark.asyncio
    async def test_store_error_on_completion(self, controller, listing, store):
        listing.files = [make_file("A")]
        await controller.refresh()
        store.fail_save_status = IngestionStatus.INGESTED

        with pytest.raises(ConnectionError):
            await controller.ingest_file("A")

        assert store.records["A"].status == IngestionStatus.NOT_STARTED
        view = controller.get_file("A")
        assert view.status == IngestionStatus.NOT_STARTED
        assert not view.optimistic

        store.fail_save_status = None
        record = await controller.ingest_file("A")
        assert record.status == IngestionStatus.INGESTED

    @pytest.mark.asyncio
    async def test_store_error_on_failure_write(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.outcome = IngestionOutcome(success=False, error_message="Unsupported file type")
        store.fail_save_status = IngestionStatus.FAILED

        with pytest.raises(ConnectionError):
            await controller.ingest_file("A")

        assert store.records["A"].status == IngestionStatus.NOT_STARTED
        assert await controller.archive_file("A") == "A.pdf"

    @pytest.mark.asyncio
    async def test_cancelled_ingestion(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.gate = asyncio.Event()
        worker.started = asyncio.Event()

        task = asyncio.create_task(controller.ingest_file("A"))
        await worker.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.records["A"].status == IngestionStatus.NOT_STARTED
        view = controller.get_file("A")
        assert view.status == IngestionStatus.NOT_STARTED
        assert not view.optimistic

        worker.gate = None
        worker.started = None
        record = await controller.ingest_file("A")
        assert record.status == IngestionStatus.INGESTED

    @pytest.mark.asyncio
    async def test_stale_pending_record_is_retried(self, listing, store, worker, clock):
        listing.files = [make_file("A")]
        store.records["A"] = make_record(
            "A", IngestionStatus.PENDING, updated_at=NOW - timedelta(hours=1)
        )
        controller = ReconciliationController(
            listing=listing,
            store=store,
            worker=worker,
            state_machine=IngestionStateMachine(
                store, clock=clock, pending_timeout=timedelta(minutes=5)
            ),
            aggregator=StatsAggregator(clock=clock),
        )
        await controller.refresh()

        record = await controller.ingest_file("A")

        assert record.status == IngestionStatus.INGESTED
        assert worker.calls == [("A", "A.pdf")]


class TestUnknownFile:
    """Mutations of a file neither snapshot knows."""

    @pytest.mark.asyncio
    async def test_archive_unknown_file(self, controller, listing, store):
        listing.files = [make_file("A")]
        await controller.refresh()

        with pytest.raises(FileNotFound):
            await controller.archive_file("ghost")

        assert "ghost" not in store.records

    @pytest.mark.asyncio
    async def test_ingest_unknown_file(self, controller, listing, worker):
        listing.files = [make_file("A")]
        await controller.refresh()

        with pytest.raises(FileNotFound):
            await controller.ingest_file("nope")

        assert worker.calls == []

    @pytest.mark.asyncio
    async def test_ingest_unknown_file_with_name(self, controller, worker):
        record = await controller.ingest_file("new", "Fresh upload.pdf")

        assert record.status == IngestionStatus.INGESTED
        assert worker.calls == [("new", "Fresh upload.pdf")]

    @pytest.mark.asyncio
    async def test_restore_unknown_file(self, controller):
        with pytest.raises(FileNotFound):
            await controller.restore_file("ghost")

    @pytest.mark.asyncio
    async def test_archive_file_known_only_to_records(self, controller, store):
        store.records["old"] = make_record("old", IngestionStatus.FAILED)
        await controller.refresh()

        assert await controller.archive_file("old") == "old.pdf"
        assert store.records["old"].is_archived


class TestArchiveRestore:
    """Tests for archive_file and restore_file."""

    @pytest.mark.asyncio
    async def test_archive_keeps_object_store_file(self, controller, listing, store):
        listing.files = [make_file("A", name="Policy.docx"), make_file("B")]
        store.records["A"] = make_record("A", IngestionStatus.INGESTED, vector_count=30)
        await controller.refresh()

        name = await controller.archive_file("A")

        assert name == "A.pdf"
        assert [f.id for f in controller.files] == ["A", "B"]
        assert [v.file.id for v in controller.list_files()] == ["B"]
        assert [v.file.id for v in controller.list_files(include_archived=True)] == ["A", "B"]

        stats = controller.get_dashboard_stats()
        assert stats.total_files == 1
        assert stats.archived == 1
        assert stats.total_vectors == 0

    @pytest.mark.asyncio
    async def test_archive_unsubmitted_file_uses_listing_name(self, controller, listing):
        listing.files = [make_file("A", name="Policy.docx")]
        await controller.refresh()

        assert await controller.archive_file("A") == "Policy.docx"

    @pytest.mark.asyncio
    async def test_archive_twice_keeps_first_timestamp(self, controller, listing, store, clock):
        listing.files = [make_file("A")]
        await controller.refresh()

        await controller.archive_file("A")
        clock.advance(days=1)
        await controller.archive_file("A")

        assert store.records["A"].soft_deleted_at == NOW

    @pytest.mark.asyncio
    async def test_archive_during_ingestion_is_rejected(self, controller, listing, store, worker):
        listing.files = [make_file("A")]
        await controller.refresh()
        worker.gate = asyncio.Event()
        worker.started = asyncio.Event()

        task = asyncio.create_task(controller.ingest_file("A"))
        await worker.started.wait()

        with pytest.raises(TransitionRejected):
            await controller.archive_file("A")

        worker.gate.set()
        await task
        assert not store.records["A"].is_archived

    @pytest.mark.asyncio
    async def test_restore_after_ingest(self, controller, listing, store):
        listing.files = [make_file("A")]
        await controller.refresh()
        await controller.ingest_file("A")
        await controller.archive_file("A")

        record = await controller.restore_file("A")

        assert record.status == IngestionStatus.NOT_STARTED
        assert record.vector_count == 0
        view = controller.get_file("A")
        assert view.status == IngestionStatus.NOT_STARTED
        assert not view.archived

    @pytest.mark.asyncio
    async def test_restore_active_file_is_rejected(self, controller, listing, store):
        listing.files = [make_file("A")]
        store.records["A"] = make_record("A", IngestionStatus.INGESTED)
        await controller.refresh()

        with pytest.raises(TransitionRejected):
            await controller.restore_file("A")


class TestViews:
    """Tests for the derived file views."""

    @pytest.mark.asyncio
    async def test_get_file_unknown(self, controller, listing):
        listing.files = [make_file("A")]
        await controller.refresh()

        assert controller.get_file("missing") is None

    @pytest.mark.asyncio
    async def test_upload_batch_without_tracker(self, controller):
        with pytest.raises(RuntimeError):
            await controller.upload_batch([])
