"""
Sequential multi-file uploads with banded progress reporting.

Each file moves through three progress bands:
    preparation  0-30%   fixed pacing
    transfer    30-90%   bytes sent / bytes total reported by the uploader
    completion  90-100%  fixed pacing

Files are uploaded one after another, and batches never overlap. A failure
is terminal for that file only; the batch carries on, emits one summary and
triggers one refresh.
"""

import asyncio
import dataclasses
import logging
import uuid
from typing import Any, Awaitable, Callable, Collection, List, Optional, Sequence

from kb_ingest.errors import UploadFailed
from kb_ingest.models import BatchSummary, UploadOutcome, UploadSource, UploadTask

logger = logging.getLogger(__name__)

PREPARATION_BAND = (0, 30)
TRANSFER_BAND = (30, 90)
COMPLETION_BAND = (90, 100)

ProgressListener = Callable[[UploadTask], None]
SummaryListener = Callable[[BatchSummary], None]


def _band(band: tuple, fraction: float) -> float:
    low, high = band
    return low + (high - low) * max(0.0, min(1.0, fraction))


class UploadProgressTracker:
    """Runs upload batches and reports per-file progress."""

    def __init__(
        self,
        uploader,
        refresh: Callable[[], Awaitable[Any]],
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_types: Optional[Collection[str]] = None,
        phase_delay: float = 0.05,
        phase_steps: int = 3,
        on_progress: Optional[ProgressListener] = None,
        on_summary: Optional[SummaryListener] = None,
    ):
        """
        Initialize upload tracker.

        Args:
            uploader: Object exposing upload_file(source, on_progress)
            refresh: Reconciliation refresh, awaited once per batch
            max_upload_bytes: Largest accepted file
            allowed_types: Accepted MIME types (None accepts all)
            phase_delay: Pause between synthetic progress steps
            phase_steps: Number of synthetic steps per fixed band
            on_progress: Called with a snapshot of a task on every change
            on_summary: Called with the batch summary
        """
        self.uploader = uploader
        self.refresh = refresh
        self.max_upload_bytes = max_upload_bytes
        self.allowed_types = set(allowed_types) if allowed_types else None
        self.phase_delay = phase_delay
        self.phase_steps = max(1, phase_steps)
        self.on_progress = on_progress
        self.on_summary = on_summary

        self.tasks: List[UploadTask] = []
        self._batch_lock = asyncio.Lock()

    def _notify(self, task: UploadTask) -> None:
        if self.on_progress:
            self.on_progress(dataclasses.replace(task))

    async def _paced(self, task: UploadTask, band: tuple, phase: str) -> None:
        task.phase = phase
        for step in range(1, self.phase_steps + 1):
            if self.phase_delay:
                await asyncio.sleep(self.phase_delay)
            task.advance(_band(band, step / self.phase_steps))
            self._notify(task)

    def _validate(self, source: UploadSource) -> None:
        if source.size == 0:
            raise UploadFailed(source.name, "File is empty")
        if source.size > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes / (1024 * 1024)
            raise UploadFailed(source.name, f"File size exceeds limit ({limit_mb:g}MB)")
        if self.allowed_types is not None and source.mime_type not in self.allowed_types:
            raise UploadFailed(source.name, f"File type not allowed: {source.mime_type}")

    async def _upload_one(self, source: UploadSource, task: UploadTask) -> None:
        self._validate(source)
        await self._paced(task, PREPARATION_BAND, "preparation")

        task.phase = "transfer"

        def on_transfer(percent: float) -> None:
            task.advance(_band(TRANSFER_BAND, percent / 100))
            self._notify(task)

        await self.uploader.upload_file(source, on_transfer)
        task.advance(TRANSFER_BAND[1])
        self._notify(task)

        await self._paced(task, COMPLETION_BAND, "completion")

    async def upload_batch(self, files: Sequence[UploadSource]) -> BatchSummary:
        """
        Upload files sequentially.

        A batch started while another one runs waits for it to finish, so
        only one file is ever in transfer.

        Args:
            files: Files to upload, in order

        Returns:
            BatchSummary with succeeded/failed counts
        """
        async with self._batch_lock:
            return await self._run_batch(files)

    async def _run_batch(self, files: Sequence[UploadSource]) -> BatchSummary:
        self.tasks = [
            UploadTask(task_id=f"upload-{uuid.uuid4().hex[:12]}", file_name=f.name, size=f.size)
            for f in files
        ]
        summary = BatchSummary()

        for source, task in zip(files, self.tasks):
            logger.info(f"Uploading file: {source.name} ({source.size} bytes)")
            try:
                await self._upload_one(source, task)
            except Exception as e:
                reason = e.reason if isinstance(e, UploadFailed) else str(e)
                logger.exception(f"Failed to upload {source.name}: {reason}")
                task.outcome = UploadOutcome.FAILED
                task.phase = "failed"
                task.error = reason
                summary.failed += 1
                summary.failures[source.name] = reason
            else:
                task.outcome = UploadOutcome.SUCCEEDED
                task.phase = "done"
                summary.succeeded += 1
            self._notify(task)

        logger.info(f"Upload batch finished: succeeded={summary.succeeded}, failed={summary.failed}")
        if self.on_summary:
            self.on_summary(summary)
        self.tasks = []

        await self.refresh()
        return summary
