"""Dependencies for the ingestion reconciler: database pool and collaborator wiring."""

from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import AsyncIterator, Optional
import logging
import asyncpg

from kb_ingest.controller import ReconciliationController
from kb_ingest.ingestion.state_machine import IngestionStateMachine
from kb_ingest.ingestion.uploader import ResumableUploader
from kb_ingest.ingestion.uploads import UploadProgressTracker
from kb_ingest.ingestion.worker import IngestionWorkerClient
from kb_ingest.listing import ObjectListingClient
from kb_ingest.records import IngestionRecordStore
from kb_ingest.settings import Settings
from kb_ingest.stats import StatsAggregator

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Accepted upload MIME types
ALLOWED_UPLOAD_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/markdown",
    "image/jpeg",
    "image/png",
    "image/gif",
)


@asynccontextmanager
async def db_pool_context(database_url: str) -> AsyncIterator[asyncpg.Pool]:
    """
    Context manager for database pool.

    Usage:
        async with db_pool_context(url) as pool:
            await pool.fetch("SELECT ...")
    """
    pool = None
    try:
        pool = await asyncpg.create_pool(
            database_url,
            min_size=2,
            max_size=10,
            command_timeout=60
        )
        yield pool
    finally:
        if pool:
            await pool.close()


async def apply_schema(pool: asyncpg.Pool, schema_path: Path = SCHEMA_PATH) -> None:
    """
    Apply schema.sql to the database.

    Args:
        pool: Database connection pool
        schema_path: Path to the DDL file
    """
    schema_sql = schema_path.read_text(encoding="utf-8")
    async with pool.acquire() as conn:
        await conn.execute(schema_sql)
    logger.info(f"Schema applied from {schema_path.name}")


def build_controller(
    settings: Settings,
    pool: asyncpg.Pool,
    listing: Optional[ObjectListingClient] = None,
    worker: Optional[IngestionWorkerClient] = None,
) -> ReconciliationController:
    """
    Wire the reconciliation controller and its collaborators from settings.

    Args:
        settings: Application settings
        pool: Database connection pool
        listing: Optional pre-built listing client
        worker: Optional pre-built worker client

    Returns:
        ReconciliationController with an upload tracker attached
    """
    listing = listing or ObjectListingClient(
        base_url=settings.object_store_base_url,
        token=settings.object_store_token,
        folder_name=settings.object_store_folder,
        timeout=settings.http_timeout_seconds,
    )
    worker = worker or IngestionWorkerClient(
        base_url=settings.worker_url,
        api_key=settings.worker_api_key,
        timeout=settings.ingestion_timeout_seconds,
        poll_interval=settings.ingestion_poll_interval_seconds,
        request_timeout=settings.http_timeout_seconds,
    )
    store = IngestionRecordStore(pool, settings.owner_id)

    controller = ReconciliationController(
        listing=listing,
        store=store,
        worker=worker,
        state_machine=IngestionStateMachine(
            store,
            pending_timeout=timedelta(
                seconds=settings.ingestion_timeout_seconds + settings.http_timeout_seconds
            ),
        ),
        aggregator=StatsAggregator(
            recent_window=timedelta(days=settings.recent_upload_window_days)
        ),
    )

    uploader = ResumableUploader(
        upload_url=settings.object_store_upload_url,
        token=settings.object_store_token,
        listing=listing,
        chunk_size=settings.upload_chunk_size,
        timeout=settings.http_timeout_seconds,
    )
    controller.uploads = UploadProgressTracker(
        uploader,
        refresh=controller.refresh,
        max_upload_bytes=settings.max_upload_bytes,
        allowed_types=ALLOWED_UPLOAD_TYPES,
        phase_delay=settings.upload_phase_delay_seconds,
    )

    logger.info(f"Controller ready: owner={settings.owner_id}, folder={settings.object_store_folder}")
    return controller
