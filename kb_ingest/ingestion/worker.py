"""
Client for the embedding/vectorization worker.

The worker either answers an ingestion request with the final stats, or
hands back an ingestion ID that is polled until it reaches a terminal
status or the configured timeout elapses.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from kb_ingest.errors import WorkerUnavailable
from kb_ingest.models import IngestionMetadata
from kb_ingest.records import parse_metadata

logger = logging.getLogger(__name__)


@dataclass
class IngestionOutcome:
    """Terminal result reported by the worker."""
    success: bool
    vector_count: int = 0
    chunk_count: int = 0
    metadata: Optional[IngestionMetadata] = None
    error_message: Optional[str] = None


class IngestionWorkerClient:
    """Requests ingestion of a file and waits for its outcome."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
        request_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize worker client.

        Args:
            base_url: Worker API base URL
            api_key: Optional API key sent as a bearer token
            timeout: Total time to wait for a pending ingestion
            poll_interval: Delay between status polls
            request_timeout: Timeout of a single HTTP request
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            timeout=self.request_timeout, transport=self.transport, headers=headers
        )

    async def _send(self, client: httpx.AsyncClient, method: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await client.request(method, f"{self.base_url}/ingestion", **kwargs)
        except httpx.TransportError as e:
            raise WorkerUnavailable(f"Ingestion worker unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        # A JSON body with success=false is the worker reporting a failure
        if isinstance(data, dict) and data.get("success") is False:
            return data

        if response.is_error or not isinstance(data, dict):
            raise WorkerUnavailable(
                f"Ingestion worker returned {response.status_code}: {response.text[:500]}",
                upstream_status=response.status_code,
            )
        return data

    async def request_ingestion(self, file_id: str, file_name: str) -> IngestionOutcome:
        """
        Ingest a file and wait for the outcome.

        Args:
            file_id: Object store file ID
            file_name: File name

        Returns:
            IngestionOutcome; a worker-side failure or timeout is an
            unsuccessful outcome, not an exception

        Raises:
            WorkerUnavailable: If the worker cannot be reached or answers garbage
        """
        async with self._client() as client:
            data = await self._send(
                client, "POST", json={"fileId": file_id, "fileName": file_name}
            )

            if data.get("success") is False:
                return IngestionOutcome(
                    success=False,
                    error_message=data.get("error") or "Ingestion failed",
                )

            stats = data.get("stats")
            if stats:
                metadata = parse_metadata(data.get("metadata")) or IngestionMetadata(
                    processing_time=stats.get("processingTime") or 0
                )
                return IngestionOutcome(
                    success=True,
                    vector_count=stats.get("vectors") or 0,
                    chunk_count=stats.get("chunks") or 0,
                    metadata=metadata,
                )

            ingestion_id = data.get("ingestionId")
            if not ingestion_id:
                raise WorkerUnavailable(f"Unexpected worker response: {data}")

            logger.info(f"Polling ingestion {ingestion_id} for file {file_id}")
            return await self._poll(client, ingestion_id)

    async def _poll(self, client: httpx.AsyncClient, ingestion_id: str) -> IngestionOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        while True:
            data = await self._send(client, "GET", params={"id": ingestion_id})
            if data.get("success") is False:
                return IngestionOutcome(
                    success=False, error_message=data.get("error") or "Ingestion failed"
                )

            ingestion = data.get("ingestion") or {}
            status = ingestion.get("status")

            if status == "ingested":
                return IngestionOutcome(
                    success=True,
                    vector_count=ingestion.get("vectorCount") or 0,
                    chunk_count=ingestion.get("chunkCount") or 0,
                    metadata=parse_metadata(ingestion.get("metadata")),
                )
            if status == "failed":
                return IngestionOutcome(
                    success=False,
                    error_message=ingestion.get("errorMessage") or "Ingestion failed",
                )

            if loop.time() >= deadline:
                return IngestionOutcome(
                    success=False,
                    error_message=f"Ingestion timed out after {self.timeout:g}s",
                )
            await asyncio.sleep(self.poll_interval)
