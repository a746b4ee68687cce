"""Resumable uploads into the object store folder."""

import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from kb_ingest.listing import ObjectListingClient
from kb_ingest.models import ExternalFile, UploadSource

logger = logging.getLogger(__name__)

UPLOAD_FIELDS = "id, name, mimeType, size, createdTime, webViewLink, iconLink"


class ResumableUploader:
    """Uploads one file at a time, reporting transfer progress in percent."""

    def __init__(
        self,
        upload_url: str,
        token: str,
        listing: ObjectListingClient,
        chunk_size: int = 256 * 1024,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.upload_url = upload_url.rstrip("/")
        self.token = token
        self.listing = listing
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.transport = transport

    async def _stream(
        self, source: UploadSource, on_progress: Callable[[float], None]
    ) -> AsyncIterator[bytes]:
        sent = 0
        for offset in range(0, source.size, self.chunk_size):
            piece = source.content[offset:offset + self.chunk_size]
            yield piece
            sent += len(piece)
            on_progress(sent * 100 / source.size)

    async def upload_file(
        self, source: UploadSource, on_progress: Callable[[float], None]
    ) -> ExternalFile:
        """
        Upload a file into the knowledge base folder.

        Args:
            source: File name, content and MIME type
            on_progress: Called with the transferred percentage (0-100)

        Returns:
            The created object store file

        Raises:
            httpx.HTTPError: If the session cannot be opened or the transfer fails
        """
        folder_id = await self.listing.ensure_folder()

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.token}"},
        ) as client:
            session = await client.post(
                f"{self.upload_url}/files",
                params={"uploadType": "resumable", "fields": UPLOAD_FIELDS},
                headers={
                    "X-Upload-Content-Type": source.mime_type,
                    "X-Upload-Content-Length": str(source.size),
                },
                json={
                    "name": source.name,
                    "mimeType": source.mime_type,
                    "parents": [folder_id],
                },
            )
            session.raise_for_status()
            session_url = session.headers.get("Location")
            if not session_url:
                raise httpx.HTTPStatusError(
                    "Upload session response has no Location header",
                    request=session.request,
                    response=session,
                )

            response = await client.put(
                session_url,
                content=self._stream(source, on_progress),
                headers={
                    "Content-Type": source.mime_type,
                    "Content-Length": str(source.size),
                },
            )
            response.raise_for_status()

        uploaded = ExternalFile.model_validate(response.json())
        logger.info(f"Uploaded {source.name} ({source.size} bytes) as {uploaded.id}")
        return uploaded
