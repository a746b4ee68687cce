"""Object store listing client (Google Drive v3 compatible)."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from kb_ingest.models import ExternalFile

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "nextPageToken, files(id, name, mimeType, size, createdTime, webViewLink, iconLink)"


def _quote(value: str) -> str:
    """Escape a value for a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class ObjectListingClient:
    """Fetches the files currently held in the knowledge base folder."""

    def __init__(
        self,
        base_url: str,
        token: str,
        folder_name: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize listing client.

        Args:
            base_url: Object store API base URL
            token: Bearer token
            folder_name: Name of the folder holding the files
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.folder_name = folder_name
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.token}"},
        )

    async def _find_folder_id(self, client: httpx.AsyncClient) -> Optional[str]:
        response = await client.get(
            f"{self.base_url}/files",
            params={
                "q": f"name='{_quote(self.folder_name)}' and mimeType='{FOLDER_MIME_TYPE}'",
                "fields": "files(id)",
            },
        )
        response.raise_for_status()
        folders = response.json().get("files") or []
        return folders[0]["id"] if folders else None

    async def ensure_folder(self) -> str:
        """
        Get the folder ID, creating the folder when it does not exist yet.

        Returns:
            Folder ID
        """
        async with self._client() as client:
            folder_id = await self._find_folder_id(client)
            if folder_id:
                return folder_id

            response = await client.post(
                f"{self.base_url}/files",
                params={"fields": "id"},
                json={"name": self.folder_name, "mimeType": FOLDER_MIME_TYPE},
            )
            response.raise_for_status()
            folder_id = response.json()["id"]
            logger.info(f"Created folder '{self.folder_name}' (id={folder_id})")
            return folder_id

    async def list_files(self) -> List[ExternalFile]:
        """
        List non-trashed files in the folder, newest first.

        Returns:
            Files in the folder; empty if the folder does not exist

        Raises:
            httpx.HTTPError: If the object store request fails
        """
        async with self._client() as client:
            folder_id = await self._find_folder_id(client)
            if not folder_id:
                logger.info(f"Folder '{self.folder_name}' not found, no files listed")
                return []

            files: List[ExternalFile] = []
            params: Dict[str, Any] = {
                "q": f"'{_quote(folder_id)}' in parents and trashed=false",
                "fields": FILE_FIELDS,
                "orderBy": "createdTime desc",
            }

            while True:
                response = await client.get(f"{self.base_url}/files", params=params)
                response.raise_for_status()
                data = response.json()

                files.extend(ExternalFile.model_validate(item) for item in data.get("files") or [])

                page_token = data.get("nextPageToken")
                if not page_token:
                    break
                params["pageToken"] = page_token

        logger.debug(f"Listed {len(files)} files from '{self.folder_name}'")
        return files
