"""Async httpx client for blob storage of uploaded PDFs.

Endpoints:
    POST   {base_url}           raw bytes → {"ref": "..."}
    GET    {base_url}/{ref}     → raw bytes
    DELETE {base_url}/{ref}
"""

from __future__ import annotations

import logging

import httpx

from wealthdesk.config import settings
from wealthdesk.errors import NotFoundError, TransientError

logger = logging.getLogger(__name__)


class BlobStorageClient:
    """Store and fetch raw PDF bytes by reference."""

    def __init__(self, base_url: str | None = None, token: str | None = None) -> None:
        self._base_url = (base_url or settings.storage.blob_storage_url).rstrip("/")
        self._token = settings.storage.blob_storage_token if token is None else token
        self._timeout = httpx.Timeout(30.0, connect=5.0)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def put(self, data: bytes, filename: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._base_url,
                    content=data,
                    headers={**self._headers(), "Content-Type": "application/pdf", "X-Filename": filename},
                )
                response.raise_for_status()
                return str(response.json()["ref"])
        except httpx.HTTPError as exc:
            logger.warning("Blob storage put failed for %s: %s", filename, exc)
            raise TransientError(f"Blob storage unavailable: {exc}") from exc

    async def get(self, ref: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}/{ref}", headers=self._headers())
                if response.status_code == 404:
                    raise NotFoundError(f"Blob {ref} not found")
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as exc:
            logger.warning("Blob storage get failed for %s: %s", ref, exc)
            raise TransientError(f"Blob storage unavailable: {exc}") from exc

    async def delete(self, ref: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.delete(f"{self._base_url}/{ref}", headers=self._headers())
                if response.status_code != 404:
                    response.raise_for_status()
        except httpx.HTTPError:
            # The record is already gone; an orphaned blob is only a storage cost
            logger.warning("Blob storage delete failed for %s", ref, exc_info=True)
