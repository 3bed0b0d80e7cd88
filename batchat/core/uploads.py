"""
Blob host collaborator.

The core only needs ``upload(data) -> url``; what the host does with the
bytes is its own business.
"""

import base64
import logging
from typing import Optional, Protocol

import httpx

from batchat.config import get_settings
from batchat.core.exceptions import ChatValidationError, StoreUnavailableError

logger = logging.getLogger(__name__)


class BlobUploader(Protocol):
    async def upload(self, data: bytes, filename: Optional[str] = None) -> str:
        """Store ``data`` and return its public URL."""
        ...


class HttpBlobUploader:
    """
    Uploads images to an ImgBB-compatible HTTP endpoint.

    The endpoint answers ``{"success": true, "data": {"url": ...}}``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.url = url or settings.upload_url
        self.api_key = api_key if api_key is not None else settings.upload_api_key
        self._timeout = settings.upload_timeout_seconds
        self._client = client

    async def upload(self, data: bytes, filename: Optional[str] = None) -> str:
        if not data:
            raise ChatValidationError("Nothing to upload", "The image is empty.")

        form = {"image": base64.b64encode(data).decode("ascii")}
        if filename:
            form["name"] = filename

        try:
            if self._client is not None:
                response = await self._client.post(self.url, params={"key": self.api_key}, data=form)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, params={"key": self.api_key}, data=form)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Image upload failed: {e}")
            raise StoreUnavailableError(f"Image upload failed: {e}", "Image upload failed. Please try again.")

        body = payload.get("data") if isinstance(payload, dict) else None
        url = body.get("url") if isinstance(body, dict) else None
        if response.status_code >= 400 or not url or not payload.get("success"):
            logger.error(f"Image upload rejected ({response.status_code}): {payload}")
            raise StoreUnavailableError(
                f"Image upload rejected with status {response.status_code}",
                "Image upload failed. Please try again.",
            )
        return url
