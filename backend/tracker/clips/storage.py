"""Supabase Storage uploads for converted GIFs."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

import aiofiles
import httpx

from tracker.clips.config import StorageConfig
from tracker.engine.errors import StorageUploadError

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public,max-age=31536000,immutable"


class SupabaseStorage:
    """Upload objects to a bucket and hand back a URL that serves them."""

    def __init__(self, config: StorageConfig, *, http: httpx.AsyncClient | None = None) -> None:
        if not config.base_url or not config.service_key:
            raise ValueError("STORAGE_URL and STORAGE_SERVICE_KEY are required for clip uploads")
        self.config = config
        self._http = http or httpx.AsyncClient(timeout=60.0)

    async def close(self) -> None:
        await self._http.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.service_key}",
            "apikey": self.config.service_key,
        }

    def _object_url(self, kind: str, destination: str) -> str:
        return (
            f"{self.config.base_url}/storage/v1/object/{kind}"
            f"{self.config.bucket}/{quote(destination)}"
        )

    async def upload(
        self, local_path: Path, destination: str, content_type: str = "image/gif"
    ) -> str:
        """Upload *local_path* to *destination*, overwriting, and return its URL."""
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "Cache-Control": CACHE_CONTROL,
            "x-upsert": "true",
        }
        async with aiofiles.open(local_path, "rb") as fh:
            body = await fh.read()
        try:
            response = await self._http.post(
                self._object_url("", destination),
                content=body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise StorageUploadError(f"Upload of {destination} failed: {e}") from e
        if response.status_code not in (200, 201):
            raise StorageUploadError(
                f"Upload of {destination} failed: {response.status_code} {response.text[:200]}"
            )

        logger.debug(f"Uploaded {destination} to bucket {self.config.bucket}")
        return await self.url_for(destination)

    async def url_for(self, destination: str) -> str:
        if self.config.public_base_url:
            return self.config.public_base_url.replace("{path}", quote(destination, safe=""))
        if self.config.make_public:
            return self._object_url("public/", destination)
        return await self._signed_url(destination)

    async def _signed_url(self, destination: str) -> str:
        try:
            response = await self._http.post(
                self._object_url("sign/", destination),
                json={"expiresIn": self.config.signed_url_ttl_seconds},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise StorageUploadError(f"Signing {destination} failed: {e}") from e
        if response.status_code != 200:
            raise StorageUploadError(f"Signing {destination} failed: {response.status_code}")

        signed = response.json().get("signedURL")
        if not signed:
            raise StorageUploadError(f"Signing {destination} returned no URL")
        return signed if signed.startswith("http") else f"{self.config.base_url}/storage/v1{signed}"
