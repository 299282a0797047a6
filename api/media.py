"""
Client for the media host that stores video, thumbnail and avatar files.

Speaks the Cloudinary upload API: signed multipart uploads and signed
destroy calls against {base_url}/{cloud_name}/{resource_type}/{action}.
"""

import asyncio
import hashlib
import logging
import os
import random
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import httpx
from fastapi import Request, UploadFile

from api.errors import MediaUploadError, ValidationFailed
from api.metrics import MEDIA_REQUESTS_TOTAL
from config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0  # seconds
DEFAULT_RETRY_MAX_DELAY = 10.0  # seconds


class MediaType(str, Enum):
    """Cloudinary resource types."""

    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaAsset:
    url: str
    public_id: str
    resource_type: str
    duration: float = 0.0


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    """
    Sign request parameters the way the media host expects.

    Parameters are sorted by name, joined as k=v with '&', then the API
    secret is appended and the whole string SHA-1 hashed.
    """
    payload = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1(f"{payload}{api_secret}".encode()).hexdigest()


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def validate_upload(upload: Optional[UploadFile], media_type: MediaType, settings: Settings, field: str) -> UploadFile:
    """
    Check an uploaded file's presence, extension and size before sending it anywhere.

    Raises ValidationFailed with a message naming the form field.
    """
    if upload is None or not upload.filename:
        raise ValidationFailed(f"{field} file is required")

    ext = Path(upload.filename).suffix.lower()
    if media_type == MediaType.VIDEO:
        allowed, max_bytes = settings.video_extensions, settings.max_video_upload_bytes
    else:
        allowed, max_bytes = settings.image_extensions, settings.max_image_upload_bytes

    if ext not in allowed:
        raise ValidationFailed(f"{field}: unsupported file type '{ext}'. Allowed: {', '.join(sorted(allowed))}")

    size = _upload_size(upload)
    if size == 0:
        raise ValidationFailed(f"{field} file is empty")
    if size > max_bytes:
        raise ValidationFailed(f"{field} exceeds the maximum size of {max_bytes // (1024 * 1024)} MB")

    return upload


class MediaClient:
    """HTTP client for uploading to and deleting from the media host."""

    def __init__(self, settings: Settings, max_retries: int = DEFAULT_MAX_RETRIES):
        self.base_url = settings.media_base_url.rstrip("/")
        self.cloud_name = settings.media_cloud_name
        self.api_key = settings.media_api_key
        self.api_secret = settings.media_api_secret
        self.folder = settings.media_folder
        self.timeout = settings.media_timeout
        self.max_retries = max_retries
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
            self._client = httpx.AsyncClient(timeout=self.timeout, limits=limits)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _url(self, media_type: MediaType, action: str) -> str:
        return f"{self.base_url}/{self.cloud_name}/{media_type.value}/{action}"

    def _signed(self, params: Dict[str, str]) -> Dict[str, str]:
        params = dict(params, timestamp=str(int(time.time())))
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    async def _post(self, url: str, data: Dict[str, str], files=None) -> dict:
        """POST with retries on connection errors and 5xx responses."""
        client = await self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                if files is not None:
                    for _, (_, fileobj, _) in files.items():
                        fileobj.seek(0)
                resp = await client.post(url, data=data, files=files)
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    raise MediaUploadError(f"Media host rejected the request ({e.response.status_code})")
            except httpx.RequestError as e:
                last_error = e

            if attempt < self.max_retries:
                delay = min(DEFAULT_RETRY_BASE_DELAY * (2**attempt), DEFAULT_RETRY_MAX_DELAY)
                delay += random.uniform(0, delay * 0.25)
                logger.warning(f"Media host request failed (attempt {attempt + 1}), retrying in {delay:.1f}s: {last_error}")
                await asyncio.sleep(delay)

        logger.error(f"Media host request failed after {self.max_retries + 1} attempts: {last_error}")
        raise MediaUploadError("Media service unavailable, please try again later")

    async def upload(self, upload: UploadFile, media_type: MediaType) -> MediaAsset:
        """Upload a file and return where it now lives."""
        if not self.configured:
            raise MediaUploadError("Media storage is not configured")

        data = self._signed({"folder": self.folder})
        files = {"file": (upload.filename, upload.file, upload.content_type or "application/octet-stream")}
        try:
            result = await self._post(self._url(media_type, "upload"), data, files=files)
        except MediaUploadError:
            MEDIA_REQUESTS_TOTAL.labels("upload", "failed").inc()
            raise

        url = result.get("secure_url") or result.get("url")
        public_id = result.get("public_id")
        if not url or not public_id:
            logger.error(f"Media host upload response missing url/public_id: {sorted(result)}")
            raise MediaUploadError("Media host returned an invalid response")

        MEDIA_REQUESTS_TOTAL.labels("upload", "success").inc()
        logger.info(f"Uploaded {media_type.value} {public_id}")
        return MediaAsset(
            url=url,
            public_id=public_id,
            resource_type=result.get("resource_type", media_type.value),
            duration=float(result.get("duration") or 0.0),
        )

    async def destroy(self, public_id: Optional[str], media_type: MediaType) -> bool:
        """
        Delete a stored file.

        Called after the database row is already gone or replaced, so failures
        are logged and reported as False rather than raised.
        """
        if not public_id or not self.configured:
            return False

        data = self._signed({"public_id": public_id})
        try:
            result = await self._post(self._url(media_type, "destroy"), data)
        except MediaUploadError as e:
            MEDIA_REQUESTS_TOTAL.labels("destroy", "failed").inc()
            logger.warning(f"Failed to delete {media_type.value} {public_id} from media host: {e.detail}")
            return False

        deleted = result.get("result") == "ok"
        MEDIA_REQUESTS_TOTAL.labels("destroy", "success" if deleted else "failed").inc()
        if not deleted:
            logger.warning(f"Media host did not delete {media_type.value} {public_id}: {result.get('result')}")
        return deleted


def get_media_client(request: Request) -> MediaClient:
    """FastAPI dependency returning the app's media client."""
    return request.app.state.media
