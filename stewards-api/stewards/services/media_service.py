"""Download inbound attachments and hand them to object storage."""

import mimetypes
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

import httpx

from stewards.config import settings
from stewards.logging_config import get_logger
from stewards.services.media_classifier import MediaReference

logger = get_logger("media_service")

_SAFE_ID_RE = re.compile(r"[^A-Za-z0-9_-]+")


class MediaDownloadError(Exception):
    pass


class MediaStorage(ABC):
    """Object storage for uploaded media."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store the bytes under key and return a public URL."""
        pass


class LocalMediaStorage(MediaStorage):
    def __init__(self, base_dir: Optional[str] = None, public_base_url: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.media_storage_dir)
        self.public_base_url = (public_base_url or settings.media_public_base_url).rstrip("/")

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        target = self.base_dir / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Media stored", extra={"context": {"key": key, "bytes": len(data)}})
        return f"{self.public_base_url}/{key}"


def _safe_id(value: Optional[str]) -> str:
    cleaned = _SAFE_ID_RE.sub("_", value or "").strip("_")
    return cleaned[:64] or uuid4().hex


def _guess_extension(mime: Optional[str], file_name: Optional[str], media_type: str) -> str:
    if file_name and "." in file_name:
        return "." + file_name.rsplit(".", 1)[-1].lower()
    if mime:
        ext = mimetypes.guess_extension(mime.split(";")[0].strip())
        if ext:
            return ext
    return ".mp4" if media_type == "video" else ".jpg"


def build_storage_key(
    work_order_id: Optional[str],
    location: Optional[str],
    reference: MediaReference,
    message_id: Optional[str] = None,
) -> str:
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    ext = _guess_extension(reference.mime, reference.file_name, reference.media_type)
    folder = "videos" if reference.media_type == "video" else "photos"
    return f"{_safe_id(work_order_id)}/{_safe_id(location)}/{folder}/{day}_{_safe_id(message_id)}{ext}"


def download_media(reference: MediaReference, *, http_client: Optional[httpx.Client] = None) -> tuple[bytes, Optional[str]]:
    """Fetch attachment bytes from a direct URL or the gateway download path."""
    headers = {}
    if reference.url:
        url = reference.url
        if url.startswith(settings.wassenger_api_base) and settings.wassenger_api_key:
            headers["Token"] = settings.wassenger_api_key
    elif reference.download_path:
        url = f"{settings.wassenger_api_base.rstrip('/')}/{reference.download_path.lstrip('/')}"
        if settings.wassenger_api_key:
            headers["Token"] = settings.wassenger_api_key
    else:
        raise MediaDownloadError("no media location")

    try:
        if http_client is not None:
            response = http_client.get(url, headers=headers, follow_redirects=True)
        else:
            with httpx.Client(timeout=settings.http_timeout_seconds) as client:
                response = client.get(url, headers=headers, follow_redirects=True)
    except httpx.HTTPError as exc:
        raise MediaDownloadError(f"download failed: {exc}") from exc

    if response.status_code != 200:
        raise MediaDownloadError(f"download failed: status {response.status_code}")
    content = response.content
    if len(content) > settings.media_max_bytes:
        raise MediaDownloadError(f"media too large: {len(content)} bytes")
    content_type = response.headers.get("content-type") or reference.mime
    return content, content_type


def store_inbound_media(
    reference: MediaReference,
    storage: MediaStorage,
    *,
    work_order_id: Optional[str],
    location: Optional[str],
    message_id: Optional[str] = None,
) -> str:
    data, content_type = download_media(reference)
    key = build_storage_key(work_order_id, location, reference, message_id)
    return storage.put(key, data, content_type)


_media_storage: Optional[MediaStorage] = None


def get_media_storage() -> MediaStorage:
    global _media_storage
    if _media_storage is None:
        _media_storage = LocalMediaStorage()
    return _media_storage
