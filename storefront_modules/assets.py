"""
Asset pipeline: turns inline (data URI) images into durable blob storage URLs.

An upload failure raises UploadError for that one asset. Callers substitute
the placeholder URL; a failed image never blocks store or product creation.
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
from urllib.parse import unquote_to_bytes

import httpx
from supabase import Client, create_client

from .errors import RateLimitOrNetworkError, UploadError

_DATA_URI_RE = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]+)*?)(?P<b64>;base64)?,(?P<data>.*)$',
                          re.DOTALL)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}


# ========================================
# DATA URI HELPERS
# ========================================

def is_data_uri(value) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def is_durable_url(value) -> bool:
    """True for references that need no upload (http(s) URLs and site-relative paths)."""
    return isinstance(value, str) and bool(value) and not is_data_uri(value)


def parse_data_uri(data_uri: str) -> Tuple[bytes, str]:
    """
    Decode a data URI.

    Returns:
        (raw bytes, mime type)

    Raises:
        ValueError: If the string is not a well-formed data URI
    """
    if not is_data_uri(data_uri):
        raise ValueError("Not a data URI")

    match = _DATA_URI_RE.match(data_uri)
    if not match:
        raise ValueError("Malformed data URI")

    mime_type = match.group("mime") or "text/plain"
    payload = match.group("data")
    if match.group("b64"):
        try:
            return base64.b64decode(payload, validate=True), mime_type
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload in data URI: {e}") from e

    return unquote_to_bytes(payload), mime_type


def to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def file_to_data_uri(path: str, mime_type: Optional[str] = None) -> str:
    """Read a local file into a data URI, guessing the mime type from the extension."""
    mime_type = mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
    with open(path, "rb") as f:
        return to_data_uri(f.read(), mime_type)


async def url_to_data_uri(url: str, timeout: float = 30.0) -> str:
    """Download a remote image and return it as a data URI."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise RateLimitOrNetworkError(f"Failed to fetch {url}: HTTP {e.response.status_code}") from e
    except httpx.RequestError as e:
        raise RateLimitOrNetworkError(f"Failed to fetch {url}: {e}") from e

    mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
    return to_data_uri(response.content, mime_type)


def extension_for(mime_type: str) -> str:
    return EXTENSIONS.get(mime_type) or (mimetypes.guess_extension(mime_type) or ".bin").lstrip(".")


# ========================================
# BLOB STORAGE
# ========================================

class BlobStorage(ABC):
    """Path-addressed binary storage returning publicly resolvable URLs."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return its durable URL."""


class SupabaseBlobStorage(BlobStorage):
    """Blob storage backed by a Supabase Storage bucket."""

    def __init__(self, url: str, key: str, bucket: str, client: Optional[Client] = None):
        self.client: Client = client or create_client(url, key)
        self.bucket = bucket

    @classmethod
    def from_config(cls, cfg):
        url = cfg.get("SUPABASE_URL", "").strip()
        key = cfg.get("SUPABASE_SERVICE_KEY", "").strip()
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be configured for blob storage")
        return cls(url, key, cfg.get("SUPABASE_STORAGE_BUCKET") or "storefront-assets")

    async def upload(self, path, data, content_type):
        bucket = self.client.storage.from_(self.bucket)
        # The supabase client is synchronous; keep its I/O off the event loop
        await asyncio.to_thread(
            bucket.upload, path=path, file=data, file_options={"content-type": content_type, "upsert": "true"}
        )
        return await asyncio.to_thread(bucket.get_public_url, path)


# ========================================
# PIPELINE
# ========================================

class AssetPipeline:
    """Uploads inline assets and passes durable references through."""

    def __init__(self, storage: BlobStorage):
        self.storage = storage

    async def materialize(self, data_uri: str, destination_path: str) -> str:
        """
        Upload one inline asset.

        Args:
            data_uri: The inline asset
            destination_path: Blob path without extension (the extension follows the mime type)

        Returns:
            Durable URL

        Raises:
            UploadError: If the asset cannot be decoded or uploaded
        """
        try:
            data, mime_type = parse_data_uri(data_uri)
        except ValueError as e:
            raise UploadError(f"Cannot decode asset for {destination_path}: {e}") from e

        path = f"{destination_path}.{extension_for(mime_type)}"
        try:
            url = await self.storage.upload(path, data, mime_type)
        except UploadError:
            raise
        except Exception as e:
            # Storage SDKs raise their own exception types
            raise UploadError(f"Upload to {path} failed: {e}") from e

        if not url:
            raise UploadError(f"Upload to {path} returned no URL")

        logging.info(f"Uploaded asset to {path}")
        return url

    async def materialize_many(self, references: Sequence[str], destination_prefix: str,
                               placeholder_url: Optional[str] = None) -> List[Optional[str]]:
        """
        Materialize an ordered list of mixed inline/durable references.

        The result has the same length and order as ``references``. Durable
        references pass through unchanged. A failed upload yields
        ``placeholder_url`` in that position (None when no placeholder is given).
        """
        results = []
        for index, ref in enumerate(references):
            if not is_data_uri(ref):
                results.append(ref)
                continue
            try:
                results.append(await self.materialize(ref, f"{destination_prefix}/{index}"))
            except UploadError as e:
                logging.warning(f"Asset {index} under {destination_prefix} failed, using placeholder: {e}")
                results.append(placeholder_url)
        return results
