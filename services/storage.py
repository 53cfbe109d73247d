"""Storage collaborator: presigned GCS write URLs and streamed uploads with progress."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024
PUT_TIMEOUT_SECONDS = 600.0

ProgressCallback = Callable[[int], None]


@dataclass
class UploadTarget:
    name: str
    content_type: str


@dataclass
class PresignedUpload:
    upload_url: str
    public_url: str
    key: str


class Storage(Protocol):
    async def presign(self, files: list[UploadTarget], *, prefix: str) -> list[PresignedUpload]: ...

    async def put_bytes(
        self,
        upload_url: str,
        data: bytes | Path,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> None: ...


def build_object_key(prefix: str, file_name: str, *, index: int = 0) -> str:
    """e.g. "owner123/source/1718000000000-0-9f2c4a1b.mp4". Unique even within one millisecond."""
    ext = os.path.splitext(file_name)[1].lstrip(".").lower() or "bin"
    return f"{prefix.strip('/')}/{int(time.time() * 1000)}-{index}-{secrets.token_hex(4)}.{ext}"


def generate_signed_url(
    blob_name: str,
    *,
    bucket_name: str | None = None,
    expiration_seconds: int | None = None,
    method: str = "PUT",
    content_type: str | None = None,
) -> str:
    """
    Generate a V4 signed URL for a GCS object.

    Uses default credentials (GOOGLE_APPLICATION_CREDENTIALS or ADC).

    :param blob_name: Object path in bucket, e.g. "owner/source/123-0.mp4"
    :param bucket_name: GCS bucket; default from GCS_BUCKET env or "reel-assets"
    :param expiration_seconds: URL validity; default PRESIGN_EXPIRATION_SECONDS
    :param method: "PUT" for one-time writes, "GET" for downloads
    :param content_type: Required Content-Type of the PUT, signed into the URL
    """
    from google.cloud import storage

    settings = get_settings()
    bucket_name = bucket_name or settings.gcs_bucket
    expiration_seconds = expiration_seconds or settings.presign_expiration_seconds
    client = storage.Client()
    bucket = client.bucket(bucket_name)
    blob = bucket.blob(blob_name)
    expiration = datetime.now(timezone.utc) + timedelta(seconds=expiration_seconds)
    kwargs = {"content_type": content_type} if content_type else {}
    return blob.generate_signed_url(
        expiration=expiration,
        method=method,
        version="v4",
        **kwargs,
    )


def public_url_for(key: str) -> str:
    return f"{get_settings().gcs_public_base_url}/{key}"


async def _iter_chunks(
    data: bytes | Path,
    total: int,
    on_progress: ProgressCallback | None,
) -> AsyncIterator[bytes]:
    sent = 0
    last_reported = -1

    def report() -> None:
        nonlocal last_reported
        if on_progress is None:
            return
        percent = 100 if total == 0 else min(100, sent * 100 // total)
        if percent != last_reported:
            last_reported = percent
            on_progress(percent)

    report()
    if isinstance(data, Path):
        with data.open("rb") as fh:
            while chunk := await asyncio.to_thread(fh.read, UPLOAD_CHUNK_SIZE):
                sent += len(chunk)
                yield chunk
                report()
    else:
        for offset in range(0, len(data), UPLOAD_CHUNK_SIZE):
            chunk = data[offset : offset + UPLOAD_CHUNK_SIZE]
            sent += len(chunk)
            yield chunk
            report()


class GcsStorage:
    """Storage backed by a GCS bucket. Writes go straight to signed URLs, never through this process."""

    def __init__(
        self,
        *,
        bucket_name: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bucket_name = bucket_name
        self._client = client

    async def presign(self, files: list[UploadTarget], *, prefix: str) -> list[PresignedUpload]:
        results: list[PresignedUpload] = []
        for index, target in enumerate(files):
            key = build_object_key(prefix, target.name, index=index)
            upload_url = await asyncio.to_thread(
                generate_signed_url,
                key,
                bucket_name=self._bucket_name,
                method="PUT",
                content_type=target.content_type,
            )
            results.append(PresignedUpload(upload_url=upload_url, public_url=public_url_for(key), key=key))
        logger.info("[storage] Presigned %d upload(s) under %s", len(results), prefix)
        return results

    async def put_bytes(
        self,
        upload_url: str,
        data: bytes | Path,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        total = data.stat().st_size if isinstance(data, Path) else len(data)
        headers = {"Content-Type": content_type, "Content-Length": str(total)}
        content = _iter_chunks(data, total, on_progress)
        if self._client is not None:
            response = await self._client.put(upload_url, content=content, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=PUT_TIMEOUT_SECONDS) as client:
                response = await client.put(upload_url, content=content, headers=headers)
        response.raise_for_status()
        logger.info("[storage] PUT %d bytes (%s) -> %s", total, content_type, upload_url.split("?", 1)[0])
