"""Upload intake: validate, probe, presign, transfer and register each file as a Project."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from app.config import get_settings
from models import (
    DEFAULT_TARGET_DURATION_SEC,
    MAX_TARGET_DURATION_SEC,
    MIN_TARGET_DURATION_SEC,
    SourceVideo,
    UploadItem,
    UploadStatus,
)
from services.frame_sampler import VideoProbe, probe_video
from services.storage import Storage, UploadTarget
from services.store import ProjectStore, project_store

logger = logging.getLogger(__name__)

VIDEO_CONTENT_PREFIX = "video/"

ItemListener = Callable[[UploadItem], None]


class UploadValidationError(ValueError):
    """File rejected before any transfer: wrong type, too large, or a bad target duration."""


@dataclass
class UploadCandidate:
    name: str
    content_type: str
    path: Path

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size


def validate_candidate(candidate: UploadCandidate, *, max_bytes: int) -> None:
    if not (candidate.content_type or "").lower().startswith(VIDEO_CONTENT_PREFIX):
        raise UploadValidationError(f"{candidate.name}: not a video file ({candidate.content_type or 'unknown type'})")
    size = candidate.size_bytes
    if size > max_bytes:
        raise UploadValidationError(
            f"{candidate.name}: {size} bytes exceeds the {max_bytes // (1024 * 1024)} MB limit"
        )


def validate_target_duration(target_duration_sec: int) -> int:
    if not MIN_TARGET_DURATION_SEC <= target_duration_sec <= MAX_TARGET_DURATION_SEC:
        raise UploadValidationError(
            f"target_duration_sec must be between {MIN_TARGET_DURATION_SEC} and {MAX_TARGET_DURATION_SEC}"
        )
    return target_duration_sec


class UploadCoordinator:
    """
    Runs one independent transfer per candidate file.

    Each file goes presign -> PUT (with 0-100 progress) -> Project row. A failure marks only
    that file's UploadItem as error; sibling uploads carry on.
    """

    def __init__(
        self,
        storage: Storage,
        *,
        store: ProjectStore | None = None,
        prober: Callable[[str], VideoProbe] = probe_video,
        max_upload_bytes: int | None = None,
    ) -> None:
        self._storage = storage
        self._store = store if store is not None else project_store
        self._prober = prober
        self._max_upload_bytes = max_upload_bytes or get_settings().max_upload_bytes

    async def upload_many(
        self,
        candidates: list[UploadCandidate],
        *,
        owner_id: str,
        target_duration_sec: int = DEFAULT_TARGET_DURATION_SEC,
        listener: ItemListener | None = None,
    ) -> list[UploadItem]:
        """Upload all candidates concurrently. Returns one UploadItem per candidate, in input order."""
        items = [
            UploadItem(file_name=c.name, content_type=c.content_type, size_bytes=self._safe_size(c))
            for c in candidates
        ]
        await asyncio.gather(
            *(
                self._run(candidate, item, owner_id=owner_id, target_duration_sec=target_duration_sec, listener=listener)
                for candidate, item in zip(candidates, items)
            )
        )
        done = sum(1 for i in items if i.status is UploadStatus.DONE)
        logger.info("[upload] %d/%d file(s) uploaded for owner=%s", done, len(items), owner_id)
        return items

    async def upload(
        self,
        candidate: UploadCandidate,
        *,
        owner_id: str,
        target_duration_sec: int = DEFAULT_TARGET_DURATION_SEC,
        listener: ItemListener | None = None,
    ) -> UploadItem:
        item = UploadItem(
            file_name=candidate.name,
            content_type=candidate.content_type,
            size_bytes=self._safe_size(candidate),
        )
        await self._run(candidate, item, owner_id=owner_id, target_duration_sec=target_duration_sec, listener=listener)
        return item

    @staticmethod
    def _safe_size(candidate: UploadCandidate) -> int:
        try:
            return candidate.size_bytes
        except OSError:
            return 0

    async def _run(
        self,
        candidate: UploadCandidate,
        item: UploadItem,
        *,
        owner_id: str,
        target_duration_sec: int,
        listener: ItemListener | None,
    ) -> None:
        def notify() -> None:
            if listener is not None:
                listener(item)

        def on_progress(percent: int) -> None:
            item.progress = percent
            notify()

        try:
            validate_target_duration(target_duration_sec)
            validate_candidate(candidate, max_bytes=self._max_upload_bytes)
            probe = await asyncio.to_thread(self._prober, str(candidate.path))
            notify()

            presigned = (
                await self._storage.presign(
                    [UploadTarget(name=candidate.name, content_type=candidate.content_type)],
                    prefix=f"{owner_id}/source",
                )
            )[0]
            await self._storage.put_bytes(
                presigned.upload_url,
                candidate.path,
                candidate.content_type,
                on_progress=on_progress,
            )

            source = SourceVideo(
                storage_key=presigned.key,
                public_url=presigned.public_url,
                duration_ms=probe.duration_ms,
                width=probe.width,
                height=probe.height,
                size_bytes=item.size_bytes,
            )
            item.project = self._store.create(
                owner_id=owner_id,
                source=source,
                target_duration_sec=target_duration_sec,
            )
            item.progress = 100
            item.status = UploadStatus.DONE
            logger.info(
                "[upload] %s done: project=%s duration=%dms %dx%d",
                candidate.name,
                item.project.id,
                probe.duration_ms,
                probe.width,
                probe.height,
            )
        except UploadValidationError as exc:
            item.status = UploadStatus.ERROR
            item.error = str(exc)
            logger.warning("[upload] Rejected %s: %s", candidate.name, exc)
        except Exception as exc:  # noqa: BLE001
            item.status = UploadStatus.ERROR
            item.error = str(exc) or type(exc).__name__
            logger.error("[upload] %s FAILED: %s", candidate.name, exc, exc_info=True)
        notify()
