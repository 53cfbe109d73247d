"""Post-upload analysis pipeline: frames -> audio/transcript -> segment selection.

Phases run strictly in order because each one reads what the previous one persisted on the
service side. Any failure lands the Project in failed with the error message; nothing is
retried here.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from app.config import get_settings
from models import FrameSample, Project, ProjectStatus, Segment
from services.audio_extractor import extract_wav_async
from services.frame_sampler import FrameSampler
from services.pipeline_clients import ErrorKind, PipelineServices, ServiceError, ServiceResult
from services.state_machine import ANALYSIS_STATUSES, InvalidTransition, advance, mark_failed, transition
from services.storage import Storage, UploadTarget
from services.store import ProjectStore, project_store

logger = logging.getLogger(__name__)

FRAME_BATCH_SIZE = 3

SamplerFactory = Callable[[Project], FrameSampler]
AudioExtractor = Callable[[str], Awaitable[bytes]]


class PhaseError(RuntimeError):
    """A pipeline phase could not complete. str() is the message persisted on the Project."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(message)
        self.phase = phase


def default_sampler_factory(project: Project) -> FrameSampler:
    assert project.source is not None
    return FrameSampler.for_locator(project.source.public_url, project.source.duration_ms)


def _unwrap(phase: str, result: ServiceResult) -> dict[str, Any]:
    if isinstance(result, ServiceError):
        raise PhaseError(phase, result.message)
    return result.data


def parse_segments(raw: list[Any], duration_ms: int) -> list[Segment]:
    """
    Turn the selection service's segment list into Segment rows.

    Bounds are clamped to [0, duration_ms]; entries that end up empty or malformed are dropped.
    Order follows the returned segment_index and is renumbered 0..n-1.
    """
    parsed: list[tuple[int, int, Segment]] = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        try:
            start_ms = max(0, min(int(item.get("start_ms", 0)), duration_ms))
            end_ms = max(0, min(int(item["end_ms"]), duration_ms))
            order = int(item.get("segment_index", position))
            score = item.get("score")
            score = None if score is None else max(0.0, min(float(score), 10.0))
        except (KeyError, TypeError, ValueError):
            logger.warning("[analysis] Dropping malformed segment #%d: %r", position, item)
            continue
        if end_ms <= start_ms:
            logger.warning("[analysis] Dropping empty segment #%d (%d-%dms)", position, start_ms, end_ms)
            continue
        segment = Segment(
            segment_index=order,
            start_ms=start_ms,
            end_ms=end_ms,
            score=score,
            reason=item.get("reason") or None,
            subtitle_text=item.get("subtitle_text") or None,
            transcript_text=item.get("transcript_text") or None,
            is_included=True,
            is_user_modified=False,
        )
        parsed.append((order, position, segment))

    parsed.sort(key=lambda entry: (entry[0], entry[1]))
    segments = [segment for _, _, segment in parsed]
    for index, segment in enumerate(segments):
        segment.segment_index = index
    return segments


class AnalysisOrchestrator:
    def __init__(
        self,
        services: PipelineServices,
        storage: Storage,
        *,
        store: ProjectStore | None = None,
        sampler_factory: SamplerFactory = default_sampler_factory,
        audio_extractor: AudioExtractor = extract_wav_async,
        batch_size: int = FRAME_BATCH_SIZE,
        fallback_max_bytes: int | None = None,
    ) -> None:
        self._services = services
        self._storage = storage
        self._store = store if store is not None else project_store
        self._sampler_factory = sampler_factory
        self._audio_extractor = audio_extractor
        self._batch_size = batch_size
        self._fallback_max_bytes = fallback_max_bytes or get_settings().transcription_fallback_max_bytes

    async def run(self, project_id: str) -> Project:
        """Run every phase from the start. Returns the Project in segments_ready or failed."""
        project = self._store.get(project_id)
        if project.status not in ANALYSIS_STATUSES:
            raise InvalidTransition(project.status, ProjectStatus.ANALYZING_FRAMES)
        logger.info("[analysis] Starting pipeline for project %s (status=%s)", project.id, project.status.value)
        try:
            if project.source is None:
                raise PhaseError("preflight", "Project has no source video")
            await self._preflight(project)
            await self._analyze_frames(project)
            await self._transcribe(project)
            await self._select_segments(project)
        except asyncio.CancelledError:
            logger.info("[analysis] Pipeline for project %s cancelled at status=%s", project.id, project.status.value)
            raise
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            phase = getattr(exc, "phase", project.status.value)
            logger.error("[analysis] Project %s FAILED in %s: %s", project.id, phase, message, exc_info=True)
            mark_failed(project, message)
            self._store.save(project)
            return project
        logger.info(
            "[analysis] Project %s ready with %d segment(s)",
            project.id,
            len(project.segments),
        )
        return project

    def _enter(self, project: Project, status: ProjectStatus) -> None:
        transition(project, status)
        self._store.save(project)

    async def _preflight(self, project: Project) -> None:
        """Empty analyze call. Only a transport failure counts; a validation rejection means reachable."""
        result = await self._services.analyze_frames(project.id, [])
        if isinstance(result, ServiceError) and result.kind is ErrorKind.TRANSPORT:
            raise PhaseError("preflight", f"Frame analysis service unreachable: {result.message}")
        logger.info("[analysis] Preflight ok for project %s", project.id)

    async def _analyze_frames(self, project: Project) -> None:
        self._enter(project, ProjectStatus.ANALYZING_FRAMES)
        sampler = self._sampler_factory(project)
        total_batches = math.ceil(len(sampler) / self._batch_size)
        sent = 0
        batch: list[FrameSample] = []
        async for frame in sampler.astream():
            batch.append(frame)
            if len(batch) == self._batch_size:
                sent += 1
                await self._send_batch(project, batch, sent, total_batches)
                batch = []
        if batch:
            sent += 1
            await self._send_batch(project, batch, sent, total_batches)
        if sent == 0:
            raise PhaseError("analyze_frames", "No frames could be sampled from the source video")

    async def _send_batch(self, project: Project, batch: list[FrameSample], number: int, total: int) -> None:
        logger.info(
            "[analysis] Project %s frame batch %d/%d (frames %d-%d)",
            project.id,
            number,
            total,
            batch[0].index,
            batch[-1].index,
        )
        _unwrap("analyze_frames", await self._services.analyze_frames(project.id, batch))

    async def _transcribe(self, project: Project) -> None:
        self._enter(project, advance(project))
        assert project.source is not None
        audio_url = await self._prepare_audio(project)
        if audio_url is None:
            if project.source.size_bytes > self._fallback_max_bytes:
                raise PhaseError(
                    "transcribe",
                    f"Audio extraction failed and the source video ({project.source.size_bytes // (1024 * 1024)} MB) "
                    f"exceeds the {self._fallback_max_bytes // (1024 * 1024)} MB transcription limit",
                )
            logger.info("[analysis] Project %s transcribing the source video directly", project.id)
        _unwrap("transcribe", await self._services.transcribe(project.id, audio_url))

    async def _prepare_audio(self, project: Project) -> str | None:
        """Extract and upload a 16 kHz WAV. Returns its URL, or None when extraction is not possible."""
        assert project.source is not None
        try:
            wav = await self._audio_extractor(project.source.public_url)
            presigned = (
                await self._storage.presign(
                    [UploadTarget(name="audio.wav", content_type="audio/wav")],
                    prefix=f"{project.owner_id}/audio/{project.id}",
                )
            )[0]
            await self._storage.put_bytes(presigned.upload_url, wav, "audio/wav")
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[analysis] Audio extraction for project %s failed, falling back to source video: %s",
                project.id,
                exc,
            )
            return None
        logger.info("[analysis] Project %s audio uploaded: %d bytes -> %s", project.id, len(wav), presigned.key)
        return presigned.public_url

    async def _select_segments(self, project: Project) -> None:
        self._enter(project, advance(project))
        assert project.source is not None
        data = _unwrap(
            "select_segments",
            await self._services.select_segments(project.id, project.target_duration_sec),
        )
        raw = data.get("segments") or []
        segments = parse_segments(raw if isinstance(raw, list) else [], project.source.duration_ms)
        if not segments:
            raise PhaseError("select_segments", "Segment selection returned no segments")
        self._store.replace_segments(project.id, segments)
        self._enter(project, advance(project))


class AnalysisRunner:
    """At most one running analysis task per Project; distinct Projects run concurrently."""

    def __init__(self, orchestrator: AnalysisOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._tasks: dict[str, asyncio.Task[Project]] = {}

    def start(self, project_id: str) -> asyncio.Task[Project]:
        running = self._tasks.get(project_id)
        if running is not None and not running.done():
            logger.info("[analysis] Project %s already has a running pipeline", project_id)
            return running
        task = asyncio.create_task(self._orchestrator.run(project_id), name=f"analysis-{project_id}")
        self._tasks[project_id] = task

        def _forget(done: asyncio.Task[Project]) -> None:
            if self._tasks.get(project_id) is done:
                self._tasks.pop(project_id, None)

        task.add_done_callback(_forget)
        return task

    def is_running(self, project_id: str) -> bool:
        task = self._tasks.get(project_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
