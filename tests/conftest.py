"""Shared fakes for the external collaborators (remote services, storage, video decoding)."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from app.config import get_settings
from models import FrameSample, Project, SourceVideo, SubtitleStyle, TransitionStyle
from services.frame_sampler import FrameSampler
from services.pipeline_clients import ErrorKind, ServiceError, ServiceOk, ServiceResult
from services.storage import PresignedUpload, UploadTarget
from services.store import ProjectStore

Responder = ServiceResult | Callable[..., ServiceResult]


class FakeServices:
    """PipelineServices double. Each method answers from a per-method responder (result or callable)."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responders: dict[str, Responder] = {}
        self.segments: list[dict[str, Any]] = [
            {"segment_index": 0, "start_ms": 0, "end_ms": 6000, "score": 8, "reason": "hook", "subtitle_text": "Watch this"},
            {"segment_index": 1, "start_ms": 12000, "end_ms": 20000, "score": 7, "reason": "context"},
            {"segment_index": 2, "start_ms": 30000, "end_ms": 38000, "score": 9, "reason": "climax"},
        ]

    def _answer(self, name: str, **kwargs: Any) -> ServiceResult:
        self.calls.append((name, kwargs))
        responder = self.responders.get(name)
        if responder is None:
            if name == "select_segments":
                return ServiceOk({"success": True, "segments": self.segments})
            return ServiceOk({"success": True})
        if callable(responder):
            return responder(**kwargs)
        return responder

    def calls_to(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    async def analyze_frames(self, project_id: str, frames: list[FrameSample]) -> ServiceResult:
        if not frames:
            return self._answer("preflight", project_id=project_id)
        return self._answer("analyze_frames", project_id=project_id, frames=list(frames))

    async def transcribe(self, project_id: str, audio_url: str | None = None) -> ServiceResult:
        return self._answer("transcribe", project_id=project_id, audio_url=audio_url)

    async def select_segments(self, project_id: str, target_duration_sec: int) -> ServiceResult:
        return self._answer("select_segments", project_id=project_id, target_duration_sec=target_duration_sec)

    async def render(
        self,
        project_id: str,
        subtitle_style: SubtitleStyle,
        transition_style: TransitionStyle,
    ) -> ServiceResult:
        return self._answer(
            "render",
            project_id=project_id,
            subtitle_style=subtitle_style,
            transition_style=transition_style,
        )


class FakeStorage:
    def __init__(self, *, fail_put_for: set[str] | None = None) -> None:
        self.presigned: list[PresignedUpload] = []
        self.puts: list[dict[str, Any]] = []
        self.fail_put_for = fail_put_for or set()

    async def presign(self, files: list[UploadTarget], *, prefix: str) -> list[PresignedUpload]:
        results = []
        for target in files:
            key = f"{prefix}/{len(self.presigned)}-{target.name}"
            presigned = PresignedUpload(
                upload_url=f"https://upload.test/{key}?sig=1",
                public_url=f"https://cdn.test/{key}",
                key=key,
            )
            self.presigned.append(presigned)
            results.append(presigned)
        return results

    async def put_bytes(self, upload_url: str, data: bytes | Path, content_type: str, on_progress=None) -> None:
        name = data.name if isinstance(data, Path) else None
        if name is not None and name in self.fail_put_for:
            raise ConnectionError(f"upload of {name} interrupted")
        for percent in (0, 50, 100):
            if on_progress is not None:
                on_progress(percent)
        size = data.stat().st_size if isinstance(data, Path) else len(data)
        self.puts.append({"upload_url": upload_url, "size": size, "content_type": content_type, "data": data})


class FakeVideoSource:
    """Stands in for the decode-to-still capability; records the seek order."""

    opened = 0
    closed = 0

    def __init__(self, seeks: list[int]) -> None:
        FakeVideoSource.opened += 1
        self._seeks = seeks

    def capture(self, timestamp_ms: int) -> bytes:
        self._seeks.append(timestamp_ms)
        return f"jpeg@{timestamp_ms}".encode()

    def close(self) -> None:
        FakeVideoSource.closed += 1


def fake_sampler_factory(seeks: list[int] | None = None) -> Callable[[Project], FrameSampler]:
    recorded = seeks if seeks is not None else []

    def factory(project: Project) -> FrameSampler:
        assert project.source is not None
        return FrameSampler(lambda: FakeVideoSource(recorded), project.source.duration_ms)

    return factory


async def fake_extract_wav(locator: str) -> bytes:
    return b"RIFF" + b"\x00" * 40


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from the caller's environment."""
    for name in ("GCS_BUCKET", "GCS_PUBLIC_BASE_URL", "PIPELINE_SERVICES_URL", "RENDER_POLL_INTERVAL_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> ProjectStore:
    return ProjectStore()


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def make_project(store: ProjectStore) -> Callable[..., Project]:
    def _make(
        *,
        duration_ms: int = 40_000,
        size_bytes: int = 5 * 1024 * 1024,
        target_duration_sec: int = 30,
        owner_id: str = "owner-1",
    ) -> Project:
        source = SourceVideo(
            storage_key=f"{owner_id}/source/clip.mp4",
            public_url=f"https://cdn.test/{owner_id}/source/clip.mp4",
            duration_ms=duration_ms,
            width=1920,
            height=1080,
            size_bytes=size_bytes,
        )
        return store.create(owner_id=owner_id, source=source, target_duration_sec=target_duration_sec)

    return _make


@pytest.fixture
def transport_error() -> ServiceError:
    return ServiceError("connection refused", kind=ErrorKind.TRANSPORT)


@pytest.fixture
def anyio_backend() -> str:
    """The async tests drive asyncio primitives directly, so run them on asyncio only."""
    return "asyncio"
