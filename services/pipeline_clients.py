"""HTTP clients for the remote analysis, transcription, selection and render services.

Every call returns a ServiceResult instead of raising, so orchestration code branches on the
outcome explicitly.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from app.config import get_settings
from models import FrameSample, SubtitleStyle, TransitionStyle

logger = logging.getLogger(__name__)

ANALYZE_FRAMES_PATH = "/api/video/analyze-frames"
TRANSCRIBE_PATH = "/api/video/transcribe"
SELECT_SEGMENTS_PATH = "/api/video/select-segments"
RENDER_PATH = "/api/video/render"


class ErrorKind(str, Enum):
    TRANSPORT = "transport"    # never reached the service (DNS, connect, timeout)
    REJECTED = "rejected"      # the service answered with an error


@dataclass(frozen=True)
class ServiceOk:
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceError:
    message: str
    kind: ErrorKind = ErrorKind.REJECTED
    status_code: int | None = None


ServiceResult = ServiceOk | ServiceError


class PipelineServices(Protocol):
    async def analyze_frames(self, project_id: str, frames: list[FrameSample]) -> ServiceResult: ...

    async def transcribe(self, project_id: str, audio_url: str | None = None) -> ServiceResult: ...

    async def select_segments(self, project_id: str, target_duration_sec: int) -> ServiceResult: ...

    async def render(
        self,
        project_id: str,
        subtitle_style: SubtitleStyle,
        transition_style: TransitionStyle,
    ) -> ServiceResult: ...


def frame_payload(frame: FrameSample) -> dict[str, Any]:
    encoded = base64.b64encode(frame.image).decode("ascii")
    return {
        "index": frame.index,
        "timestamp_ms": frame.timestamp_ms,
        "base64": f"data:image/jpeg;base64,{encoded}",
    }


class HttpPipelineServices:
    """PipelineServices over JSON/HTTP. One shared AsyncClient per instance; call aclose() on shutdown."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        headers = {}
        token = token if token is not None else settings.services_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.services_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.services_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> ServiceResult:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TransportError as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("[pipeline_clients] POST %s transport failure: %s", path, message)
            return ServiceError(message=message, kind=ErrorKind.TRANSPORT)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"result": body}

        if response.is_error or body.get("success") is False:
            message = str(body.get("error") or body.get("detail") or f"HTTP {response.status_code}")
            logger.warning("[pipeline_clients] POST %s rejected (%s): %s", path, response.status_code, message)
            return ServiceError(message=message, kind=ErrorKind.REJECTED, status_code=response.status_code)
        return ServiceOk(data=body)

    async def analyze_frames(self, project_id: str, frames: list[FrameSample]) -> ServiceResult:
        return await self._post(
            ANALYZE_FRAMES_PATH,
            {"project_id": project_id, "frames": [frame_payload(f) for f in frames]},
        )

    async def transcribe(self, project_id: str, audio_url: str | None = None) -> ServiceResult:
        payload: dict[str, Any] = {"project_id": project_id}
        if audio_url:
            payload["audio_url"] = audio_url
        return await self._post(TRANSCRIBE_PATH, payload)

    async def select_segments(self, project_id: str, target_duration_sec: int) -> ServiceResult:
        return await self._post(
            SELECT_SEGMENTS_PATH,
            {"project_id": project_id, "target_duration_sec": target_duration_sec},
        )

    async def render(
        self,
        project_id: str,
        subtitle_style: SubtitleStyle,
        transition_style: TransitionStyle,
    ) -> ServiceResult:
        return await self._post(
            RENDER_PATH,
            {
                "project_id": project_id,
                "subtitle_style": subtitle_style.value,
                "transition_style": transition_style.value,
            },
        )
