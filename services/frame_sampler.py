"""Frame sampling: periodic downscaled JPEG stills from a source video for vision analysis."""

from __future__ import annotations

import asyncio
import io
import logging
import math
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

import av
from av import VideoFrame

from models import FRAME_HEIGHT, FRAME_INTERVAL_MS, FRAME_WIDTH, JPEG_QUALITY, FrameSample

logger = logging.getLogger(__name__)

# Frames whose presentation time is within this distance before the target count as a hit.
_SEEK_TOLERANCE_SEC = 0.001


class FrameCaptureError(RuntimeError):
    """The source could not produce a frame at the requested position."""


class VideoSource(Protocol):
    """Decode-to-still capability: seek to a timestamp and return one encoded frame."""

    def capture(self, timestamp_ms: int) -> bytes: ...

    def close(self) -> None: ...


@dataclass
class VideoProbe:
    duration_ms: int
    width: int
    height: int


def probe_video(locator: str) -> VideoProbe:
    """Read duration and pixel size of a local path or URL without decoding frames."""
    with av.open(locator) as container:
        if not container.streams.video:
            raise FrameCaptureError(f"No video stream in {locator}")
        stream = container.streams.video[0]
        if container.duration is not None:
            duration_ms = int(container.duration * 1000 // av.time_base)
        elif stream.duration is not None and stream.time_base is not None:
            duration_ms = int(stream.duration * stream.time_base * 1000)
        else:
            raise FrameCaptureError(f"Unknown duration for {locator}")
        return VideoProbe(
            duration_ms=duration_ms,
            width=stream.codec_context.width,
            height=stream.codec_context.height,
        )


def encode_jpeg(frame: VideoFrame, *, width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT) -> bytes:
    """Downscale a decoded frame and compress it to JPEG."""
    image = frame.reformat(width=width, height=height, format="rgb24").to_image()
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


class AvVideoSource:
    """
    VideoSource backed by PyAV. Opens the container lazily on first capture.
    One instance owns one demuxer; captures must not run concurrently.
    """

    def __init__(self, locator: str) -> None:
        self._locator = locator
        self._container: av.container.InputContainer | None = None

    def _ensure_container(self) -> av.container.InputContainer:
        if self._container is None:
            self._container = av.open(self._locator)
            if not self._container.streams.video:
                self.close()
                raise FrameCaptureError(f"No video stream in {self._locator}")
        return self._container

    def capture(self, timestamp_ms: int) -> bytes:
        container = self._ensure_container()
        stream = container.streams.video[0]
        target = timestamp_ms / 1000
        # Without a stream argument the offset is in av.time_base (microsecond) units.
        container.seek(int(timestamp_ms * 1000), backward=True, any_frame=False)
        chosen: VideoFrame | None = None
        for frame in container.decode(stream):
            chosen = frame
            if frame.time is not None and frame.time >= target - _SEEK_TOLERANCE_SEC:
                break
        if chosen is None:
            raise FrameCaptureError(f"No frame decoded at {timestamp_ms}ms in {self._locator}")
        return encode_jpeg(chosen)

    def close(self) -> None:
        if self._container is not None:
            self._container.close()
            self._container = None


def frame_timestamps(duration_ms: int, interval_ms: int = FRAME_INTERVAL_MS) -> list[int]:
    """0, I, 2I, ... strictly below duration: ceil(duration / interval) positions."""
    if duration_ms <= 0:
        return []
    count = math.ceil(duration_ms / interval_ms)
    return [i * interval_ms for i in range(count)]


class FrameSampler:
    """
    Lazy, restartable sequence of FrameSample for one video.

    Each iteration opens a fresh source from source_factory and closes it when the iteration
    ends or is abandoned. Seek-then-capture is strictly sequential per source.
    """

    def __init__(
        self,
        source_factory: Callable[[], VideoSource],
        duration_ms: int,
        *,
        interval_ms: int = FRAME_INTERVAL_MS,
    ) -> None:
        self._source_factory = source_factory
        self._duration_ms = duration_ms
        self._interval_ms = interval_ms

    @classmethod
    def for_locator(cls, locator: str, duration_ms: int, **kwargs: int) -> FrameSampler:
        return cls(lambda: AvVideoSource(locator), duration_ms, **kwargs)

    @property
    def timestamps(self) -> list[int]:
        return frame_timestamps(self._duration_ms, self._interval_ms)

    def __len__(self) -> int:
        return len(self.timestamps)

    def __iter__(self) -> Iterator[FrameSample]:
        source = self._source_factory()
        try:
            for index, timestamp_ms in enumerate(self.timestamps):
                yield FrameSample(index=index, timestamp_ms=timestamp_ms, image=source.capture(timestamp_ms))
        finally:
            source.close()

    async def astream(self) -> AsyncIterator[FrameSample]:
        """Same sequence, with each decode running on a worker thread."""
        source = await asyncio.to_thread(self._source_factory)
        try:
            for index, timestamp_ms in enumerate(self.timestamps):
                image = await asyncio.to_thread(source.capture, timestamp_ms)
                yield FrameSample(index=index, timestamp_ms=timestamp_ms, image=image)
        finally:
            source.close()
        logger.info("[frame_sampler] Sampled %d frames over %dms", len(self), self._duration_ms)
