from .media import (
    FRAME_HEIGHT,
    FRAME_INTERVAL_MS,
    FRAME_WIDTH,
    JPEG_QUALITY,
    FrameSample,
    UploadItem,
    UploadStatus,
)
from .project import (
    DEFAULT_TARGET_DURATION_SEC,
    MAX_TARGET_DURATION_SEC,
    MIN_TARGET_DURATION_SEC,
    Project,
    ProjectStatus,
    RenderedOutput,
    SourceVideo,
    SubtitleStyle,
    TransitionStyle,
)
from .segment import Segment, total_included_duration_ms

__all__ = [
    "Project",
    "ProjectStatus",
    "SourceVideo",
    "RenderedOutput",
    "SubtitleStyle",
    "TransitionStyle",
    "DEFAULT_TARGET_DURATION_SEC",
    "MIN_TARGET_DURATION_SEC",
    "MAX_TARGET_DURATION_SEC",
    "Segment",
    "total_included_duration_ms",
    "FrameSample",
    "UploadItem",
    "UploadStatus",
    "FRAME_INTERVAL_MS",
    "FRAME_WIDTH",
    "FRAME_HEIGHT",
    "JPEG_QUALITY",
]
