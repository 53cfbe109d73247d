from dataclasses import dataclass
from enum import Enum

from .project import Project


@dataclass
class FrameSample:
    index: int
    timestamp_ms: int          # position in the source video
    image: bytes               # JPEG, FRAME_WIDTH x FRAME_HEIGHT


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    DONE = "done"
    ERROR = "error"


@dataclass
class UploadItem:
    file_name: str
    content_type: str
    size_bytes: int
    progress: int = 0          # 0–100
    status: UploadStatus = UploadStatus.UPLOADING
    error: str | None = None
    project: Project | None = None


FRAME_INTERVAL_MS = 2000
FRAME_WIDTH = 640
FRAME_HEIGHT = 360
JPEG_QUALITY = 70
