from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .segment import Segment


class ProjectStatus(str, Enum):
    UPLOADED = "uploaded"
    ANALYZING_FRAMES = "analyzing_frames"
    TRANSCRIBING = "transcribing"
    SELECTING_SEGMENTS = "selecting_segments"
    SEGMENTS_READY = "segments_ready"
    RENDERING = "rendering"
    RENDER_COMPLETE = "render_complete"
    FAILED = "failed"


class SubtitleStyle(str, Enum):
    BOLD_CENTER = "bold_center"
    BOTTOM_BAR = "bottom_bar"
    KARAOKE = "karaoke"
    MINIMAL = "minimal"


class TransitionStyle(str, Enum):
    SMOOTH = "smooth"
    CUT = "cut"
    FADE = "fade"
    ZOOM = "zoom"


MIN_TARGET_DURATION_SEC = 15
MAX_TARGET_DURATION_SEC = 90
DEFAULT_TARGET_DURATION_SEC = 30


@dataclass
class SourceVideo:
    storage_key: str                       # e.g. "{owner}/source/{ts}.mp4"
    public_url: str
    duration_ms: int
    width: int
    height: int
    size_bytes: int


@dataclass
class RenderedOutput:
    storage_key: str
    url: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Project:
    id: str
    owner_id: str
    source: SourceVideo | None
    status: ProjectStatus = ProjectStatus.UPLOADED
    target_duration_sec: int = DEFAULT_TARGET_DURATION_SEC
    segments: list[Segment] = field(default_factory=list)
    rendered: RenderedOutput | None = None
    error_message: str | None = None
    subtitle_style: SubtitleStyle = SubtitleStyle.BOLD_CENTER
    transition_style: TransitionStyle = TransitionStyle.SMOOTH
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    @property
    def included_segments(self) -> list[Segment]:
        return [s for s in sorted(self.segments, key=lambda s: s.segment_index) if s.is_included]
