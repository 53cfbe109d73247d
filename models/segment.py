from dataclasses import dataclass


@dataclass
class Segment:
    segment_index: int         # position in the finished reel, fixed after selection
    start_ms: int              # offset into the source video
    end_ms: int
    is_included: bool = True
    score: float | None = None             # 0–10, None until scored
    reason: str | None = None
    subtitle_text: str | None = None
    transcript_text: str | None = None     # read-only excerpt from transcription
    is_user_modified: bool = False

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


def total_included_duration_ms(segments: list[Segment]) -> int:
    """Sum of clip lengths the reel will contain. Advisory only, never checked against the target."""
    return sum(s.duration_ms for s in segments if s.is_included)
