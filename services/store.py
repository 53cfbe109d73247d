"""In-memory project store. Keyed by project ID; single-process only."""

import logging
import secrets

from models import DEFAULT_TARGET_DURATION_SEC, Project, Segment, SourceVideo

logger = logging.getLogger(__name__)

# Avoid 0/O, 1/I/l so IDs survive being read aloud or retyped.
_PROJECT_ALPHABET = "23456789abcdefghjkmnpqrstuvwxyz"
_PROJECT_ID_LENGTH = 12
HISTORY_LIMIT = 50


class ProjectNotFound(KeyError):
    pass


def generate_project_id() -> str:
    return "".join(secrets.choice(_PROJECT_ALPHABET) for _ in range(_PROJECT_ID_LENGTH))


class ProjectStore:
    """
    CRUD over Project rows and their segments.

    Writes are last-writer-wins: each Project is mutated by the one pipeline that owns it.
    """

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}

    def create(
        self,
        *,
        owner_id: str,
        source: SourceVideo,
        target_duration_sec: int = DEFAULT_TARGET_DURATION_SEC,
    ) -> Project:
        project = Project(
            id=generate_project_id(),
            owner_id=owner_id,
            source=source,
            target_duration_sec=target_duration_sec,
        )
        self._projects[project.id] = project
        logger.info("[store] Project created: id=%s owner=%s key=%s", project.id, owner_id, source.storage_key)
        return project

    def add(self, project: Project) -> Project:
        self._projects[project.id] = project
        return project

    def get(self, project_id: str) -> Project:
        try:
            return self._projects[project_id]
        except KeyError:
            raise ProjectNotFound(project_id) from None

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects

    def list_for_owner(self, owner_id: str, *, limit: int = HISTORY_LIMIT) -> list[Project]:
        owned = [p for p in self._projects.values() if p.owner_id == owner_id]
        owned.sort(key=lambda p: p.created_at, reverse=True)
        return owned[:limit]

    def save(self, project: Project) -> Project:
        project.touch()
        self._projects[project.id] = project
        return project

    def replace_segments(self, project_id: str, segments: list[Segment]) -> list[Segment]:
        """Drop any earlier selection for the project and store this one, ordered by segment_index."""
        project = self.get(project_id)
        project.segments = sorted(segments, key=lambda s: s.segment_index)
        self.save(project)
        return project.segments

    def get_segment(self, project_id: str, segment_index: int) -> Segment:
        for segment in self.get(project_id).segments:
            if segment.segment_index == segment_index:
                return segment
        raise ProjectNotFound(f"{project_id}#{segment_index}")

    def clear(self) -> None:
        self._projects.clear()


project_store = ProjectStore()
