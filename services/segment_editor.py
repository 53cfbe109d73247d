"""Editable working copy of a Project's AI-proposed segments."""

from __future__ import annotations

import dataclasses
import logging

from models import Project, ProjectStatus, Segment, total_included_duration_ms
from services.state_machine import WizardStep
from services.store import ProjectStore, project_store

logger = logging.getLogger(__name__)


class SegmentEditError(ValueError):
    pass


class SegmentEditor:
    """
    Holds a copy of the segments so edits can be made freely and persisted together.

    segment_index is fixed after selection; clips are toggled, never deleted or reordered.
    """

    def __init__(self, project_id: str, *, store: ProjectStore | None = None) -> None:
        self._store = store if store is not None else project_store
        project = self._store.get(project_id)
        if project.status is not ProjectStatus.SEGMENTS_READY:
            raise SegmentEditError(f"Segments can only be edited in segments_ready (project is {project.status.value})")
        self._project_id = project_id
        self._duration_ms = project.source.duration_ms if project.source else None
        self._segments = [dataclasses.replace(s) for s in project.segments]

    @property
    def segments(self) -> list[Segment]:
        return list(self._segments)

    @property
    def total_included_duration_ms(self) -> int:
        return total_included_duration_ms(self._segments)

    def _find(self, segment_index: int) -> Segment:
        for segment in self._segments:
            if segment.segment_index == segment_index:
                return segment
        raise SegmentEditError(f"No segment {segment_index} in project {self._project_id}")

    def set_included(self, segment_index: int, included: bool) -> Segment:
        segment = self._find(segment_index)
        if segment.is_included != included:
            segment.is_included = included
            segment.is_user_modified = True
        return segment

    def toggle(self, segment_index: int) -> Segment:
        segment = self._find(segment_index)
        return self.set_included(segment_index, not segment.is_included)

    def set_subtitle(self, segment_index: int, text: str | None) -> Segment:
        segment = self._find(segment_index)
        text = (text or "").strip() or None
        if segment.subtitle_text != text:
            segment.subtitle_text = text
            segment.is_user_modified = True
        return segment

    def set_bounds(self, segment_index: int, start_ms: int, end_ms: int) -> Segment:
        segment = self._find(segment_index)
        if start_ms < 0 or end_ms <= start_ms:
            raise SegmentEditError(f"Invalid bounds {start_ms}-{end_ms}ms: end must be after start")
        if self._duration_ms is not None and end_ms > self._duration_ms:
            raise SegmentEditError(f"Segment ends at {end_ms}ms, past the source end ({self._duration_ms}ms)")
        if (segment.start_ms, segment.end_ms) != (start_ms, end_ms):
            segment.start_ms = start_ms
            segment.end_ms = end_ms
            segment.is_user_modified = True
        return segment

    def apply(
        self,
        segment_index: int,
        *,
        is_included: bool | None = None,
        subtitle_text: str | None = None,
        start_ms: int | None = None,
        end_ms: int | None = None,
    ) -> Segment:
        """Apply any subset of edits to one segment. None means "leave as is"."""
        segment = self._find(segment_index)
        if start_ms is not None or end_ms is not None:
            self.set_bounds(
                segment_index,
                segment.start_ms if start_ms is None else start_ms,
                segment.end_ms if end_ms is None else end_ms,
            )
        if subtitle_text is not None:
            self.set_subtitle(segment_index, subtitle_text)
        if is_included is not None:
            self.set_included(segment_index, is_included)
        return segment

    def save(self) -> Project:
        """Persist included/subtitle/bounds/modified for every segment. Last writer wins."""
        project = self._store.get(self._project_id)
        if project.status is not ProjectStatus.SEGMENTS_READY:
            raise SegmentEditError(f"Project {self._project_id} left segments_ready ({project.status.value})")
        persisted = {s.segment_index: s for s in project.segments}
        for edited in self._segments:
            target = persisted.get(edited.segment_index)
            if target is None:
                continue
            target.is_included = edited.is_included
            target.subtitle_text = edited.subtitle_text
            target.start_ms = edited.start_ms
            target.end_ms = edited.end_ms
            target.is_user_modified = edited.is_user_modified
        self._store.save(project)
        logger.info(
            "[segment_editor] Saved %d segment(s) for project %s; %d included, %dms total",
            len(self._segments),
            self._project_id,
            sum(1 for s in self._segments if s.is_included),
            self.total_included_duration_ms,
        )
        return project

    def save_and_continue(self) -> WizardStep:
        """Persist edits and move the client to style selection. The Project stays segments_ready."""
        self.save()
        return WizardStep.STYLE
