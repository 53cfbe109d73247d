"""Project status transitions and the resume mapping used when a client re-attaches."""

from __future__ import annotations

import logging
from enum import Enum

from models import Project, ProjectStatus

logger = logging.getLogger(__name__)

# Order the pipeline moves a Project through. failed is reachable from every non-terminal state.
GOLDEN_SEQUENCE: tuple[ProjectStatus, ...] = (
    ProjectStatus.UPLOADED,
    ProjectStatus.ANALYZING_FRAMES,
    ProjectStatus.TRANSCRIBING,
    ProjectStatus.SELECTING_SEGMENTS,
    ProjectStatus.SEGMENTS_READY,
    ProjectStatus.RENDERING,
    ProjectStatus.RENDER_COMPLETE,
)
TERMINAL_STATUSES = frozenset({ProjectStatus.RENDER_COMPLETE, ProjectStatus.FAILED})
ANALYSIS_STATUSES = frozenset(
    {
        ProjectStatus.UPLOADED,
        ProjectStatus.ANALYZING_FRAMES,
        ProjectStatus.TRANSCRIBING,
        ProjectStatus.SELECTING_SEGMENTS,
    }
)


class InvalidTransition(ValueError):
    def __init__(self, current: ProjectStatus, target: ProjectStatus | None = None) -> None:
        self.current = current
        self.target = target
        if target is None:
            super().__init__(f"No transition out of {current.value}")
        else:
            super().__init__(f"Cannot move project from {current.value} to {target.value}")


class ResumeAction(str, Enum):
    SHOW_RESULT = "show_result"
    SHOW_EDITOR = "show_editor"
    RESUME_POLLING = "resume_polling"
    RERUN_ANALYSIS = "rerun_analysis"
    SHOW_FAILURE = "show_failure"


class WizardStep(str, Enum):
    UPLOAD = "upload"
    PROCESSING = "processing"
    SEGMENTS = "segments"
    STYLE = "style"
    RENDER = "render"


_STEP_FOR_ACTION = {
    ResumeAction.SHOW_RESULT: WizardStep.RENDER,
    ResumeAction.SHOW_EDITOR: WizardStep.SEGMENTS,
    ResumeAction.RESUME_POLLING: WizardStep.RENDER,
    ResumeAction.RERUN_ANALYSIS: WizardStep.PROCESSING,
    ResumeAction.SHOW_FAILURE: WizardStep.PROCESSING,
}


def allowed_transitions(status: ProjectStatus) -> frozenset[ProjectStatus]:
    if status is ProjectStatus.FAILED:
        return frozenset({ProjectStatus.UPLOADED})
    if status is ProjectStatus.RENDER_COMPLETE:
        return frozenset()
    position = GOLDEN_SEQUENCE.index(status)
    targets = {GOLDEN_SEQUENCE[position + 1], ProjectStatus.FAILED}
    if status in ANALYSIS_STATUSES:
        # A resumed analysis always restarts at phase 1.
        targets.add(ProjectStatus.ANALYZING_FRAMES)
    return frozenset(targets)


def advance(project: Project) -> ProjectStatus:
    """The status that follows project.status on the success path."""
    status = project.status
    if status in TERMINAL_STATUSES:
        raise InvalidTransition(status)
    return GOLDEN_SEQUENCE[GOLDEN_SEQUENCE.index(status) + 1]


def transition(project: Project, target: ProjectStatus, *, error_message: str | None = None) -> Project:
    """Move project to target, keeping error_message and rendered output consistent with the status."""
    current = project.status
    if target not in allowed_transitions(current):
        raise InvalidTransition(current, target)
    if target is ProjectStatus.FAILED:
        project.error_message = error_message or "Unknown error"
    else:
        project.error_message = None
    if target is not ProjectStatus.RENDER_COMPLETE:
        project.rendered = None
    project.status = target
    project.touch()
    logger.info("[state_machine] Project %s: %s -> %s", project.id, current.value, target.value)
    return project


def mark_failed(project: Project, message: str) -> Project:
    """Persistable failed state. Segments from an unfinished selection are dropped."""
    if project.status in ANALYSIS_STATUSES:
        project.segments = []
    return transition(project, ProjectStatus.FAILED, error_message=message)


def can_retry(project: Project) -> bool:
    return (
        project.status is ProjectStatus.FAILED
        and project.source is not None
        and bool(project.source.public_url)
    )


def retry(project: Project) -> Project:
    """Reset a failed project to uploaded so analysis can start again from phase 1."""
    if not can_retry(project):
        raise InvalidTransition(project.status, ProjectStatus.UPLOADED)
    project.segments = []
    return transition(project, ProjectStatus.UPLOADED)


def resume_action(
    status: ProjectStatus | str,
    *,
    has_rendered_output: bool = True,
    has_source: bool = True,
) -> ResumeAction:
    """
    Map a persisted status to the one place a re-attaching client continues from.

    Total over every string: unknown or malformed statuses land on the failure view.
    """
    try:
        status = ProjectStatus(status)
    except ValueError:
        logger.warning("[state_machine] Unknown status %r; showing failure view", status)
        return ResumeAction.SHOW_FAILURE

    if status is ProjectStatus.RENDER_COMPLETE:
        return ResumeAction.SHOW_RESULT if has_rendered_output else ResumeAction.SHOW_FAILURE
    if status is ProjectStatus.SEGMENTS_READY:
        return ResumeAction.SHOW_EDITOR
    if status is ProjectStatus.RENDERING:
        return ResumeAction.RESUME_POLLING
    if status in ANALYSIS_STATUSES:
        return ResumeAction.RERUN_ANALYSIS if has_source else ResumeAction.SHOW_FAILURE
    return ResumeAction.SHOW_FAILURE


def resume_action_for(project: Project) -> ResumeAction:
    return resume_action(
        project.status,
        has_rendered_output=project.rendered is not None,
        has_source=project.source is not None and bool(project.source.public_url),
    )


def resume_step(status: ProjectStatus | str) -> WizardStep:
    return step_for(resume_action(status))


def step_for(action: ResumeAction) -> WizardStep:
    return _STEP_FOR_ACTION[action]
