"""Per-client reel wizard: derives the visible step from the persisted status and drives re-entry."""

from __future__ import annotations

import asyncio
import logging

from models import Project, SubtitleStyle, TransitionStyle
from services.analysis import AnalysisRunner
from services.render import RenderCoordinator, RenderOutcome
from services.state_machine import (
    ResumeAction,
    WizardStep,
    can_retry,
    resume_action_for,
    retry,
    step_for,
)
from services.store import ProjectStore, project_store

logger = logging.getLogger(__name__)


class ReelWizard:
    """
    One client's view of a Project.

    The step is never stored on its own: attach() re-derives it from the Project status, and
    only the client-only style step (after saving segments) is set directly.
    """

    def __init__(
        self,
        runner: AnalysisRunner,
        render: RenderCoordinator,
        *,
        store: ProjectStore | None = None,
    ) -> None:
        self._runner = runner
        self._render = render
        self._store = store if store is not None else project_store
        self.project_id: str | None = None
        self.step = WizardStep.UPLOAD
        self.last_outcome: RenderOutcome | None = None

    @property
    def render(self) -> RenderCoordinator:
        return self._render

    def _on_render_outcome(self, outcome: RenderOutcome) -> None:
        self.last_outcome = outcome
        if outcome.succeeded:
            logger.info("[wizard] Reel ready for project %s: %s", outcome.project_id, outcome.rendered and outcome.rendered.url)
        else:
            logger.warning("[wizard] Reel failed for project %s: %s", outcome.project_id, outcome.error_message)

    def attach(self, project_id: str) -> ResumeAction:
        """Re-attach to an existing Project (e.g. after reload) and continue where its status says."""
        project = self._store.get(project_id)
        if self.project_id != project_id:
            self._render.cancel()
        self.project_id = project_id
        action = resume_action_for(project)
        self.step = step_for(action)
        logger.info("[wizard] Attached to project %s: status=%s action=%s", project_id, project.status.value, action.value)

        if action is ResumeAction.RERUN_ANALYSIS:
            self._runner.start(project_id)
        elif action is ResumeAction.RESUME_POLLING:
            self._render.start_polling(project_id, on_outcome=self._on_render_outcome)
        return action

    def start_analysis(self, project: Project) -> asyncio.Task[Project]:
        """Entry point right after upload: the Project is uploaded, go straight to processing."""
        self.project_id = project.id
        self.step = WizardStep.PROCESSING
        return self._runner.start(project.id)

    def can_retry(self, project_id: str) -> bool:
        return can_retry(self._store.get(project_id))

    def retry(self, project_id: str) -> asyncio.Task[Project]:
        """Reset a failed Project to uploaded and restart analysis from phase 1."""
        project = self._store.get(project_id)
        retry(project)
        self._store.save(project)
        logger.info("[wizard] Retrying project %s", project_id)
        return self.start_analysis(project)

    def continue_to_style(self) -> None:
        self.step = WizardStep.STYLE

    async def submit_render(
        self,
        project_id: str,
        subtitle_style: SubtitleStyle,
        transition_style: TransitionStyle,
    ) -> RenderOutcome | None:
        self.project_id = project_id
        outcome = await self._render.submit(
            project_id,
            subtitle_style,
            transition_style,
            on_outcome=self._on_render_outcome,
        )
        self.step = WizardStep.RENDER if outcome is None else step_for(ResumeAction.SHOW_FAILURE)
        return outcome

    def reset(self) -> None:
        """Back to the upload step. Stops render polling; a running analysis keeps its Project updated."""
        self._render.cancel()
        self.project_id = None
        self.step = WizardStep.UPLOAD
        self.last_outcome = None
