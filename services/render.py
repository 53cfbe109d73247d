"""Render submission and status polling until the Project reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass

from app.config import get_settings
from models import Project, ProjectStatus, RenderedOutput, SubtitleStyle, TransitionStyle
from services.pipeline_clients import PipelineServices, ServiceError
from services.state_machine import TERMINAL_STATUSES, mark_failed, transition
from services.store import ProjectStore, project_store

logger = logging.getLogger(__name__)

RENDER_DONE = "done"
RENDER_FAILED = "failed"


class RenderError(ValueError):
    """Render cannot be submitted for the Project in its current state."""


@dataclass(frozen=True)
class RenderOutcome:
    project_id: str
    status: ProjectStatus                  # render_complete or failed
    rendered: RenderedOutput | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ProjectStatus.RENDER_COMPLETE


OutcomeListener = Callable[[RenderOutcome], None]
StatusFetcher = Callable[[str], Awaitable[Project]]


def _outcome_for(project: Project) -> RenderOutcome | None:
    if project.status is ProjectStatus.RENDER_COMPLETE:
        return RenderOutcome(project.id, project.status, rendered=project.rendered)
    if project.status is ProjectStatus.FAILED:
        return RenderOutcome(project.id, project.status, error_message=project.error_message)
    return None


class RenderCoordinator:
    """
    Submits a render and polls the Project every poll_interval seconds until it is terminal.

    Holds at most one polling task; cancel() stops it (e.g. when the wizard is reset).
    The outcome listener fires exactly once per polling run.
    """

    def __init__(
        self,
        services: PipelineServices,
        *,
        store: ProjectStore | None = None,
        poll_interval: float | None = None,
        fetch_project: StatusFetcher | None = None,
    ) -> None:
        self._services = services
        self._store = store if store is not None else project_store
        self._poll_interval = poll_interval if poll_interval is not None else get_settings().render_poll_interval
        self._fetch_project = fetch_project or self._fetch_from_store
        self._task: asyncio.Task[RenderOutcome] | None = None

    async def _fetch_from_store(self, project_id: str) -> Project:
        return self._store.get(project_id)

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    async def submit(
        self,
        project_id: str,
        subtitle_style: SubtitleStyle,
        transition_style: TransitionStyle,
        *,
        on_outcome: OutcomeListener | None = None,
    ) -> RenderOutcome | None:
        """
        Hand the Project to the render service and start polling.

        Returns None while the render is in flight, or the failed outcome when the service
        refused the submission (the Project is then persisted as failed).
        """
        project = self._store.get(project_id)
        if project.status is not ProjectStatus.SEGMENTS_READY:
            raise RenderError(f"Render needs segments_ready (project is {project.status.value})")
        if not project.included_segments:
            raise RenderError("No segments selected for the reel")

        project.subtitle_style = subtitle_style
        project.transition_style = transition_style
        self._store.save(project)

        result = await self._services.render(project.id, subtitle_style, transition_style)
        if isinstance(result, ServiceError):
            logger.error("[render] Submission for project %s FAILED: %s", project.id, result.message)
            mark_failed(project, result.message)
            self._store.save(project)
            outcome = _outcome_for(project)
            assert outcome is not None
            if on_outcome is not None:
                on_outcome(outcome)
            return outcome

        transition(project, ProjectStatus.RENDERING)
        self._store.save(project)
        logger.info(
            "[render] Project %s submitted (subtitles=%s, transition=%s, %d clip(s))",
            project.id,
            subtitle_style.value,
            transition_style.value,
            len(project.included_segments),
        )
        self.start_polling(project.id, on_outcome=on_outcome)
        return None

    def start_polling(self, project_id: str, *, on_outcome: OutcomeListener | None = None) -> asyncio.Task[RenderOutcome]:
        """Start (or restart) polling project_id. Used after submit and when resuming a rendering Project."""
        self.cancel()
        self._task = asyncio.create_task(self._poll(project_id, on_outcome), name=f"render-poll-{project_id}")
        return self._task

    async def _poll(self, project_id: str, on_outcome: OutcomeListener | None) -> RenderOutcome:
        ticks = 0
        while True:
            await asyncio.sleep(self._poll_interval)
            ticks += 1
            try:
                project = await self._fetch_project(project_id)
            except Exception as exc:  # noqa: BLE001
                # A failed tick is retried on the next one.
                logger.warning("[render] Poll %d for project %s failed: %s", ticks, project_id, exc)
                continue
            outcome = _outcome_for(project)
            if outcome is None:
                logger.debug("[render] Poll %d: project %s still %s", ticks, project_id, project.status.value)
                continue
            logger.info("[render] Project %s finished after %d poll(s): %s", project_id, ticks, outcome.status.value)
            if on_outcome is not None:
                on_outcome(outcome)
            return outcome

    async def wait(self) -> RenderOutcome | None:
        """Wait for the current polling run. None when nothing is polling or it was cancelled."""
        task = self._task
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("[render] Polling cancelled (%s)", self._task.get_name())
        self._task = None

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task


def record_render_result(
    project_id: str,
    status: str,
    *,
    url: str | None = None,
    key: str | None = None,
    error: str | None = None,
    store: ProjectStore | None = None,
) -> Project:
    """
    Apply a render service callback to the Project.

    Idempotent: once the Project is terminal further callbacks are ignored. Statuses other than
    done/failed are progress reports and only logged.
    """
    store = store if store is not None else project_store
    project = store.get(project_id)
    if project.status in TERMINAL_STATUSES:
        logger.info("[render] Callback %s for project %s ignored: already %s", status, project_id, project.status.value)
        return project
    if project.status is not ProjectStatus.RENDERING:
        logger.warning("[render] Callback %s for project %s ignored: not rendering (%s)", status, project_id, project.status.value)
        return project

    if status == RENDER_DONE:
        if not url:
            mark_failed(project, "Render finished without an output URL")
        else:
            transition(project, ProjectStatus.RENDER_COMPLETE)
            project.rendered = RenderedOutput(storage_key=key or url, url=url)
            logger.info("[render] Project %s render complete: %s", project_id, url)
    elif status == RENDER_FAILED:
        mark_failed(project, error or "Rendering failed")
        logger.error("[render] Project %s render FAILED: %s", project_id, project.error_message)
    else:
        logger.info("[render] Project %s render progress: %s", project_id, status)
        return project
    return store.save(project)
