"""Wiring of the pipeline components shared by the API routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fastapi import Request

from app.config import get_settings
from services.analysis import AnalysisOrchestrator, AnalysisRunner
from services.pipeline_clients import HttpPipelineServices, PipelineServices
from services.render import RenderCoordinator
from services.storage import GcsStorage, Storage
from services.store import ProjectStore, project_store
from services.upload import UploadCoordinator
from services.wizard import ReelWizard

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    services: PipelineServices
    storage: Storage
    store: ProjectStore
    runner: AnalysisRunner
    uploads: UploadCoordinator
    poll_interval: float
    wizards: dict[str, ReelWizard] = field(default_factory=dict)

    def wizard_for(self, project_id: str) -> ReelWizard:
        """One wizard (and so at most one render poller) per Project."""
        wizard = self.wizards.get(project_id)
        if wizard is None:
            render = RenderCoordinator(self.services, store=self.store, poll_interval=self.poll_interval)
            wizard = ReelWizard(self.runner, render, store=self.store)
            self.wizards[project_id] = wizard
        return wizard

    def release(self, project_id: str) -> None:
        """Drop the Project's wizard and stop its render poller."""
        wizard = self.wizards.pop(project_id, None)
        if wizard is not None:
            wizard.reset()
            logger.info("[pipeline] Released wizard for project %s", project_id)

    async def aclose(self) -> None:
        for wizard in self.wizards.values():
            await wizard.render.aclose()
        self.wizards.clear()
        await self.runner.shutdown()
        aclose = getattr(self.services, "aclose", None)
        if aclose is not None:
            await aclose()


def build_pipeline(
    *,
    services: PipelineServices | None = None,
    storage: Storage | None = None,
    store: ProjectStore | None = None,
    orchestrator: AnalysisOrchestrator | None = None,
    uploads: UploadCoordinator | None = None,
    poll_interval: float | None = None,
) -> Pipeline:
    settings = get_settings()
    services = services if services is not None else HttpPipelineServices()
    storage = storage if storage is not None else GcsStorage(bucket_name=settings.gcs_bucket)
    store = store if store is not None else project_store
    orchestrator = orchestrator or AnalysisOrchestrator(services, storage, store=store)
    uploads = uploads or UploadCoordinator(storage, store=store)
    logger.info("[pipeline] Services at %s, bucket %s", settings.services_url, settings.gcs_bucket)
    return Pipeline(
        services=services,
        storage=storage,
        store=store,
        runner=AnalysisRunner(orchestrator),
        uploads=uploads,
        poll_interval=poll_interval if poll_interval is not None else settings.render_poll_interval,
    )


def get_pipeline(request: Request) -> Pipeline:
    pipeline: Pipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline()
        request.app.state.pipeline = pipeline
    return pipeline
