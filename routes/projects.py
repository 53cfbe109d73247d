"""Reel project REST API: upload, resume/retry, segment editing, render and render callback."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from app.dependencies import Pipeline, get_pipeline
from models import (
    DEFAULT_TARGET_DURATION_SEC,
    MAX_TARGET_DURATION_SEC,
    MIN_TARGET_DURATION_SEC,
    Project,
    ProjectStatus,
    Segment,
    SubtitleStyle,
    TransitionStyle,
    UploadItem,
    UploadStatus,
    total_included_duration_ms,
)
from services.render import RenderError, record_render_result
from services.segment_editor import SegmentEditError, SegmentEditor
from services.state_machine import (
    TERMINAL_STATUSES,
    InvalidTransition,
    ResumeAction,
    WizardStep,
    can_retry,
    resume_action_for,
    step_for,
)
from services.store import ProjectNotFound
from services.upload import UploadCandidate

router = APIRouter(tags=["projects"])
logger = logging.getLogger(__name__)


class SegmentResponse(BaseModel):
    segment_index: int
    start_ms: int
    end_ms: int
    is_included: bool
    score: float | None = None
    reason: str | None = None
    subtitle_text: str | None = None
    transcript_text: str | None = None
    is_user_modified: bool


class ProjectResponse(BaseModel):
    id: str
    owner_id: str
    status: ProjectStatus
    target_duration_sec: int
    source_video_path: str | None = None
    source_video_url: str | None = None
    source_duration_ms: int | None = None
    source_width: int | None = None
    source_height: int | None = None
    source_file_size: int | None = None
    segments: list[SegmentResponse] = []
    total_included_duration_ms: int = 0
    subtitle_style: SubtitleStyle
    transition_style: TransitionStyle
    rendered_video_path: str | None = None
    rendered_video_url: str | None = None
    error_message: str | None = None
    can_retry: bool = False
    created_at: datetime
    updated_at: datetime


class UploadItemResponse(BaseModel):
    file_name: str
    content_type: str
    size_bytes: int
    progress: int
    status: UploadStatus
    error: str | None = None
    project_id: str | None = None


class ResumeResponse(BaseModel):
    project_id: str
    status: ProjectStatus
    action: ResumeAction
    step: WizardStep
    can_retry: bool
    error_message: str | None = None


class SegmentEdit(BaseModel):
    is_included: bool | None = None
    subtitle_text: str | None = None
    start_ms: int | None = Field(default=None, ge=0)
    end_ms: int | None = Field(default=None, ge=0)


class SegmentSaveItem(SegmentEdit):
    segment_index: int


class SaveSegmentsRequest(BaseModel):
    segments: list[SegmentSaveItem] = []


class SaveSegmentsResponse(BaseModel):
    step: WizardStep
    project: ProjectResponse


class RenderRequest(BaseModel):
    subtitle_style: SubtitleStyle = SubtitleStyle.BOLD_CENTER
    transition_style: TransitionStyle = TransitionStyle.SMOOTH


class RenderResponse(BaseModel):
    status: ProjectStatus
    step: WizardStep
    polling: bool
    error_message: str | None = None


class RenderCallbackRequest(BaseModel):
    project_id: str
    status: str
    url: str | None = None
    key: str | None = None
    error: str | None = None


def _segment_response(segment: Segment) -> SegmentResponse:
    return SegmentResponse(
        segment_index=segment.segment_index,
        start_ms=segment.start_ms,
        end_ms=segment.end_ms,
        is_included=segment.is_included,
        score=segment.score,
        reason=segment.reason,
        subtitle_text=segment.subtitle_text,
        transcript_text=segment.transcript_text,
        is_user_modified=segment.is_user_modified,
    )


def project_response(project: Project) -> ProjectResponse:
    source = project.source
    return ProjectResponse(
        id=project.id,
        owner_id=project.owner_id,
        status=project.status,
        target_duration_sec=project.target_duration_sec,
        source_video_path=source.storage_key if source else None,
        source_video_url=source.public_url if source else None,
        source_duration_ms=source.duration_ms if source else None,
        source_width=source.width if source else None,
        source_height=source.height if source else None,
        source_file_size=source.size_bytes if source else None,
        segments=[_segment_response(s) for s in project.segments],
        total_included_duration_ms=total_included_duration_ms(project.segments),
        subtitle_style=project.subtitle_style,
        transition_style=project.transition_style,
        rendered_video_path=project.rendered.storage_key if project.rendered else None,
        rendered_video_url=project.rendered.url if project.rendered else None,
        error_message=project.error_message,
        can_retry=can_retry(project),
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def _upload_item_response(item: UploadItem) -> UploadItemResponse:
    return UploadItemResponse(
        file_name=item.file_name,
        content_type=item.content_type,
        size_bytes=item.size_bytes,
        progress=item.progress,
        status=item.status,
        error=item.error,
        project_id=item.project.id if item.project else None,
    )


def _get_project(pipeline: Pipeline, project_id: str) -> Project:
    try:
        return pipeline.store.get(project_id)
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found") from None


def _spool_to_disk(upload: UploadFile) -> Path:
    suffix = os.path.splitext(upload.filename or "")[1] or ".bin"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as fh:
        upload.file.seek(0)
        shutil.copyfileobj(upload.file, fh)
        return Path(fh.name)


@router.post(
    "/projects/uploads",
    response_model=list[UploadItemResponse],
    status_code=201,
)
async def upload_videos(
    files: list[UploadFile] = File(..., description="One or more video files"),
    owner_id: str = Form(...),
    target_duration_sec: int = Form(
        DEFAULT_TARGET_DURATION_SEC, ge=MIN_TARGET_DURATION_SEC, le=MAX_TARGET_DURATION_SEC
    ),
    pipeline: Pipeline = Depends(get_pipeline),
) -> list[UploadItemResponse]:
    """Upload videos in parallel; every file that lands as a Project starts analysis right away."""
    logger.info("[projects] POST /api/projects/uploads owner=%s files=%d", owner_id, len(files))
    paths = [await asyncio.to_thread(_spool_to_disk, f) for f in files]
    try:
        candidates = [
            UploadCandidate(name=f.filename or p.name, content_type=f.content_type or "", path=p)
            for f, p in zip(files, paths)
        ]
        items = await pipeline.uploads.upload_many(
            candidates,
            owner_id=owner_id,
            target_duration_sec=target_duration_sec,
        )
    finally:
        for path in paths:
            path.unlink(missing_ok=True)

    for item in items:
        if item.project is not None:
            pipeline.wizard_for(item.project.id).start_analysis(item.project)
    return [_upload_item_response(i) for i in items]


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    owner_id: str = Query(..., description="Owner whose history to list"),
    pipeline: Pipeline = Depends(get_pipeline),
) -> list[ProjectResponse]:
    return [project_response(p) for p in pipeline.store.list_for_owner(owner_id)]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> ProjectResponse:
    """Project with segments. Also the endpoint clients poll while rendering."""
    return project_response(_get_project(pipeline, project_id))


@router.get("/projects/{project_id}/resume", response_model=ResumeResponse)
async def resume_project(project_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> ResumeResponse:
    """Re-attach to a Project and continue from the step its status maps to."""
    project = _get_project(pipeline, project_id)
    action = pipeline.wizard_for(project_id).attach(project_id)
    return ResumeResponse(
        project_id=project.id,
        status=project.status,
        action=action,
        step=step_for(action),
        can_retry=can_retry(project),
        error_message=project.error_message,
    )


@router.post("/projects/{project_id}/retry", response_model=ResumeResponse, status_code=202)
async def retry_project(project_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> ResumeResponse:
    project = _get_project(pipeline, project_id)
    wizard = pipeline.wizard_for(project_id)
    try:
        wizard.retry(project_id)
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=f"Retry not available: {exc}") from exc
    return ResumeResponse(
        project_id=project.id,
        status=project.status,
        action=resume_action_for(project),
        step=wizard.step,
        can_retry=False,
    )


@router.patch("/projects/{project_id}/segments/{segment_index}", response_model=SegmentResponse)
def edit_segment(
    project_id: str,
    segment_index: int,
    edit: SegmentEdit,
    pipeline: Pipeline = Depends(get_pipeline),
) -> SegmentResponse:
    _get_project(pipeline, project_id)
    try:
        editor = SegmentEditor(project_id, store=pipeline.store)
        segment = editor.apply(segment_index, **edit.model_dump())
        editor.save()
    except SegmentEditError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _segment_response(segment)


@router.post("/projects/{project_id}/segments/save", response_model=SaveSegmentsResponse)
def save_segments(
    project_id: str,
    body: SaveSegmentsRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> SaveSegmentsResponse:
    """Persist all segment edits and continue to style selection."""
    _get_project(pipeline, project_id)
    try:
        editor = SegmentEditor(project_id, store=pipeline.store)
        for item in body.segments:
            editor.apply(item.segment_index, **item.model_dump(exclude={"segment_index"}))
        step = editor.save_and_continue()
    except SegmentEditError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    pipeline.wizard_for(project_id).continue_to_style()
    return SaveSegmentsResponse(step=step, project=project_response(pipeline.store.get(project_id)))


@router.post("/projects/{project_id}/render", response_model=RenderResponse, status_code=202)
async def start_render(
    project_id: str,
    body: RenderRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> RenderResponse:
    _get_project(pipeline, project_id)
    wizard = pipeline.wizard_for(project_id)
    try:
        outcome = await wizard.submit_render(project_id, body.subtitle_style, body.transition_style)
    except RenderError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    project = pipeline.store.get(project_id)
    return RenderResponse(
        status=project.status,
        step=wizard.step,
        polling=wizard.render.is_polling,
        error_message=outcome.error_message if outcome else None,
    )


@router.delete("/projects/{project_id}/render/polling", status_code=204)
async def stop_render_polling(project_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> None:
    """Wizard reset: stop polling for this Project. The render itself carries on remotely."""
    _get_project(pipeline, project_id)
    pipeline.release(project_id)


@router.post("/video/render-callback", response_model=ProjectResponse)
async def render_callback(body: RenderCallbackRequest, pipeline: Pipeline = Depends(get_pipeline)) -> ProjectResponse:
    """Webhook from the render service. Repeated callbacks for a finished Project are no-ops."""
    logger.info("[projects] Render callback project=%s status=%s", body.project_id, body.status)
    _get_project(pipeline, body.project_id)
    project = record_render_result(
        body.project_id,
        body.status,
        url=body.url,
        key=body.key,
        error=body.error,
        store=pipeline.store,
    )
    wizard = pipeline.wizards.get(body.project_id)
    # A running poller still has to observe the outcome itself
    if project.status in TERMINAL_STATUSES and wizard is not None and not wizard.render.is_polling:
        pipeline.release(body.project_id)
    return project_response(project)
