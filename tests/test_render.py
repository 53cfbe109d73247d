"""Render submission, polling to a terminal status, and render service callbacks."""

import asyncio
import dataclasses

import pytest

from models import ProjectStatus, RenderedOutput, Segment, SubtitleStyle, TransitionStyle
from services.pipeline_clients import ServiceError
from services.render import RenderCoordinator, RenderError, RenderOutcome, record_render_result


@pytest.fixture
def ready_project(make_project, store):
    project = make_project()
    project.status = ProjectStatus.SEGMENTS_READY
    store.replace_segments(
        project.id,
        [
            Segment(segment_index=0, start_ms=0, end_ms=6_000),
            Segment(segment_index=1, start_ms=12_000, end_ms=20_000, is_included=False),
        ],
    )
    return project


def _scripted_fetcher(project, statuses):
    """Return a snapshot of project per poll, with the given statuses in order."""
    remaining = list(statuses)
    polls = []

    async def fetch(project_id: str):
        polls.append(project_id)
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        snapshot = dataclasses.replace(project, status=status)
        if status is ProjectStatus.RENDER_COMPLETE:
            snapshot.rendered = RenderedOutput(storage_key="out/reel.mp4", url="https://cdn.test/out/reel.mp4")
        if status is ProjectStatus.FAILED:
            snapshot.error_message = "encoder crashed"
        return snapshot

    return fetch, polls


@pytest.mark.asyncio
async def test_rendering_twice_then_complete_reports_success_once(ready_project, store, fake_services) -> None:
    fetch, polls = _scripted_fetcher(
        ready_project,
        [ProjectStatus.RENDERING, ProjectStatus.RENDERING, ProjectStatus.RENDER_COMPLETE],
    )
    outcomes: list[RenderOutcome] = []
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0, fetch_project=fetch)

    assert await coordinator.submit(
        ready_project.id, SubtitleStyle.KARAOKE, TransitionStyle.FADE, on_outcome=outcomes.append
    ) is None
    assert store.get(ready_project.id).status is ProjectStatus.RENDERING
    assert coordinator.is_polling

    outcome = await coordinator.wait()

    assert outcome is not None and outcome.succeeded
    assert outcome.rendered.url == "https://cdn.test/out/reel.mp4"
    assert len(polls) == 3
    assert outcomes == [outcome]
    assert not coordinator.is_polling
    (call,) = fake_services.calls_to("render")
    assert call["subtitle_style"] is SubtitleStyle.KARAOKE
    assert call["transition_style"] is TransitionStyle.FADE
    stored = store.get(ready_project.id)
    assert (stored.subtitle_style, stored.transition_style) == (SubtitleStyle.KARAOKE, TransitionStyle.FADE)


@pytest.mark.asyncio
async def test_polling_reports_failure(ready_project, store, fake_services) -> None:
    fetch, _ = _scripted_fetcher(ready_project, [ProjectStatus.RENDERING, ProjectStatus.FAILED])
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0, fetch_project=fetch)

    await coordinator.submit(ready_project.id, SubtitleStyle.MINIMAL, TransitionStyle.CUT)
    outcome = await coordinator.wait()

    assert outcome.status is ProjectStatus.FAILED
    assert outcome.error_message == "encoder crashed"
    assert not outcome.succeeded


@pytest.mark.asyncio
async def test_submission_rejection_persists_failed(ready_project, store, fake_services) -> None:
    fake_services.responders["render"] = ServiceError("render queue full", status_code=503)
    outcomes: list[RenderOutcome] = []
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0)

    outcome = await coordinator.submit(
        ready_project.id, SubtitleStyle.BOLD_CENTER, TransitionStyle.SMOOTH, on_outcome=outcomes.append
    )

    assert outcome.status is ProjectStatus.FAILED
    assert outcome.error_message == "render queue full"
    assert outcomes == [outcome]
    assert not coordinator.is_polling
    stored = store.get(ready_project.id)
    assert stored.status is ProjectStatus.FAILED
    assert len(stored.segments) == 2


@pytest.mark.asyncio
async def test_submit_requires_segments_ready(make_project, store, fake_services) -> None:
    project = make_project()
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0)
    with pytest.raises(RenderError):
        await coordinator.submit(project.id, SubtitleStyle.BOLD_CENTER, TransitionStyle.SMOOTH)
    assert fake_services.calls == []


@pytest.mark.asyncio
async def test_submit_requires_an_included_segment(ready_project, store, fake_services) -> None:
    for segment in ready_project.segments:
        segment.is_included = False
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0)
    with pytest.raises(RenderError, match="No segments"):
        await coordinator.submit(ready_project.id, SubtitleStyle.BOLD_CENTER, TransitionStyle.SMOOTH)
    assert store.get(ready_project.id).status is ProjectStatus.SEGMENTS_READY


@pytest.mark.asyncio
async def test_cancel_stops_polling_without_outcome(ready_project, store, fake_services) -> None:
    fetch, polls = _scripted_fetcher(ready_project, [ProjectStatus.RENDERING])
    outcomes: list[RenderOutcome] = []
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0.01, fetch_project=fetch)

    await coordinator.submit(ready_project.id, SubtitleStyle.BOLD_CENTER, TransitionStyle.SMOOTH, on_outcome=outcomes.append)
    await asyncio.sleep(0.05)
    coordinator.cancel()
    seen = len(polls)
    await asyncio.sleep(0.05)

    assert seen >= 1
    assert len(polls) == seen
    assert outcomes == []
    assert await coordinator.wait() is None


@pytest.mark.asyncio
async def test_poll_errors_are_retried(ready_project, store, fake_services) -> None:
    attempts = 0

    async def flaky(project_id: str):
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConnectionError("status endpoint down")
        return dataclasses.replace(
            ready_project,
            status=ProjectStatus.RENDER_COMPLETE,
            rendered=RenderedOutput(storage_key="k", url="https://cdn.test/k.mp4"),
        )

    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0, fetch_project=flaky)
    coordinator.start_polling(ready_project.id)

    outcome = await coordinator.wait()

    assert outcome.succeeded
    assert attempts == 3


@pytest.mark.asyncio
async def test_restarting_polling_cancels_previous_run(ready_project, store, fake_services) -> None:
    fetch, _ = _scripted_fetcher(ready_project, [ProjectStatus.RENDERING])
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0.01, fetch_project=fetch)

    first = coordinator.start_polling(ready_project.id)
    second = coordinator.start_polling(ready_project.id)
    await asyncio.sleep(0)

    assert first.cancelled() or first.cancelling()
    assert not second.done()
    await coordinator.aclose()
    assert second.cancelled()


@pytest.mark.asyncio
async def test_polling_against_the_store_sees_callback(ready_project, store, fake_services) -> None:
    coordinator = RenderCoordinator(fake_services, store=store, poll_interval=0.01)
    await coordinator.submit(ready_project.id, SubtitleStyle.BOTTOM_BAR, TransitionStyle.ZOOM)
    await asyncio.sleep(0.03)

    record_render_result(
        ready_project.id, "done", url="https://cdn.test/reel.mp4", key="owner-1/renders/reel.mp4", store=store
    )
    outcome = await asyncio.wait_for(coordinator.wait(), timeout=2)

    assert outcome.succeeded
    assert outcome.rendered.storage_key == "owner-1/renders/reel.mp4"


def _rendering(project, store):
    project.status = ProjectStatus.RENDERING
    store.save(project)
    return project


def test_callback_done_completes_project(ready_project, store) -> None:
    _rendering(ready_project, store)

    project = record_render_result(ready_project.id, "done", url="https://cdn.test/r.mp4", store=store)

    assert project.status is ProjectStatus.RENDER_COMPLETE
    assert project.rendered.url == "https://cdn.test/r.mp4"
    assert project.rendered.storage_key == "https://cdn.test/r.mp4"
    assert project.error_message is None


def test_callback_done_without_url_fails(ready_project, store) -> None:
    _rendering(ready_project, store)
    project = record_render_result(ready_project.id, "done", store=store)
    assert project.status is ProjectStatus.FAILED
    assert project.rendered is None


def test_callback_failed_records_error(ready_project, store) -> None:
    _rendering(ready_project, store)
    project = record_render_result(ready_project.id, "failed", error="ffmpeg exited 1", store=store)
    assert project.status is ProjectStatus.FAILED
    assert project.error_message == "ffmpeg exited 1"


def test_callback_progress_is_ignored(ready_project, store) -> None:
    _rendering(ready_project, store)
    project = record_render_result(ready_project.id, "encoding", store=store)
    assert project.status is ProjectStatus.RENDERING


def test_callbacks_are_idempotent_once_terminal(ready_project, store) -> None:
    _rendering(ready_project, store)
    record_render_result(ready_project.id, "done", url="https://cdn.test/r.mp4", store=store)

    again = record_render_result(ready_project.id, "failed", error="late failure", store=store)

    assert again.status is ProjectStatus.RENDER_COMPLETE
    assert again.error_message is None
    assert again.rendered.url == "https://cdn.test/r.mp4"


def test_callback_for_project_not_rendering_is_ignored(ready_project, store) -> None:
    project = record_render_result(ready_project.id, "done", url="https://cdn.test/r.mp4", store=store)
    assert project.status is ProjectStatus.SEGMENTS_READY
