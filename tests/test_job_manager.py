import asyncio

import pytest

from avatarcore.enums.orchestration import JobKind, JobStatus
from avatarcore.pools.event_broadcaster import EventBroadcaster
from avatarcore.pools.job_manager import JobManager

from conftest import T0


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def jobs(broadcaster, clock):
    return JobManager(broadcaster, clock=clock)


@pytest.mark.asyncio
async def test_create_job_starts_running_at_zero(jobs):
    job_id = await jobs.create_job(JobKind.LIKENESS, "u1")

    assert job_id == f"likeness_u1_{int(T0 * 1000)}"
    view = await jobs.progress_view(job_id)
    assert view["status"] == "running"
    assert view["progress"] == 0


@pytest.mark.asyncio
async def test_explicit_job_id_is_kept_and_collisions_suffixed(jobs):
    first = await jobs.create_job(JobKind.VIDEO, "u1", job_id="video-42")
    second = await jobs.create_job(JobKind.VIDEO, "u1", job_id="video-42")

    assert first == "video-42"
    assert second == "video-42_2"


@pytest.mark.asyncio
async def test_progress_is_monotonic(jobs, broadcaster, recorder):
    job_id = await jobs.create_job(JobKind.VOICE_CLONE, "u1")
    await broadcaster.subscribe(job_id, recorder)

    assert await jobs.advance(job_id, "analyzing", 30)
    assert not await jobs.advance(job_id, "rewind", 20)
    assert await jobs.advance(job_id, "analyzing_more", 30)
    assert await jobs.advance(job_id, "training", 80)

    assert [e["progress"] for e in recorder.of("job_progress")] == [30, 30, 80]
    assert (await jobs.progress_view(job_id))["stage"] == "training"


@pytest.mark.asyncio
async def test_concurrent_advances_never_regress(jobs, broadcaster, recorder):
    job_id = await jobs.create_job(JobKind.VIDEO, "u1")
    await broadcaster.subscribe(job_id, recorder)

    await asyncio.gather(*(jobs.advance(job_id, f"s{p}", p) for p in (50, 10, 70, 30, 90)))

    seen = [e["progress"] for e in recorder.of("job_progress")]
    assert seen == sorted(seen)
    assert (await jobs.progress_view(job_id))["progress"] == 90


@pytest.mark.asyncio
async def test_complete_is_terminal_and_idempotent(jobs, broadcaster, recorder):
    job_id = await jobs.create_job(JobKind.LIKENESS, "u1")
    await broadcaster.subscribe(job_id, recorder)

    assert await jobs.complete(job_id, {"modelId": "m1"})
    assert not await jobs.complete(job_id, {"modelId": "m2"})
    assert not await jobs.fail(job_id, "late failure")
    assert not await jobs.advance(job_id, "after", 100)

    view = await jobs.progress_view(job_id)
    assert view["status"] == JobStatus.COMPLETED.value
    assert view["progress"] == 100
    assert view["result"] == {"modelId": "m1"}
    assert len(recorder.of("job_progress")) == 1


@pytest.mark.asyncio
async def test_fail_keeps_progress_and_records_error(jobs):
    job_id = await jobs.create_job(JobKind.VOICE_CLONE, "u1")
    await jobs.advance(job_id, "analyzing", 50)

    assert await jobs.fail(job_id, ValueError("bad audio"))
    assert not await jobs.complete(job_id, {})

    view = await jobs.progress_view(job_id)
    assert view["status"] == "failed"
    assert view["progress"] == 50
    assert view["error"] == "bad audio"


@pytest.mark.asyncio
async def test_unknown_job_view_is_not_found(jobs):
    assert await jobs.progress_view("nope") == {
        "jobId": "nope",
        "progress": 0,
        "status": "not_found",
    }
    assert not await jobs.advance("nope", "x", 10)


@pytest.mark.asyncio
async def test_sweep_purges_finished_and_force_fails_overdue(jobs, clock):
    done = await jobs.create_job(JobKind.LIKENESS, "u1")
    await jobs.complete(done, {"ok": True})
    stuck = await jobs.create_job(JobKind.VIDEO, "u2")

    clock.advance(61)
    first = await jobs.sweep_stale(60, running_ceiling_s=3600)
    assert first == {"purged": [done], "force_failed": []}
    assert (await jobs.progress_view(done))["status"] == "not_found"

    clock.advance(3600)
    second = await jobs.sweep_stale(60, running_ceiling_s=3600)
    assert second["force_failed"] == [stuck]
    assert (await jobs.progress_view(stuck))["status"] == "failed"

    counts = await jobs.counts()
    assert counts["failed"] == 1
    assert counts["total"] == 1
