"""Tests for the per-document processing run registry."""
import asyncio

import pytest

from barkly.services.pipeline_manager import DocumentJobs, JobConflict, JobPhase, JobStatus


async def _wait_for(jobs: DocumentJobs, document_id: int) -> None:
    for _ in range(200):
        if not jobs.is_running(document_id):
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"job for document {document_id} still running")


@pytest.mark.asyncio
async def test_submitted_job_records_result():
    jobs = DocumentJobs()

    async def runner(status: JobStatus):
        status.phase = JobPhase.ANALYZING
        for done in range(1, 4):
            status.chunk_done(done)
        return {"themes_saved": 2}

    status = jobs.submit(1, runner, chunks_total=3)
    assert status.phase == JobPhase.QUEUED
    assert jobs.get_status(1) is status

    await _wait_for(jobs, 1)

    assert status.phase == JobPhase.COMPLETED
    assert status.chunks_done == 3
    assert status.result == {"themes_saved": 2}
    assert status.completed_at is not None
    assert status.errors == []


@pytest.mark.asyncio
async def test_job_crash_marks_failed():
    jobs = DocumentJobs()

    async def runner(status: JobStatus):
        raise RuntimeError("boom")

    status = jobs.submit(2, runner)
    await _wait_for(jobs, 2)

    assert status.phase == JobPhase.FAILED
    assert status.errors == ["job crash: boom"]
    assert status.result is None


@pytest.mark.asyncio
async def test_cancelled_job_is_failed():
    jobs = DocumentJobs()
    started = asyncio.Event()

    async def runner(status: JobStatus):
        status.phase = JobPhase.EMBEDDING
        started.set()
        await asyncio.sleep(10)

    status = jobs.submit(3, runner)
    await started.wait()
    for task in list(jobs._tasks):
        task.cancel()
    await _wait_for(jobs, 3)

    assert status.phase == JobPhase.FAILED
    assert status.errors == ["stopped during embedding"]


@pytest.mark.asyncio
async def test_duplicate_submit_rejected():
    jobs = DocumentJobs()
    release = asyncio.Event()

    async def runner(status: JobStatus):
        await release.wait()

    status = jobs.submit(4, runner)
    assert jobs.is_running(4)

    with pytest.raises(JobConflict):
        jobs.submit(4, runner)

    release.set()
    await _wait_for(jobs, 4)
    assert status.phase == JobPhase.COMPLETED
    assert jobs.get_status(4) is status


@pytest.mark.asyncio
async def test_claim_blocks_background_submit():
    jobs = DocumentJobs()

    async def runner(status: JobStatus):
        return None

    with jobs.claim(5) as status:
        assert jobs.is_running(5)
        with pytest.raises(JobConflict):
            jobs.submit(5, runner)

    assert status.phase == JobPhase.COMPLETED
    assert not jobs.is_running(5)
    # Synchronous runs are not reported through process-status
    assert jobs.get_status(5) is None


@pytest.mark.asyncio
async def test_submitted_job_blocks_claim():
    jobs = DocumentJobs()
    release = asyncio.Event()

    async def runner(status: JobStatus):
        await release.wait()

    jobs.submit(6, runner)
    with pytest.raises(JobConflict):
        with jobs.claim(6):
            pass

    release.set()
    await _wait_for(jobs, 6)
    with jobs.claim(6):
        pass


def test_claim_records_failure_and_releases():
    jobs = DocumentJobs()

    with pytest.raises(ValueError):
        with jobs.claim(7) as status:
            raise ValueError("Document 7 not found.")

    assert status.phase == JobPhase.FAILED
    assert status.errors == ["Document 7 not found."]
    assert not jobs.is_running(7)


def test_chunk_progress_capped_at_total():
    status = JobStatus(document_id=8, chunks_total=2)
    status.chunk_done(5)
    assert status.chunks_done == 2


def test_unknown_job():
    jobs = DocumentJobs()
    assert jobs.get_status(12345) is None
    assert jobs.is_running(12345) is False
