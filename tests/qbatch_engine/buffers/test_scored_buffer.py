import asyncio

import pytest

from qbatch_engine.buffers import ScoredBuffer
from qbatch_engine.framework import (
    Circuit,
    Gate,
    GlobalContext,
    Job,
    JobContext,
    JobStatus,
    Priority,
)

# ------------------------------------------------------------
# Helper factory functions
# ------------------------------------------------------------


def make_job(job_id: str, priority: Priority = Priority.MEDIUM) -> Job:
    return Job(
        job_id=job_id,
        circuit=Circuit(qubit_count=1, gates=(Gate.of("x", 0),)),
        provider="google-willow",
        priority=priority,
    )


async def fill(buffer: ScoredBuffer, *jobs: Job) -> GlobalContext:
    gctx = GlobalContext(config={})
    for job in jobs:
        await buffer.put(gctx, JobContext(), job)
    return gctx


async def drain(buffer: ScoredBuffer) -> list[str]:
    ids = []
    while buffer.size():
        _, _, job = await buffer.get()
        ids.append(job.job_id)
    return ids


# ------------------------------------------------------------
# Test Cases
# ------------------------------------------------------------


def test_poll_interval_must_be_positive():
    with pytest.raises(ValueError, match="poll_interval"):
        ScoredBuffer(poll_interval=0)


@pytest.mark.asyncio
async def test_without_scorer_the_buffer_is_fifo():
    buffer = ScoredBuffer()
    await fill(buffer, make_job("a"), make_job("b"), make_job("c"))

    assert await drain(buffer) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_highest_score_first_ties_in_arrival_order():
    buffer = ScoredBuffer()
    buffer.scorer = lambda gctx, jctx, job: job.priority.weight
    await fill(
        buffer,
        make_job("low", Priority.LOW),
        make_job("high-1", Priority.HIGH),
        make_job("medium", Priority.MEDIUM),
        make_job("high-2", Priority.HIGH),
    )

    assert await drain(buffer) == ["high-1", "high-2", "medium", "low"]


@pytest.mark.asyncio
async def test_rejected_jobs_wait_for_admission():
    buffer = ScoredBuffer(poll_interval=0.01)
    admitted: set[str] = set()
    buffer.admission = lambda gctx, jctx, job: job.job_id in admitted
    await fill(buffer, make_job("a"))

    getter = asyncio.create_task(buffer.get())
    await asyncio.sleep(0.05)
    assert not getter.done()

    admitted.add("a")
    buffer.wake()
    _, _, job = await asyncio.wait_for(getter, 1.0)

    assert job.job_id == "a"
    assert buffer.size() == 0


@pytest.mark.asyncio
async def test_backfill_skips_a_blocked_head():
    buffer = ScoredBuffer()
    buffer.admission = lambda gctx, jctx, job: job.job_id != "blocked"
    await fill(buffer, make_job("blocked"), make_job("small"))

    _, _, job = await buffer.get()

    assert job.job_id == "small"
    assert buffer.size() == 1


@pytest.mark.asyncio
async def test_get_waits_for_put():
    buffer = ScoredBuffer()
    getter = asyncio.create_task(buffer.get())
    await asyncio.sleep(0)

    await fill(buffer, make_job("late"))
    _, _, job = await asyncio.wait_for(getter, 1.0)

    assert job.job_id == "late"


@pytest.mark.asyncio
async def test_terminal_jobs_are_dropped():
    buffer = ScoredBuffer()
    cancelled = make_job("cancelled")
    await fill(buffer, cancelled, make_job("live"))
    cancelled.status = JobStatus.CANCELLED

    _, _, job = await buffer.get()

    assert job.job_id == "live"
    assert buffer.size() == 0


@pytest.mark.asyncio
async def test_discard():
    buffer = ScoredBuffer()
    await fill(buffer, make_job("a"), make_job("b"))

    assert await buffer.discard("a") is True
    assert await buffer.discard("a") is False
    assert await drain(buffer) == ["b"]
