import time
from datetime import timedelta

import pytest

from qbatch_engine.framework import (
    AuthenticationError,
    BatchJob,
    BatchMetrics,
    Circuit,
    CompilationError,
    ErrorKind,
    Gate,
    GlobalContext,
    Job,
    JobContext,
    JobStatus,
    NetworkError,
)
from qbatch_engine.framework.model import utcnow
from qbatch_engine.handlers import RecoveryExceptionHandler
from qbatch_engine.providers import GOOGLE_WILLOW, default_registry
from qbatch_engine.recovery import RecoveryEngine
from qbatch_engine.repositories import InMemoryJobRepository
from qbatch_engine.steps import EstimateStep, ExecuteStep, OptimizeStep

# ------------------------------------------------------------
# Helper factory functions
# ------------------------------------------------------------


def make_gctx(time_scale: float = 0) -> GlobalContext:
    return GlobalContext(
        config={},
        job_repository=InMemoryJobRepository(),
        provider_registry=default_registry(),
        recovery_engine=RecoveryEngine(time_scale=time_scale),
    )


def make_job(gctx: GlobalContext, status: JobStatus, **fields) -> Job:
    circuit = Circuit(qubit_count=1, gates=(Gate.of("x", 0),))
    job = Job(circuit=circuit, provider=GOOGLE_WILLOW, status=status, **fields)
    batch = BatchJob(
        strategy="fifo",
        job_ids=[],
        optimal_provider=GOOGLE_WILLOW,
        merged_circuit=circuit,
        metrics=BatchMetrics(
            total_jobs=1,
            total_gates=1,
            average_complexity=1.0,
            estimated_cost=1.0,
            estimated_time=0.0,
        ),
    )
    gctx.job_repository.add_batch(batch, [job])
    return job


@pytest.fixture
def handler():
    return RecoveryExceptionHandler()


# ------------------------------------------------------------
# Retries
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_transient_execution_failure_is_retried(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.SUBMITTED)

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, JobContext(), job, ExecuteStep()
    )

    assert retry is True
    assert job.status == JobStatus.RETRYING
    assert job.retry_count == 1
    (observed,) = gctx.recovery_engine.ledger.recent()
    assert observed.operation == "ExecuteStep"
    assert observed.job_id == job.job_id


@pytest.mark.asyncio
async def test_compilation_failure_narrows_optimizer_stages(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.OPTIMIZING)
    jctx = JobContext()

    retry = await handler.handle_exception(
        CompilationError("no decomposition"), gctx, jctx, job, OptimizeStep()
    )

    assert retry is True
    assert job.status == JobStatus.OPTIMIZING
    assert job.retry_count == 1
    assert jctx.optimizer_stages == ["gate_cancellation", "transpilation"]


# ------------------------------------------------------------
# Terminal outcomes
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_exhausted_retries_fail_the_job(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.RUNNING, retry_count=3)

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, JobContext(), job, ExecuteStep()
    )

    assert retry is False
    assert job.status == JobStatus.FAILED
    assert job.error.code == "RETRIES_EXHAUSTED"
    assert job.error.kind == ErrorKind.NETWORK
    assert job.ended_at is not None


@pytest.mark.asyncio
async def test_non_retryable_step_fails_immediately(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.OPTIMIZING)

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, JobContext(), job, EstimateStep()
    )

    assert retry is False
    assert job.status == JobStatus.FAILED
    assert job.error.code == "NETWORK_ERROR"
    assert job.error.recoverable is False
    assert job.retry_count == 0


@pytest.mark.asyncio
async def test_errors_needing_the_user_fail_the_job(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.SUBMITTED)

    retry = await handler.handle_exception(
        AuthenticationError("token expired"), gctx, JobContext(), job, ExecuteStep()
    )

    assert retry is False
    assert job.error.code == "AUTHENTICATION_FAILED"
    assert "refresh the provider credentials" in job.error.suggested_actions


@pytest.mark.asyncio
async def test_strategy_timeout_fails_the_job(handler):
    gctx = make_gctx(time_scale=1.0)
    job = make_job(gctx, JobStatus.RUNNING)
    jctx = JobContext(recovery_started_at=time.monotonic() - 100)

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, jctx, job, ExecuteStep()
    )

    assert retry is False
    assert job.error.code == "RECOVERY_TIMEOUT"
    assert "network_timeout timeout" in job.error.message


@pytest.mark.asyncio
async def test_provider_max_wait_time_fails_the_job(handler):
    gctx = make_gctx(time_scale=1.0)
    job = make_job(
        gctx, JobStatus.RUNNING, submitted_at=utcnow() - timedelta(seconds=700)
    )

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, JobContext(), job, ExecuteStep()
    )

    assert retry is False
    assert job.error.code == "RECOVERY_TIMEOUT"
    assert "google-willow max wait time" in job.error.message


@pytest.mark.asyncio
async def test_terminal_job_is_left_alone(handler):
    gctx = make_gctx()
    job = make_job(gctx, JobStatus.CANCELLED)

    retry = await handler.handle_exception(
        NetworkError("reset"), gctx, JobContext(), job, ExecuteStep()
    )

    assert retry is False
    assert job.status == JobStatus.CANCELLED
    assert len(gctx.recovery_engine.ledger) == 0
