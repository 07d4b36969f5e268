from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from qbatch_engine.framework import (
    ErrorKind,
    GlobalContext,
    Job,
    JobContext,
    JobStatus,
    PipelineExceptionHandler,
    Step,
)
from qbatch_engine.framework.model import utcnow
from qbatch_engine.optimizer import CONSERVATIVE_STAGES
from qbatch_engine.recovery import ErrorContext
from qbatch_engine.steps import OptimizeStep

if TYPE_CHECKING:
    from qbatch_engine.framework import ErrorDetails
    from qbatch_engine.recovery import RecoveryEngine, RecoveryStrategy

logger = logging.getLogger(__name__)


class RecoveryExceptionHandler(PipelineExceptionHandler):
    """Turns step failures into retries or a terminal `failed` status.

    For every failure the handler classifies the error through
    `gctx.recovery_engine` (which records it in the ledger) and picks a
    recovery strategy. It then either

    - fails the job right away (non-retryable step, strategy that needs the
      user, non-recoverable error, exhausted retries, exceeded strategy
      timeout or provider `max_wait_time`), or
    - moves the job to `retrying`, waits out the backoff and asks the
      executor to run the failed phase again.

    A compilation failure in `OptimizeStep` is retried with the
    conservative optimizer stage set.
    """

    async def handle_exception(  # noqa: PLR6301
        self,
        ex: Exception,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
        step: Step,
    ) -> bool:
        """Decide whether the failed phase runs again.

        Returns:
            True to retry the phase, False when the job left the pipeline.

        """
        if job.is_terminal:
            return False

        engine: RecoveryEngine = gctx.recovery_engine
        details = engine.observe(
            ex,
            ErrorContext(
                provider=job.provider,
                job_id=job.job_id,
                operation=step.__class__.__name__,
                retry_count=job.retry_count,
            ),
        )
        if not step.retryable:
            await _fail(gctx, job, engine.needs_user(details, engine.select_strategy(details)))
            return False

        strategy = engine.select_strategy(details)
        started = jctx.setdefault("recovery_started_at", time.monotonic())
        timed_out = _timeout_reason(gctx, strategy, job, started)
        if timed_out is not None:
            await _fail(gctx, job, engine.timed_out(details, timed_out))
            return False

        if (
            not details.recoverable
            or not strategy.retries_automatically
            or job.retry_count >= strategy.max_retries
        ):
            outcome = await engine.execute(strategy, details, job.retry_count)
            await _fail(gctx, job, outcome.follow_up_error or details)
            return False

        repository = gctx.job_repository
        async with repository.job_lock(job.job_id):
            if job.is_terminal:
                return False
            if job.can_transition_to(JobStatus.RETRYING):
                repository.apply_status(job, JobStatus.RETRYING)
        if isinstance(step, OptimizeStep) and details.kind == ErrorKind.COMPILATION:
            jctx.optimizer_stages = [str(stage) for stage in CONSERVATIVE_STAGES]

        outcome = await engine.execute(strategy, details, job.retry_count)
        if not outcome.success:
            await _fail(gctx, job, outcome.follow_up_error or details)
            return False

        async with repository.job_lock(job.job_id):
            if job.is_terminal:
                return False
            job.record_retry()
        logger.info(
            "job retry scheduled",
            extra={
                "job_id": job.job_id,
                "strategy": strategy.name,
                "retry_count": job.retry_count,
                "delay_s": round(outcome.delay, 3),
            },
        )
        return True


def _timeout_reason(
    gctx: GlobalContext,
    strategy: RecoveryStrategy,
    job: Job,
    started: float,
) -> str | None:
    engine: RecoveryEngine = gctx.recovery_engine
    limit = engine.timeout_for(strategy)
    if limit is not None and time.monotonic() - started > limit:
        return f"{strategy.name} timeout of {limit:.3g}s exceeded"

    if job.submitted_at is None:
        return None
    capability = gctx.provider_registry.lookup(job.provider)
    max_wait = engine.scaled(capability.limits.max_wait_time)
    waited = (utcnow() - job.submitted_at).total_seconds()
    if max_wait is not None and waited > max_wait:
        return f"{job.provider} max wait time of {max_wait:.3g}s exceeded"
    return None


async def _fail(gctx: GlobalContext, job: Job, details: ErrorDetails) -> None:
    repository = gctx.job_repository
    async with repository.job_lock(job.job_id):
        if job.is_terminal:
            return
        repository.apply_status(job, JobStatus.FAILED, error=details)
    logger.error(
        "job failed",
        extra={
            "job_id": job.job_id,
            "batch_id": job.batch_id,
            "code": details.code,
            "kind": details.kind,
            "retry_count": job.retry_count,
        },
    )
