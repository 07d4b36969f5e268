from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qbatch_engine.framework import GlobalContext, Job, JobStatus


async def advance(gctx: GlobalContext, job: Job, status: JobStatus) -> bool:
    """Move a job to `status` unless it is already terminal or there.

    Returns:
        False if the job is terminal (e.g. cancelled meanwhile).

    Raises:
        InvalidTransitionError: If the lifecycle does not permit the move.

    """
    repository = gctx.job_repository
    async with repository.job_lock(job.job_id):
        if job.is_terminal:
            return False
        if job.status != status:
            repository.apply_status(job, status)
    return True
