from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from qbatch_engine.framework import (
    BatchJob,
    BatchNotFoundError,
    ErrorDetails,
    Job,
    JobNotFoundError,
    JobRepository,
    JobStatus,
    ValidationError,
)

if TYPE_CHECKING:
    from qbatch_engine.framework.job_repository import JobListener

logger = logging.getLogger(__name__)


class InMemoryJobRepository(JobRepository):
    """Process-local store of jobs and batches.

    Writers hold the per-job `asyncio.Lock` from `job_lock`. Snapshots are
    deep copies, so status polling never observes a half-applied change.
    """

    def __init__(self) -> None:
        """Initialize the job repository."""
        self._jobs: dict[str, Job] = {}
        self._batches: dict[str, BatchJob] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[JobListener] = []

        logger.info("InMemoryJobRepository was initialized")

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def add_batch(self, batch: BatchJob, jobs: list[Job]) -> None:
        """Store a batch and its members.

        Raises:
            ValidationError: If the batch id or a job id is already taken.

        """
        if batch.batch_id in self._batches:
            message = f"batch {batch.batch_id} already exists"
            raise ValidationError(message, code="DUPLICATE_BATCH_ID")
        taken = [job.job_id for job in jobs if job.job_id in self._jobs]
        if taken:
            message = f"job ids already exist: {', '.join(taken)}"
            raise ValidationError(message, code="DUPLICATE_JOB_ID")

        for job in jobs:
            job.batch_id = batch.batch_id
            self._jobs[job.job_id] = job
            self._locks[job.job_id] = asyncio.Lock()
        batch.job_ids = [job.job_id for job in jobs]
        self._batches[batch.batch_id] = batch

        logger.debug(
            "batch stored",
            extra={"batch_id": batch.batch_id, "job_ids": batch.job_ids},
        )

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def has_job(self, job_id: str) -> bool:
        return job_id in self._jobs

    def get_job(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            message = f"job {job_id!r} not found"
            raise JobNotFoundError(message) from None

    def get_batch(self, batch_id: str) -> BatchJob:
        try:
            return self._batches[batch_id]
        except KeyError:
            message = f"batch {batch_id!r} not found"
            raise BatchNotFoundError(message) from None

    def jobs_of(self, batch_id: str) -> list[Job]:
        return [self._jobs[job_id] for job_id in self.get_batch(batch_id).job_ids]

    def snapshot_job(self, job_id: str) -> Job:
        return self.get_job(job_id).model_copy(deep=True)

    def snapshot_batch(self, batch_id: str) -> BatchJob:
        """Deep copy of a batch with `jobs` filled in."""
        batch = self.get_batch(batch_id).model_copy(deep=True)
        batch.jobs = [job.model_copy(deep=True) for job in self.jobs_of(batch_id)]
        return batch

    def job_lock(self, job_id: str) -> asyncio.Lock:
        self.get_job(job_id)
        return self._locks[job_id]

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def update_job_status(
        self,
        job: Job,
        status: JobStatus,
        *,
        error: ErrorDetails | None = None,
    ) -> None:
        async with self.job_lock(job.job_id):
            self.apply_status(job, status, error=error)

    def apply_status(
        self,
        job: Job,
        status: JobStatus,
        *,
        error: ErrorDetails | None = None,
    ) -> None:
        previous = job.status
        job.transition_to(status, error=error)
        logger.info(
            "job status changed",
            extra={
                "job_id": job.job_id,
                "batch_id": job.batch_id,
                "from": previous,
                "to": status,
            },
        )
        if not status.is_terminal:
            return
        for listener in self._listeners:
            try:
                listener(job)
            except Exception:
                logger.exception(
                    "job listener failed",
                    extra={"job_id": job.job_id, "listener": listener},
                )
