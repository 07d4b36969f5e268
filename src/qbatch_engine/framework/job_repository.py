from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable

    from .enums import JobStatus
    from .model import BatchJob, ErrorDetails, Job

    JobListener = Callable[[Job], None]


class JobRepository(ABC):
    """Abstract base class for the Job/BatchJob status store.

    The repository is the single owner of job state. Writers serialize on
    the per-job lock returned by `job_lock`; readers receive copies and
    never block writers.
    """

    @abstractmethod
    def add_batch(self, batch: BatchJob, jobs: list[Job]) -> None:
        """Register a batch together with its member jobs.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`add_batch` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def get_job(self, job_id: str) -> Job:
        """Return the live job object.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`get_job` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def has_job(self, job_id: str) -> bool:
        """Whether a job with this id is known.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`has_job` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def get_batch(self, batch_id: str) -> BatchJob:
        """Return the live batch object.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`get_batch` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def jobs_of(self, batch_id: str) -> list[Job]:
        """Return the live member jobs of a batch, in submission order.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`jobs_of` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def snapshot_job(self, job_id: str) -> Job:
        """Return a deep copy of the job, safe to hand to readers.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`snapshot_job` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def snapshot_batch(self, batch_id: str) -> BatchJob:
        """Return a deep copy of the batch with its member jobs attached.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`snapshot_batch` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def job_lock(self, job_id: str) -> asyncio.Lock:
        """Return the lock that serializes writes to one job.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`job_lock` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    async def update_job_status(
        self,
        job: Job,
        status: JobStatus,
        *,
        error: ErrorDetails | None = None,
    ) -> None:
        """Transition a job under its lock and notify listeners.

        Args:
            job: The job to update.
            status: The new status.
            error: Error details attached to a failed job.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = (
            "`update_job_status` must be implemented in subclasses of JobRepository."
        )
        raise NotImplementedError(message)

    @abstractmethod
    def apply_status(
        self,
        job: Job,
        status: JobStatus,
        *,
        error: ErrorDetails | None = None,
    ) -> None:
        """Transition a job whose lock the caller already holds.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`apply_status` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)

    @abstractmethod
    def add_listener(self, listener: JobListener) -> None:
        """Register a callback invoked after a job reaches a terminal state.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`add_listener` must be implemented in subclasses of JobRepository."
        raise NotImplementedError(message)
