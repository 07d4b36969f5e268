from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import GlobalContext, JobContext
    from .model import Job


class Buffer(ABC):
    """Abstract class for pipeline buffers.

    A Buffer stores `(gctx, jctx, job)` tuples and acts as an intermediate
    component between pipeline steps. Different Buffer implementations may
    apply different queuing, ranking or admission strategies.

    Each stored element consists of:
        - gctx: GlobalContext (engine-wide shared context)
        - jctx: JobContext (per-job mutable context)
        - job:  Job (the scheduled job)

    Implementations must provide asynchronous `put()` and `get()` methods,
    along with a synchronous `size()` method for monitoring capacity.
    """

    def __init__(self, max_concurrency: int = 1) -> None:
        if max_concurrency < 1:
            message = f"max_concurrency must be positive, got {max_concurrency}"
            raise ValueError(message)
        self._max_concurrency = max_concurrency

    @property
    def max_concurrency(self) -> int:
        """Number of worker tasks the executor spawns for this buffer."""
        return self._max_concurrency

    @abstractmethod
    async def put(self, gctx: GlobalContext, jctx: JobContext, job: Job) -> None:
        """Store a job tuple into the buffer.

        Args:
            gctx: Global execution context associated with the job.
            jctx: Job-specific context.
            job: The job.

        """
        message = "`put` must be implemented in subclasses of Buffer."
        raise NotImplementedError(message)

    @abstractmethod
    async def get(self) -> tuple[GlobalContext, JobContext, Job]:
        """Retrieve a stored job tuple from the buffer.

        Returns:
            A tuple `(gctx, jctx, job)` removed from the buffer.

        """
        message = "`get` must be implemented in subclasses of Buffer."
        raise NotImplementedError(message)

    @abstractmethod
    def size(self) -> int:
        """Return the number of items stored in the buffer.

        Returns:
            The number of queued elements.

        """
        message = "`size` must be implemented in subclasses of Buffer."
        raise NotImplementedError(message)

    async def discard(self, job_id: str) -> bool:  # noqa: ARG002, PLR6301
        """Drop a stored job without delivering it.

        Returns:
            True if the job was stored and has been removed.

        """
        return False
