from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from .context import GlobalContext, JobContext
    from .model import Job


class Step(ABC):
    """Abstract base class for pipeline steps with pre- and post-process hooks.

    A step represents a single stage in the execution pipeline. Each step
    defines *awaitable* pre-process and post-process methods. These methods
    are invoked sequentially by the PipelineExecutor: `pre_process` on the
    forward pass, `post_process` on the backward pass once the job has
    reached the end of the pipeline.

    Attributes:
        retryable: Whether the pipeline exception handler may ask the
            executor to run a failed phase of this step again.

    """

    retryable: ClassVar[bool] = False

    @abstractmethod
    async def pre_process(
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Run before the job is processed."""
        msg = "`pre_process` must be implemented in subclasses of Step"
        raise NotImplementedError(msg)

    @abstractmethod
    async def post_process(
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Run after the job is processed."""
        msg = "`post_process` must be implemented in subclasses of Step"
        raise NotImplementedError(msg)
