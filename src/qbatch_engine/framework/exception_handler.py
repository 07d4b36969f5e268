from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import GlobalContext, JobContext
    from .model import Job
    from .step import Step


class PipelineExceptionHandler(ABC):
    """Decides what happens to a job whose step raised."""

    @abstractmethod
    async def handle_exception(
        self,
        ex: Exception,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
        step: Step,
    ) -> bool:
        """React to `ex` raised by a phase of `step`.

        The handler owns the job's fate: it may move the job to `retrying`
        or `failed` through the job repository before returning.

        Returns:
            True to run the same phase again, False to drop the job from
            the pipeline.

        """
