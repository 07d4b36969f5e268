import logging

from qbatch_engine.framework import GlobalContext, Job, JobContext, JobStatus, Step

from .transitions import advance

logger = logging.getLogger(__name__)


class JobStatusStep(Step):
    """Step that opens and closes the job lifecycle.

    The job becomes `queued` on the way in and `completed` on the way back,
    once every later step has finished.
    """

    def __init__(self) -> None:
        logger.info("JobStatusStep was initialized")

    async def pre_process(  # noqa: PLR6301
        self,
        gctx: GlobalContext,
        jctx: JobContext,  # noqa: ARG002
        job: Job,
    ) -> None:
        """Mark the job as queued.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
        await advance(gctx, job, JobStatus.QUEUED)

    async def post_process(  # noqa: PLR6301
        self,
        gctx: GlobalContext,
        jctx: JobContext,  # noqa: ARG002
        job: Job,
    ) -> None:
        """Mark the job as completed.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
        if await advance(gctx, job, JobStatus.COMPLETED):
            logger.info(
                "job completed",
                extra={
                    "job_id": job.job_id,
                    "batch_id": job.batch_id,
                    "retry_count": job.retry_count,
                },
            )
