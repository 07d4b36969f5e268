import logging

from qbatch_engine.framework import GlobalContext, Job, JobContext, JobStatus, Step

from .transitions import advance

logger = logging.getLogger(__name__)


class OptimizeStep(Step):
    """Step that runs the circuit optimizer for the job's provider.

    The stage subset comes from `jctx.optimizer_stages` when set (the
    recovery handler narrows it after a compilation failure), otherwise
    from `stages`, otherwise every registered stage runs.

    Args:
        stages: Default stage names for every job.

    """

    retryable = True

    def __init__(self, stages: list[str] | None = None) -> None:
        self._stages = stages
        logger.info("OptimizeStep was initialized", extra={"stages": stages})

    async def pre_process(
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Optimize the job circuit and attach the result to the job.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
        if not await advance(gctx, job, JobStatus.OPTIMIZING):
            return

        stages = jctx.get("optimizer_stages", self._stages)
        result = gctx.optimizer.optimize(job.circuit, job.provider, stages)
        job.optimization = result
        logger.info(
            "job circuit optimized",
            extra={
                "job_id": job.job_id,
                "algorithm": result.algorithm_name,
                "gate_reduction_pct": round(result.impact.gate_reduction_pct, 2),
            },
        )

    async def post_process(
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Do nothing.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
