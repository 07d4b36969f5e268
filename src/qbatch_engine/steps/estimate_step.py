import logging

from qbatch_engine.framework import GlobalContext, Job, JobContext, Step

logger = logging.getLogger(__name__)


class EstimateStep(Step):
    """Step that scores the circuit about to run against the provider's noise model."""

    async def pre_process(  # noqa: PLR6301
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Attach a fidelity estimate to the job and an analysis to the context.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
        circuit = job.optimization.optimized_circuit if job.optimization else job.circuit
        job.fidelity = gctx.estimator.estimate_fidelity(circuit, job.provider)
        jctx.analysis = gctx.estimator.analyze(circuit, job.provider)
        logger.info(
            "job fidelity estimated",
            extra={
                "job_id": job.job_id,
                "overall_fidelity": job.fidelity.overall_fidelity,
                "runtime_us": jctx.analysis.estimated_runtime,
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
