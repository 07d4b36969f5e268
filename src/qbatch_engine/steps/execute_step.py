import logging
import time

from qbatch_engine.framework import GlobalContext, Job, JobContext, JobStatus, Step

from .transitions import advance

logger = logging.getLogger(__name__)


class ExecuteStep(Step):
    """Step that submits the job to the execution backend and waits for it.

    Submission happens under the job lock, so a cancel request never
    interleaves with a submit of the same job. Retries enter from
    `retrying` and go through `submitted` again.
    """

    retryable = True

    async def pre_process(  # noqa: PLR6301
        self,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Submit and run the job.

        Args:
            gctx: The global context.
            jctx: The job context.
            job: The job object.

        """
        repository = gctx.job_repository
        capability = gctx.provider_registry.lookup(job.provider)
        circuit = job.optimization.optimized_circuit if job.optimization else job.circuit

        async with repository.job_lock(job.job_id):
            if job.is_terminal:
                return
            repository.apply_status(job, JobStatus.SUBMITTED)
            backend_job_id = await gctx.backend.submit(job, circuit, capability)
        jctx.backend_job_id = backend_job_id

        if not await advance(gctx, job, JobStatus.RUNNING):
            return

        start = time.perf_counter()
        result = await gctx.backend.run(backend_job_id, job, circuit, capability)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        job.result = result
        logger.info(
            "job executed",
            extra={
                "job_id": job.job_id,
                "backend_job_id": backend_job_id,
                "shots": result.shots,
                "elapsed_ms": round(elapsed_ms, 3),
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
