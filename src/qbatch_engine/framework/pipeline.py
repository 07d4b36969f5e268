from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from .buffer import Buffer
from .step import Step

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from .context import GlobalContext, JobContext
    from .exception_handler import PipelineExceptionHandler
    from .model import Job

logger = logging.getLogger(__name__)


class StepPhase(StrEnum):
    """Execution phase of a pipeline step."""

    PRE_PROCESS = "pre_process"
    POST_PROCESS = "post_process"


class PipelineExecutor:
    """Executor for a linear job-processing pipeline.

    This executor runs Jobs through a sequence of Steps and Buffers.

    Responsibilities:

    - Execute Jobs from index 0 in the PRE_PROCESS phase.
    - Interrupt forward execution at Buffers and hand off Jobs to worker tasks.
    - Resume every job that leaves a Buffer in its own task, so that a job
      waiting on a backoff timer never holds up a worker.
    - Perform a full POST_PROCESS backward pass after reaching the end.
    - Stop quietly as soon as a job is in a terminal state (e.g. cancelled).

    The executor controls *execution*, while the list of Steps and Buffers
    represents the pipeline *definition*.

    """

    def __init__(
        self,
        pipeline: list[Step | Buffer],
        exception_handler: PipelineExceptionHandler | None = None,
    ) -> None:
        """Initialize the pipeline executor."""
        self._pipeline = pipeline
        self._exception_handler = exception_handler
        self._workers: list[asyncio.Task] = []

        # One in-flight task per job id; cancelling it aborts the job's
        # current step (including recovery backoff waits).
        self._job_tasks: dict[str, asyncio.Task] = {}

        logger.info(
            "pipeline executor initialized",
            extra={
                "pipeline": self._pipeline,
                "exception_handler": self._exception_handler,
            },
        )

    @property
    def pipeline(self) -> list[Step | Buffer]:
        return self._pipeline

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def buffers(self) -> list[Buffer]:
        return [node for node in self._pipeline if isinstance(node, Buffer)]

    async def start(self) -> None:
        """Spawn the buffer workers. Calling it again is a no-op."""
        if self._workers:
            return
        for index, node in enumerate(self._pipeline):
            if isinstance(node, Buffer):
                # Spawn one worker per allowed concurrency level.
                for _ in range(node.max_concurrency):
                    task = asyncio.create_task(self._worker_loop(node, index))
                    self._workers.append(task)

    async def stop(self) -> None:
        """Cancel the workers and every in-flight job task."""
        tasks = [*self._workers, *self._job_tasks.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._job_tasks.clear()

    async def _worker_loop(self, buffer: Buffer, buffer_index: int) -> None:
        while True:
            try:
                gctx, jctx, job = await buffer.get()
                self._spawn(
                    job,
                    self._run_from(
                        step_phase=StepPhase.PRE_PROCESS,
                        index=buffer_index + 1,
                        gctx=gctx,
                        jctx=jctx,
                        job=job,
                    ),
                )
            except Exception:
                logger.exception(
                    "worker crashed and recovered",
                    extra={"buffer_index": buffer_index},
                )
                continue

    async def execute_pipeline(
        self, gctx: GlobalContext, jctx: JobContext, job: Job
    ) -> None:
        """Schedule the job to run through the pipeline from the first node."""
        self._spawn(
            job,
            self._run_from(
                step_phase=StepPhase.PRE_PROCESS,
                index=0,
                gctx=gctx,
                jctx=jctx,
                job=job,
            ),
        )

    def cancel_job(self, job_id: str) -> bool:
        """Cancel the in-flight task of a job.

        Returns:
            True if a running task was cancelled.

        """
        task = self._job_tasks.get(job_id)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def in_flight(self) -> int:
        return sum(1 for task in self._job_tasks.values() if not task.done())

    def _spawn(self, job: Job, coro: Coroutine[None, None, None]) -> None:
        task = asyncio.create_task(coro, name=f"job:{job.job_id}")
        self._job_tasks[job.job_id] = task

        def _done(t: asyncio.Task) -> None:
            if self._job_tasks.get(job.job_id) is t:
                del self._job_tasks[job.job_id]

        task.add_done_callback(_done)

    async def _run_from(  # noqa: C901
        self,
        step_phase: StepPhase,
        index: int,
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
    ) -> None:
        """Run a job through the pipeline as a simple state machine.

        The state is represented by (step_phase, cursor). The method:
          - Moves forward in PRE_PROCESS phase.
          - Moves backward in POST_PROCESS phase.
          - Hands the job over to a Buffer and stops when it meets one.

        Args:
            step_phase: The current phase of execution (pre_process or post_process).
            index: The current index in the pipeline to execute from.
            gctx: The global context.
            jctx: The job context.
            job: The job being processed.

        """
        if index == 0 and step_phase == StepPhase.PRE_PROCESS:
            logger.info(
                "job processing started",
                extra={"job_id": job.job_id, "batch_id": job.batch_id},
            )

        # state variables (do not mutate function arguments).
        current_phase = step_phase
        cursor = index

        while True:
            if current_phase == StepPhase.PRE_PROCESS:
                # end of forward pipeline: switch to full backward pass.
                if cursor >= len(self._pipeline):
                    current_phase = StepPhase.POST_PROCESS
                    cursor = len(self._pipeline) - 1
                    continue
            # backward finished: no more nodes to process.
            elif cursor < 0:
                logger.info(
                    "job processing finished",
                    extra={
                        "job_id": job.job_id,
                        "batch_id": job.batch_id,
                        "status": job.status,
                    },
                )
                return

            if job.is_terminal:
                logger.info(
                    "job left the pipeline",
                    extra={
                        "job_id": job.job_id,
                        "status": job.status,
                        "phase": current_phase.value,
                        "cursor": cursor,
                    },
                )
                return

            node = self._pipeline[cursor]
            jctx.step_history.append((current_phase.value, cursor))

            # ========================================================
            # handle Buffer nodes
            # ========================================================
            if isinstance(node, Buffer):
                if current_phase == StepPhase.PRE_PROCESS:
                    await node.put(gctx, jctx, job)
                    return
                # Buffers have no backward behavior.
                cursor -= 1
                continue

            fn = (
                node.pre_process
                if current_phase == StepPhase.PRE_PROCESS
                else node.post_process
            )
            success = await self._safe_call(
                fn=fn,
                gctx=gctx,
                jctx=jctx,
                job=job,
                step=node,
                phase=current_phase,
            )
            if not success:
                # stop the pipeline for this job if the step failed.
                return

            cursor = cursor + 1 if current_phase == StepPhase.PRE_PROCESS else cursor - 1

    async def _safe_call(  # noqa: PLR0913, PLR0917
        self,
        fn: Callable[[GlobalContext, JobContext, Job], Awaitable[None]],
        gctx: GlobalContext,
        jctx: JobContext,
        job: Job,
        step: Step,
        phase: StepPhase,
    ) -> bool:
        """Call a step function with exception handling and optional retries.

        The exception handler decides whether the failed phase runs again.
        `asyncio.CancelledError` is never handled here.

        Args:
            fn: The function to call.
            gctx: The global context.
            jctx: The job context.
            job: The job object.
            step: The step instance.
            phase: The phase of the pipeline (pre_process or post_process).

        Returns:
            True if the function executed successfully, False otherwise.

        """
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.info(
                    "starting step phase",
                    extra={
                        "step": step.__class__.__name__,
                        "phase": phase.value,
                        "job_id": job.job_id,
                        "attempt": attempt,
                    },
                )

                start = time.perf_counter()
                await fn(gctx, jctx, job)
                elapsed_ms = (time.perf_counter() - start) * 1000.0

                logger.info(
                    "completed step phase",
                    extra={
                        "elapsed_ms": round(elapsed_ms, 3),
                        "step": step.__class__.__name__,
                        "phase": phase.value,
                        "job_id": job.job_id,
                    },
                )
            except Exception as e:
                logger.exception(
                    "failed to execute step phase",
                    extra={
                        "step": step.__class__.__name__,
                        "phase": phase.value,
                        "job_id": job.job_id,
                        "attempt": attempt,
                    },
                )
                if self._exception_handler is None:
                    return False
                retry = await self._exception_handler.handle_exception(
                    e, gctx, jctx, job, step
                )
                if retry and not job.is_terminal:
                    continue
                return False
            else:
                return True
