from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING

from qbatch_engine.buffers import ScoredBuffer
from qbatch_engine.framework import (
    BatchJob,
    BatchMetrics,
    ErrorDetails,
    ErrorKind,
    InvalidTransitionError,
    JobContext,
    JobStatus,
    Severity,
    ValidationError,
)
from qbatch_engine.framework.model import utcnow
from qbatch_engine.providers import ensure_valid

from .dependencies import DependencyGraph, blocking_state, required_cycle
from .rollup import (
    actual_resource_usage,
    average_execution_time,
    batch_priority,
    circuit_complexity,
    merge_circuits,
    resource_usage,
    rollup_status,
)
from .strategies import SchedulingContext, SchedulingStrategyRegistry

if TYPE_CHECKING:
    from collections.abc import Coroutine, Iterable

    from qbatch_engine.framework import (
        GlobalContext,
        Job,
        JobDependency,
        PipelineExecutor,
    )

logger = logging.getLogger(__name__)

MICROSECONDS = 1e-6


class BatchScheduler:
    """Groups jobs into batches and drives them through the pipeline.

    The scheduler validates batches synchronously, registers them with the
    job repository and hands every job whose required dependencies are
    complete to the `PipelineExecutor`. It installs the strategy score and
    the resource admission check on the executor's `ScoredBuffer`, and
    listens for terminal jobs to free resources and release dependents.

    Args:
        gctx: Global context carrying the repository, provider registry,
            estimator and resource tracker.
        executor: The pipeline the jobs run through.
        strategies: Scheduling strategy registry; defaults to the built-ins.
        time_scale: Multiplies dependency wait deadlines; 0 disables them.

    """

    def __init__(
        self,
        gctx: GlobalContext,
        executor: PipelineExecutor,
        strategies: SchedulingStrategyRegistry | None = None,
        *,
        time_scale: float = 1.0,
    ) -> None:
        self._gctx = gctx
        self._repository = gctx.job_repository
        self._executor = executor
        self._strategies = strategies or SchedulingStrategyRegistry()
        self._time_scale = time_scale
        self._graph = DependencyGraph()
        self._context = SchedulingContext(
            repository=gctx.job_repository,
            graph=self._graph,
            tracker=gctx.resource_tracker,
            registry=gctx.provider_registry,
            estimator=gctx.estimator,
        )
        self._sequence = itertools.count()
        self._batch_strategy: dict[str, str] = {}
        self._contexts: dict[str, JobContext] = {}
        self._scheduled: set[str] = set()
        self._deadlines: dict[str, list[asyncio.Task]] = {}
        self._background: set[asyncio.Task] = set()

        self._buffer = next(
            (b for b in executor.buffers() if isinstance(b, ScoredBuffer)), None
        )
        if self._buffer is not None:
            self._buffer.scorer = self._score
            self._buffer.admission = self._admit
        self._repository.add_listener(self._on_terminal)

    @property
    def strategies(self) -> SchedulingStrategyRegistry:
        return self._strategies

    @property
    def executor(self) -> PipelineExecutor:
        return self._executor

    @property
    def context(self) -> SchedulingContext:
        return self._context

    async def start(self) -> None:
        await self._executor.start()

    async def shutdown(self) -> None:
        """Stop deadline timers, background tasks and the pipeline workers."""
        tasks = [*itertools.chain.from_iterable(self._deadlines.values()), *self._background]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._deadlines.clear()
        self._background.clear()
        await self._executor.stop()
        logger.info("scheduler stopped")

    # ------------------------------------------------------------------
    # batch creation
    # ------------------------------------------------------------------

    def create_batch(
        self, jobs: Iterable[Job], strategy_name: str, name: str | None = None
    ) -> BatchJob:
        """Validate jobs and build a batch handle without scheduling it.

        Raises:
            ValidationError: Empty batch, unknown strategy or provider,
                circuit the provider can never run, duplicate job id,
                unknown dependency or circular required dependencies.

        """
        batch, _ = self._prepare(jobs, strategy_name, name)
        return batch

    async def submit_batch(
        self, jobs: Iterable[Job], strategy_name: str = "fifo", name: str | None = None
    ) -> str:
        """Validate, register and schedule a batch.

        Nothing is registered when validation fails. Jobs start `pending`;
        those without unfinished required dependencies are handed to the
        pipeline right away.

        Returns:
            The batch id.

        """
        batch, members = self._prepare(jobs, strategy_name, name)
        for job in members:
            job.sequence = next(self._sequence)
        self._repository.add_batch(batch, members)
        self._batch_strategy[batch.batch_id] = batch.strategy
        for job in members:
            self._graph.add(job)
            self._contexts[job.job_id] = JobContext(strategy=batch.strategy)

        logger.info(
            "batch submitted",
            extra={
                "batch_id": batch.batch_id,
                "strategy": batch.strategy,
                "jobs": len(members),
                "optimal_provider": batch.optimal_provider,
            },
        )
        for job in members:
            await self._evaluate(job.job_id)
        return batch.batch_id

    def _prepare(
        self, jobs: Iterable[Job], strategy_name: str, name: str | None
    ) -> tuple[BatchJob, list[Job]]:
        strategy = self._strategies.get(strategy_name)
        members = self._validate(jobs)
        estimator = self._gctx.estimator
        registry = self._gctx.provider_registry

        ranking = estimator.rank_providers(
            [job.circuit for job in members], [job.provider for job in members]
        )
        optimal = ranking[0].provider if ranking else members[0].provider
        merged, conflicts = merge_circuits(
            [job.circuit for job in members], registry.lookup(optimal).qubit_count
        )

        runtimes = [
            estimator.estimate_runtime(job.circuit, job.provider) * MICROSECONDS * job.shots
            for job in members
        ]
        metrics = BatchMetrics(
            total_jobs=len(members),
            total_gates=sum(job.circuit.gate_count for job in members),
            average_complexity=sum(circuit_complexity(job.circuit) for job in members)
            / len(members),
            estimated_cost=sum(
                estimator.estimate_cost(job.circuit, job.provider) for job in members
            ),
            estimated_time=sum(runtimes),
            total_parameters=sum(job.circuit.parameter_count() for job in members),
            average_depth=sum(job.circuit.depth() for job in members) / len(members),
            priority=batch_priority(members),
            merge_conflicts=conflicts,
            resource_usage=resource_usage([job.circuit for job in members], runtimes),
        )
        batch = BatchJob(
            name=name,
            strategy=strategy.name,
            job_ids=[job.job_id for job in members],
            optimal_provider=optimal,
            merged_circuit=merged,
            metrics=metrics,
        )
        return batch, members

    def _validate(self, jobs: Iterable[Job]) -> list[Job]:
        members = [job.model_copy(deep=True) for job in jobs]
        if not members:
            message = "a batch needs at least one job"
            raise ValidationError(
                message, code="EMPTY_BATCH", suggested_actions=("add at least one job",)
            )

        seen: set[str] = set()
        for job in members:
            if job.job_id in seen or self._repository.has_job(job.job_id):
                message = f"job id {job.job_id!r} is used more than once"
                raise ValidationError(
                    message,
                    code="DUPLICATE_JOB_ID",
                    suggested_actions=("give every job a unique id",),
                )
            seen.add(job.job_id)
            if job.status != JobStatus.PENDING:
                message = f"job {job.job_id} must be pending to be submitted, not {job.status}"
                raise ValidationError(message, code="INVALID_JOB_STATE")
            capability = self._gctx.provider_registry.lookup(job.provider)
            job.provider = capability.name
            ensure_valid(job.circuit, capability)

        for job in members:
            for dep in job.dependencies:
                if dep.job_id not in seen and not self._repository.has_job(dep.job_id):
                    message = f"job {job.job_id} depends on unknown job {dep.job_id!r}"
                    raise ValidationError(
                        message,
                        code="UNKNOWN_DEPENDENCY",
                        suggested_actions=(
                            "submit the dependency first or in the same batch",
                        ),
                    )

        cycle = required_cycle(members)
        if cycle is not None:
            message = f"circular required dependency: {' -> '.join(cycle)}"
            raise ValidationError(
                message,
                code="CIRCULAR_DEPENDENCY",
                suggested_actions=(
                    "mark one dependency of the cycle as optional",
                    "remove one dependency of the cycle",
                ),
            )
        return members

    # ------------------------------------------------------------------
    # status and cancellation
    # ------------------------------------------------------------------

    def get_batch_status(self, batch_id: str) -> BatchJob:
        """Snapshot of a batch with its members and rolled-up status.

        Raises:
            BatchNotFoundError: If the batch id is unknown.

        """
        snapshot = self._repository.snapshot_batch(batch_id)
        snapshot.status = rollup_status([job.status for job in snapshot.jobs])
        return snapshot

    async def cancel_batch(self, batch_id: str) -> bool:
        """Cancel every non-terminal member of a batch.

        Raises:
            BatchNotFoundError: If the batch id is unknown.
            InvalidTransitionError: If every member is already terminal.

        """
        jobs = self._repository.jobs_of(batch_id)
        if all(job.is_terminal for job in jobs):
            status = rollup_status([job.status for job in jobs])
            message = f"batch {batch_id} is already {status}"
            raise InvalidTransitionError(message)

        cancelled = [job.job_id for job in jobs if await self._cancel(job)]
        logger.info(
            "batch cancelled",
            extra={"batch_id": batch_id, "cancelled_jobs": cancelled},
        )
        return True

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel one job.

        Raises:
            JobNotFoundError: If the job id is unknown.
            InvalidTransitionError: If the job is already terminal.

        """
        job = self._repository.get_job(job_id)
        if not await self._cancel(job):
            message = f"job {job_id} is already {job.status}"
            raise InvalidTransitionError(message)
        return True

    async def _cancel(self, job: Job) -> bool:
        async with self._repository.job_lock(job.job_id):
            if job.is_terminal:
                return False
            self._repository.apply_status(job, JobStatus.CANCELLED)
        self._executor.cancel_job(job.job_id)
        if self._buffer is not None:
            await self._buffer.discard(job.job_id)
        return True

    # ------------------------------------------------------------------
    # dependency gating
    # ------------------------------------------------------------------

    async def _evaluate(self, job_id: str) -> None:
        job = self._repository.get_job(job_id)
        if job.is_terminal or job_id in self._scheduled:
            return

        statuses = {
            dep.job_id: self._repository.get_job(dep.job_id).status
            for dep in job.dependencies
        }
        state, dep = blocking_state(job.dependencies, statuses)
        if state == "failed":
            await self._fail(
                job,
                code="DEPENDENCY_FAILED",
                kind=ErrorKind.EXECUTION,
                message=f"required dependency {dep.job_id} is {statuses[dep.job_id]}",
            )
        elif state == "waiting":
            self._arm_deadlines(job)
        else:
            self._scheduled.add(job_id)
            self._disarm(job_id)
            logger.info(
                "job released to pipeline",
                extra={"job_id": job_id, "batch_id": job.batch_id},
            )
            await self._executor.execute_pipeline(self._gctx, self._contexts[job_id], job)

    def _arm_deadlines(self, job: Job) -> None:
        if job.job_id in self._deadlines:
            return
        timers = []
        for dep in job.dependencies:
            if dep.optional or dep.max_wait_time is None:
                continue
            delay = dep.max_wait_time * self._time_scale
            if delay <= 0:
                continue
            timers.append(asyncio.create_task(self._deadline(job.job_id, dep, delay)))
        self._deadlines[job.job_id] = timers

    def _disarm(self, job_id: str) -> None:
        for task in self._deadlines.pop(job_id, []):
            if task is not asyncio.current_task():
                task.cancel()

    async def _deadline(self, job_id: str, dep: JobDependency, delay: float) -> None:
        await asyncio.sleep(delay)
        job = self._repository.get_job(job_id)
        if job.is_terminal or job_id in self._scheduled:
            return
        if self._repository.get_job(dep.job_id).status == JobStatus.COMPLETED:
            return
        await self._fail(
            job,
            code="DEPENDENCY_TIMEOUT",
            kind=ErrorKind.TIMEOUT,
            message=f"dependency {dep.job_id} did not complete within {delay:.3g}s",
        )

    async def _fail(self, job: Job, *, code: str, kind: ErrorKind, message: str) -> None:
        details = ErrorDetails(
            code=code,
            kind=kind,
            severity=Severity.HIGH,
            message=message,
            recoverable=False,
            suggested_actions=("resubmit the job once its dependencies succeed",),
            provider=job.provider,
            job_id=job.job_id,
            operation="dependency_resolution",
        )
        self._gctx.recovery_engine.ledger.append(details)
        async with self._repository.job_lock(job.job_id):
            if job.is_terminal:
                return
            self._repository.apply_status(job, JobStatus.FAILED, error=details)

    # ------------------------------------------------------------------
    # buffer callbacks and repository listener
    # ------------------------------------------------------------------

    def _score(self, gctx: GlobalContext, jctx: JobContext, job: Job) -> float:  # noqa: ARG002
        strategy = self._strategies.get(self._batch_strategy[job.batch_id])
        return strategy.score(job, self._context)

    def _admit(self, gctx: GlobalContext, jctx: JobContext, job: Job) -> bool:  # noqa: ARG002
        capability = self._gctx.provider_registry.lookup(job.provider)
        if not self._gctx.resource_tracker.acquire(job, capability):
            return False
        self._context.record_dispatch(job)
        return True

    def _on_terminal(self, job: Job) -> None:
        self._gctx.resource_tracker.release(job.job_id)
        self._disarm(job.job_id)
        if self._buffer is not None:
            self._buffer.wake()
        if job.batch_id is not None:
            self._refresh_batch(job.batch_id)
        dependents = self._graph.dependents_of(job.job_id)
        if dependents:
            self._spawn(self._release(dependents))

    def _refresh_batch(self, batch_id: str) -> None:
        batch = self._repository.get_batch(batch_id)
        jobs = self._repository.jobs_of(batch_id)
        batch.status = rollup_status([j.status for j in jobs])
        update = {
            "completed_jobs": sum(j.status == JobStatus.COMPLETED for j in jobs),
            "failed_jobs": sum(j.status == JobStatus.FAILED for j in jobs),
        }
        if batch.status.is_terminal and batch.ended_at is None:
            batch.ended_at = utcnow()
            update["average_execution_time"] = average_execution_time(jobs)
            update["actual_resource_usage"] = actual_resource_usage(jobs)
            logger.info(
                "batch finished",
                extra={
                    "batch_id": batch_id,
                    "status": batch.status,
                    "completed_jobs": update["completed_jobs"],
                    "failed_jobs": update["failed_jobs"],
                },
            )
        batch.metrics = batch.metrics.model_copy(update=update)

    async def _release(self, job_ids: list[str]) -> None:
        for job_id in job_ids:
            await self._evaluate(job_id)

    def _spawn(self, coro: Coroutine[None, None, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
