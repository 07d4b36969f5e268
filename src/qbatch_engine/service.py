from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from qbatch_engine.backends import SimulatedBackend
from qbatch_engine.buffers import ScoredBuffer
from qbatch_engine.circuit import qasm
from qbatch_engine.framework import (
    Circuit,
    GlobalContext,
    Job,
    PipelineBuilder,
    PipelineExecutor,
    ValidationError,
)
from qbatch_engine.handlers import RecoveryExceptionHandler
from qbatch_engine.noise import NoiseEstimator
from qbatch_engine.optimizer import CircuitOptimizer
from qbatch_engine.providers import default_registry, ensure_valid
from qbatch_engine.recovery import RecoveryEngine
from qbatch_engine.repositories import InMemoryJobRepository
from qbatch_engine.scheduler import BatchScheduler, ResourceTracker
from qbatch_engine.steps import EstimateStep, ExecuteStep, JobStatusStep, OptimizeStep
from qbatch_engine.utils import DiContainer
from qbatch_engine.utils.di_container import load_target

if TYPE_CHECKING:
    from types import TracebackType

    from qbatch_engine.framework import (
        BatchJob,
        CircuitAnalysis,
        ErrorDetails,
        ErrorStatistics,
        ExecutionBackend,
        FidelityEstimate,
        JobRepository,
        MitigationStrategy,
        OptimizationRecommendation,
        OptimizationResult,
        ProviderCapability,
        ProviderSuggestion,
    )
    from qbatch_engine.providers import ProviderRegistry

logger = logging.getLogger(__name__)

CircuitLike = Circuit | Mapping[str, Any] | str
JobLike = Job | Mapping[str, Any]


class EngineSettings(BaseModel):
    """Service-wide settings, validated once when the service is built.

    Attributes:
        time_scale: Multiplies every backoff delay, timeout, dependency
            deadline and simulated execution time. 0 runs without waiting
            and disables timeouts.
        seed: Seed for backoff jitter and simulated sampling.
        default_strategy: Scheduling strategy used when none is given.
        buffer_concurrency: Ready-queue workers (jobs leaving the queue at
            once; admitted jobs then run concurrently in their own tasks).
        poll_interval: Seconds between admission re-checks of queued jobs.
        verify_equivalence: Let the optimizer check small results against
            the input unitary.
        failure_rate: Probability that the simulated backend refuses a
            submission.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    time_scale: float = Field(default=1.0, ge=0)
    seed: int | None = None
    default_strategy: str = "fifo"
    buffer_concurrency: int = Field(default=4, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    verify_equivalence: bool = False
    failure_rate: float = Field(default=0.0, ge=0, le=1)


def default_settings() -> EngineSettings:
    """Settings used when the caller provides none."""
    return EngineSettings()


def _validated(model: type[BaseModel], data: Any, what: str) -> Any:  # noqa: ANN401
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"]) or what
        message = f"invalid {what}: {where}: {first['msg']}"
        raise ValidationError(
            message,
            code="INVALID_INPUT",
            suggested_actions=(f"fix the {what} and submit it again",),
        ) from e


def _with_buffer_defaults(config: dict[str, Any], settings: EngineSettings) -> dict[str, Any]:
    defaults = {
        "max_concurrency": settings.buffer_concurrency,
        "poll_interval": settings.poll_interval,
    }
    resolved = dict(config)
    for name in (config.get("pipeline_executor") or {}).get("pipeline") or []:
        entry = config.get(name)
        if not isinstance(entry, dict) or "_target_" not in entry:
            continue
        target = load_target(entry["_target_"])
        if isinstance(target, type) and issubclass(target, ScoredBuffer):
            resolved[name] = {**defaults, **entry}
    return resolved


def to_circuit(circuit: CircuitLike) -> Circuit:
    """Accept a `Circuit`, its dict form or OpenQASM text.

    Raises:
        ValidationError: If the input does not describe a valid circuit.

    """
    if isinstance(circuit, Circuit):
        return circuit
    if isinstance(circuit, str):
        return qasm.loads(circuit)
    return _validated(Circuit, circuit, "circuit")


def to_job(job: JobLike) -> Job:
    """Accept a `Job` or its dict form.

    Raises:
        ValidationError: If the input does not describe a valid job.

    """
    if isinstance(job, Job):
        return job
    return _validated(Job, job, "job")


class QuantumWorkloadService:
    """Entry point for callers: optimize, estimate, submit, poll and cancel.

    The service owns the engine-wide collaborators (provider registry,
    estimator, optimizer, recovery engine, resource tracker, job repository
    and execution backend), publishes them on a `GlobalContext`, and runs
    batches through a `PipelineExecutor` via the `BatchScheduler`.

    Use `create()` for the built-in pipeline or `from_config()` to build the
    pipeline from a configuration dictionary.
    """

    def __init__(  # noqa: PLR0913
        self,
        executor: PipelineExecutor,
        *,
        settings: EngineSettings | None = None,
        registry: ProviderRegistry | None = None,
        repository: JobRepository | None = None,
        backend: ExecutionBackend | None = None,
        estimator: NoiseEstimator | None = None,
        optimizer: CircuitOptimizer | None = None,
        recovery_engine: RecoveryEngine | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self._settings = settings or default_settings()
        registry = registry or default_registry()
        estimator = estimator or NoiseEstimator(registry)
        self._gctx = GlobalContext(
            config=config or {},
            job_repository=repository or InMemoryJobRepository(),
            backend=backend
            or SimulatedBackend(
                time_scale=self._settings.time_scale,
                seed=self._settings.seed,
                failure_rate=self._settings.failure_rate,
            ),
            provider_registry=registry,
            estimator=estimator,
            optimizer=optimizer
            or CircuitOptimizer(
                registry,
                estimator,
                verify_equivalence=self._settings.verify_equivalence,
            ),
            recovery_engine=recovery_engine
            or RecoveryEngine(
                rng=random.Random(self._settings.seed),  # noqa: S311
                time_scale=self._settings.time_scale,
            ),
            resource_tracker=ResourceTracker(),
        )
        self._scheduler = BatchScheduler(
            self._gctx, executor, time_scale=self._settings.time_scale
        )
        logger.info(
            "service initialized",
            extra={
                "providers": registry.names(),
                "settings": self._settings.model_dump(),
            },
        )

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------

    @staticmethod
    def default_pipeline(settings: EngineSettings | None = None) -> PipelineExecutor:
        settings = settings or default_settings()
        return PipelineExecutor(
            pipeline=[
                JobStatusStep(),
                ScoredBuffer(
                    max_concurrency=settings.buffer_concurrency,
                    poll_interval=settings.poll_interval,
                ),
                OptimizeStep(),
                EstimateStep(),
                ExecuteStep(),
            ],
            exception_handler=RecoveryExceptionHandler(),
        )

    @classmethod
    def create(
        cls, settings: EngineSettings | Mapping[str, Any] | None = None, **kwargs: Any  # noqa: ANN401
    ) -> QuantumWorkloadService:
        """Build a service with the built-in pipeline.

        Raises:
            ValidationError: If the settings are invalid.

        """
        if settings is not None and not isinstance(settings, EngineSettings):
            settings = _validated(EngineSettings, settings, "settings")
        return cls(cls.default_pipeline(settings), settings=settings, **kwargs)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> QuantumWorkloadService:
        """Build a service from a configuration dictionary.

        `engine` holds the `EngineSettings`, `pipeline_executor` names the
        pipeline nodes and the exception handler. `job_repository` and
        `execution_backend` are optional components. Every component is
        resolved through the `DiContainer`. A `ScoredBuffer` node that
        leaves out `max_concurrency` or `poll_interval` takes
        `engine.buffer_concurrency` and `engine.poll_interval`.

        Raises:
            ValidationError: If the engine settings are invalid.

        """
        settings = _validated(EngineSettings, config.get("engine") or {}, "settings")
        config = _with_buffer_defaults(config, settings)
        dicon = DiContainer(config)
        executor = PipelineBuilder.build(config["pipeline_executor"], dicon)
        return cls(
            executor,
            settings=settings,
            repository=dicon.get("job_repository") if dicon.has("job_repository") else None,
            backend=dicon.get("execution_backend") if dicon.has("execution_backend") else None,
            config=config,
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def gctx(self) -> GlobalContext:
        return self._gctx

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def scheduler(self) -> BatchScheduler:
        return self._scheduler

    async def start(self) -> None:
        await self._scheduler.start()

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()

    async def __aenter__(self) -> QuantumWorkloadService:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # circuits
    # ------------------------------------------------------------------

    def optimize_circuit(
        self,
        circuit: CircuitLike,
        provider_name: str,
        strategies: Iterable[str] | None = None,
    ) -> OptimizationResult:
        """Optimize a circuit for a provider.

        Raises:
            ValidationError: Invalid circuit, unknown provider or stage.
            CompilationError: No native rewrite exists for some gate.

        """
        return self._gctx.optimizer.optimize(to_circuit(circuit), provider_name, strategies)

    def estimate_fidelity(self, circuit: CircuitLike, provider_name: str) -> FidelityEstimate:
        """Estimate execution fidelity of a circuit on a provider.

        Raises:
            ValidationError: Invalid circuit or unknown provider.

        """
        circuit, capability = self._valid(circuit, provider_name)
        return self._gctx.estimator.estimate_fidelity(circuit, capability)

    def analyze_circuit(self, circuit: CircuitLike, provider_name: str) -> CircuitAnalysis:
        """Summarize structure and timing of a circuit on a provider.

        Raises:
            ValidationError: Invalid circuit or unknown provider.

        """
        circuit, capability = self._valid(circuit, provider_name)
        return self._gctx.estimator.analyze(circuit, capability)

    def recommend_mitigations(
        self, circuit: CircuitLike, provider_name: str
    ) -> list[MitigationStrategy]:
        circuit, capability = self._valid(circuit, provider_name)
        return self._gctx.estimator.recommend_mitigations(circuit, capability)

    def recommend_optimizations(
        self, circuit: CircuitLike, provider_name: str
    ) -> list[OptimizationRecommendation]:
        return self._gctx.optimizer.recommend_optimizations(to_circuit(circuit), provider_name)

    def suggest_provider(self, circuit: CircuitLike) -> list[ProviderSuggestion]:
        return self._gctx.estimator.suggest_provider(to_circuit(circuit))

    def _valid(
        self, circuit: CircuitLike, provider_name: str
    ) -> tuple[Circuit, ProviderCapability]:
        circuit = to_circuit(circuit)
        capability = self._gctx.provider_registry.lookup(provider_name)
        ensure_valid(circuit, capability)
        return circuit, capability

    # ------------------------------------------------------------------
    # batches
    # ------------------------------------------------------------------

    async def submit_batch(
        self,
        jobs: Iterable[JobLike],
        strategy_name: str | None = None,
        name: str | None = None,
    ) -> str:
        """Validate and schedule a batch.

        Returns:
            The batch id.

        Raises:
            ValidationError: If the batch is rejected; nothing is scheduled.

        """
        return await self._scheduler.submit_batch(
            [to_job(job) for job in jobs],
            strategy_name or self._settings.default_strategy,
            name,
        )

    def get_batch_status(self, batch_id: str) -> BatchJob:
        return self._scheduler.get_batch_status(batch_id)

    def get_job(self, job_id: str) -> Job:
        return self._gctx.job_repository.snapshot_job(job_id)

    async def cancel_batch(self, batch_id: str) -> bool:
        return await self._scheduler.cancel_batch(batch_id)

    async def cancel_job(self, job_id: str) -> bool:
        return await self._scheduler.cancel_job(job_id)

    async def wait_for_batch(
        self, batch_id: str, timeout: float | None = None, interval: float = 0.01
    ) -> BatchJob:
        """Poll until every member of the batch is terminal.

        Raises:
            TimeoutError: If `timeout` seconds pass first.

        """
        async with asyncio.timeout(timeout):
            while True:
                batch = self.get_batch_status(batch_id)
                if batch.status.is_terminal:
                    return batch
                await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # error analytics
    # ------------------------------------------------------------------

    def error_statistics(self) -> ErrorStatistics:
        return self._gctx.recovery_engine.ledger.statistics()

    def recent_errors(self, limit: int = 10) -> list[ErrorDetails]:
        return self._gctx.recovery_engine.ledger.recent(limit)
