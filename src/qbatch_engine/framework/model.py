from collections import Counter, deque
from datetime import UTC, datetime
from functools import cached_property
from typing import Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from .enums import (
    DependencyKind,
    ErrorCorrectionLevel,
    ErrorKind,
    JobStatus,
    Priority,
    Severity,
    TopologyKind,
)
from .errors import InvalidTransitionError

MAX_GATE_ARITY = 3

# Gate type used as the fallback table entry for gates of the same arity.
_REFERENCE_GATES = {1: "h", 2: "cx", 3: "ccx"}


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Return a short unique identifier with the given prefix."""
    return f"{prefix}-{uuid4().hex[:12]}"


# =============================================================================
# Circuit model
# =============================================================================


class Gate(BaseModel):
    """A single gate application. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    type: str
    qubits: tuple[int, ...]
    params: tuple[float, ...] = ()

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            message = "gate type must not be empty"
            raise ValueError(message)
        return value

    @field_validator("qubits")
    @classmethod
    def _check_qubits(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if not 1 <= len(value) <= MAX_GATE_ARITY:
            message = f"a gate acts on 1 to {MAX_GATE_ARITY} qubits, got {len(value)}"
            raise ValueError(message)
        if len(set(value)) != len(value):
            message = f"gate qubits must be unique, got {value}"
            raise ValueError(message)
        if any(q < 0 for q in value):
            message = f"qubit indices must be non-negative, got {value}"
            raise ValueError(message)
        return value

    @classmethod
    def of(cls, gate_type: str, *qubits: int, params: tuple[float, ...] = ()) -> "Gate":
        """Shorthand constructor: `Gate.of("cx", 0, 1)`."""
        return cls(type=gate_type, qubits=qubits, params=params)

    @property
    def arity(self) -> int:
        """Number of qubits the gate acts on."""
        return len(self.qubits)

    def on(self, *qubits: int) -> "Gate":
        """Return the same gate applied to other qubits."""
        return Gate(type=self.type, qubits=qubits, params=self.params)

    def __str__(self) -> str:
        params = f"({', '.join(f'{p:.4g}' for p in self.params)})" if self.params else ""
        return f"{self.type}{params} {','.join(f'q[{q}]' for q in self.qubits)}"


class Circuit(BaseModel):
    """Qubit count plus an ordered gate list."""

    model_config = ConfigDict(frozen=True)

    qubit_count: int = Field(gt=0)
    gates: tuple[Gate, ...] = ()

    @model_validator(mode="after")
    def _check_gate_range(self) -> "Circuit":
        for index, gate in enumerate(self.gates):
            if max(gate.qubits) >= self.qubit_count:
                message = (
                    f"gate #{index} ({gate}) references a qubit outside "
                    f"the {self.qubit_count}-qubit register"
                )
                raise ValueError(message)
        return self

    @property
    def gate_count(self) -> int:
        return len(self.gates)

    def with_gates(self, gates: Any, qubit_count: int | None = None) -> "Circuit":  # noqa: ANN401
        """Return a new circuit with the given gates (and optionally width)."""
        return Circuit(
            qubit_count=qubit_count if qubit_count is not None else self.qubit_count,
            gates=tuple(gates),
        )

    def depth(self) -> int:
        """Length of the longest qubit-local gate chain."""
        levels: dict[int, int] = {}
        depth = 0
        for gate in self.gates:
            level = max(levels.get(q, 0) for q in gate.qubits) + 1
            for q in gate.qubits:
                levels[q] = level
            depth = max(depth, level)
        return depth

    def gate_counts(self) -> dict[str, int]:
        return dict(Counter(gate.type for gate in self.gates))

    def multi_qubit_gate_count(self) -> int:
        return sum(1 for gate in self.gates if gate.arity > 1)

    def parameter_count(self) -> int:
        return sum(len(gate.params) for gate in self.gates)

    def active_qubits(self) -> list[int]:
        """Sorted qubits touched by at least one gate."""
        return sorted({q for gate in self.gates for q in gate.qubits})

    def measured_qubits(self) -> list[int]:
        return sorted({gate.qubits[0] for gate in self.gates if gate.type == "measure"})


# =============================================================================
# Provider model
# =============================================================================


class Topology(BaseModel):
    """Undirected connectivity graph of a provider's physical qubits."""

    model_config = ConfigDict(frozen=True)

    kind: TopologyKind
    qubit_count: int = Field(gt=0)
    edges: frozenset[tuple[int, int]] = frozenset()

    _distances: dict[int, dict[int, int]] = PrivateAttr(default_factory=dict)

    @field_validator("edges")
    @classmethod
    def _normalize_edges(
        cls, value: frozenset[tuple[int, int]]
    ) -> frozenset[tuple[int, int]]:
        normalized = set()
        for a, b in value:
            if a == b:
                message = f"self-loop edge ({a}, {b}) is not allowed"
                raise ValueError(message)
            normalized.add((min(a, b), max(a, b)))
        return frozenset(normalized)

    @property
    def is_fully_connected(self) -> bool:
        return self.kind == TopologyKind.FULL

    @cached_property
    def adjacency(self) -> dict[int, frozenset[int]]:
        neighbors: dict[int, set[int]] = {}
        for a, b in self.edges:
            neighbors.setdefault(a, set()).add(b)
            neighbors.setdefault(b, set()).add(a)
        return {q: frozenset(n) for q, n in neighbors.items()}

    def neighbors(self, qubit: int) -> frozenset[int]:
        if self.is_fully_connected:
            return frozenset(range(self.qubit_count)) - {qubit}
        return self.adjacency.get(qubit, frozenset())

    def degree(self, qubit: int) -> int:
        if self.is_fully_connected:
            return self.qubit_count - 1
        return len(self.adjacency.get(qubit, ()))

    def are_adjacent(self, a: int, b: int) -> bool:
        if self.is_fully_connected:
            return a != b
        return b in self.adjacency.get(a, ())

    def distances_from(self, source: int) -> dict[int, int]:
        """Breadth-first hop distances from `source` to every reachable qubit."""
        cached = self._distances.get(source)
        if cached is not None:
            return cached
        distances = {source: 0}
        frontier = deque([source])
        while frontier:
            current = frontier.popleft()
            for nxt in self.neighbors(current):
                if nxt not in distances:
                    distances[nxt] = distances[current] + 1
                    frontier.append(nxt)
        self._distances[source] = distances
        return distances

    def distance(self, a: int, b: int) -> int:
        """Hop distance; unreachable pairs count as `qubit_count` hops."""
        if a == b:
            return 0
        if self.is_fully_connected:
            return 1
        return self.distances_from(a).get(b, self.qubit_count)


class ResourceLimits(BaseModel):
    """Per-provider admission caps."""

    model_config = ConfigDict(frozen=True)

    max_concurrent_jobs: int = Field(gt=0)
    max_qubits: int = Field(gt=0)
    max_circuit_depth: int = Field(gt=0)
    max_jobs_per_hour: int = Field(gt=0)
    max_wait_time: float = Field(gt=0, description="seconds")


class ProviderCapability(BaseModel):
    """Static description of one execution provider.

    Durations and coherence times are in microseconds, costs in currency
    units.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    qubit_count: int = Field(gt=0)
    gate_set: frozenset[str]
    topology: Topology
    gate_fidelity: dict[str, float]
    gate_duration: dict[str, float]
    cost_table: dict[str, float]
    coherence_t1: float = Field(gt=0)
    coherence_t2: float = Field(gt=0)
    error_correction_level: ErrorCorrectionLevel
    crosstalk_rate: float = Field(default=0.0, ge=0, lt=1)
    readout_error: float = Field(default=0.0, ge=0, lt=1)
    error_threshold: float = Field(default=0.05, gt=0, le=1)
    measurement_duration: float = Field(default=0.0, ge=0)
    measurement_cost: float = Field(default=0.0, ge=0)
    setup_cost: float = Field(default=0.0, ge=0)
    cost_per_second: float = Field(default=0.0, ge=0)
    limits: ResourceLimits

    @field_validator("gate_fidelity")
    @classmethod
    def _check_fidelity(cls, value: dict[str, float]) -> dict[str, float]:
        for gate_type, fidelity in value.items():
            if not 0 < fidelity <= 1:
                message = f"fidelity of {gate_type!r} must be in (0, 1], got {fidelity}"
                raise ValueError(message)
        return value

    def supports(self, gate_type: str) -> bool:
        """Whether the gate type is native (measurement is always native)."""
        return gate_type == "measure" or gate_type in self.gate_set

    def fidelity_of(self, gate: Gate) -> float:
        if gate.type == "measure":
            return 1.0 - self.readout_error
        return self._lookup(self.gate_fidelity, gate, min)

    def error_rate_of(self, gate: Gate) -> float:
        return 1.0 - self.fidelity_of(gate)

    def duration_of(self, gate: Gate) -> float:
        if gate.type == "measure":
            return self.measurement_duration
        return self._lookup(self.gate_duration, gate, max)

    def cost_of(self, gate: Gate) -> float:
        if gate.type == "measure":
            return self.measurement_cost
        return self._lookup(self.cost_table, gate, max)

    @staticmethod
    def _lookup(table: dict[str, float], gate: Gate, fallback: Any) -> float:  # noqa: ANN401
        if gate.type in table:
            return table[gate.type]
        reference = _REFERENCE_GATES.get(gate.arity)
        if reference in table:
            return table[reference]
        return fallback(table.values()) if table else 0.0


# =============================================================================
# Optimization and estimation results
# =============================================================================


class StageImpact(BaseModel):
    """Effect of one optimizer stage on the circuit."""

    model_config = ConfigDict(frozen=True)

    stage: str
    gates_before: int
    gates_after: int
    depth_before: int
    depth_after: int
    fidelity_before: float
    fidelity_after: float
    cost_before: float
    cost_after: float
    fidelity_credit: float = 0.0
    detail: dict[str, Any] = Field(default_factory=dict)


class ImpactMetrics(BaseModel):
    """Aggregate impact relative to the original circuit, in percent."""

    model_config = ConfigDict(frozen=True)

    gate_reduction_pct: float = 0.0
    depth_reduction_pct: float = 0.0
    fidelity_improvement_pct: float = 0.0
    cost_savings_pct: float = 0.0


class OptimizationResult(BaseModel):
    """Outcome of one optimizer invocation."""

    model_config = ConfigDict(frozen=True)

    original_circuit: Circuit
    optimized_circuit: Circuit
    provider: str
    algorithm_name: str
    impact: ImpactMetrics
    stage_impacts: tuple[StageImpact, ...] = ()
    trace: tuple[str, ...] = ()
    layout: dict[int, int] = Field(default_factory=dict)


class OptimizationRecommendation(BaseModel):
    """A stage worth enabling for a circuit, with its expected gain."""

    model_config = ConfigDict(frozen=True)

    stage: str
    priority: Priority
    reason: str
    estimated_gate_reduction_pct: float = 0.0


class FidelityEstimate(BaseModel):
    """Estimated closeness to noiseless execution.

    `overall_fidelity == exp(-total_error)` and `overall_fidelity` equals the
    mean per-gate fidelity times the mean per-qubit fidelity.
    """

    model_config = ConfigDict(frozen=True)

    overall_fidelity: float = Field(gt=0, le=1)
    per_gate_fidelity: dict[str, float]
    per_qubit_fidelity: dict[int, float]
    gate_error: float
    decoherence_error: float
    crosstalk_error: float
    readout_error: float
    total_error: float
    error_probability: float


class CircuitAnalysis(BaseModel):
    """Structural and timing summary of a circuit on a provider."""

    model_config = ConfigDict(frozen=True)

    provider: str
    qubit_count: int
    gate_count: int
    multi_qubit_gate_count: int
    gate_counts: dict[str, int]
    depth: int
    estimated_runtime: float = Field(description="microseconds")
    critical_path_length: float = Field(description="microseconds")
    parallelizable_gates: int
    non_native_gates: int
    non_adjacent_gates: int


class MitigationStrategy(BaseModel):
    """A recommended error-mitigation technique."""

    model_config = ConfigDict(frozen=True)

    technique: str
    fidelity_improvement_estimate: float
    overhead_multiplier: float
    applicability_conditions: tuple[str, ...] = ()


class ProviderSuggestion(BaseModel):
    """One entry of a provider ranking."""

    model_config = ConfigDict(frozen=True)

    provider: str
    fidelity: float
    runtime: float = Field(description="microseconds")
    cost: float
    suitability: str
    reasons: tuple[str, ...] = ()


# =============================================================================
# Errors
# =============================================================================


class ErrorDetails(BaseModel):
    """Classified error. Never mutated; recovery builds a new instance."""

    model_config = ConfigDict(frozen=True)

    code: str
    kind: ErrorKind
    severity: Severity
    message: str
    recoverable: bool
    suggested_actions: tuple[str, ...] = ()
    provider: str | None = None
    job_id: str | None = None
    operation: str | None = None
    retry_count: int = 0
    timestamp: datetime = Field(default_factory=utcnow)

    def evolve(self, **changes: Any) -> "ErrorDetails":  # noqa: ANN401
        """Return a validated copy with the given fields replaced."""
        return ErrorDetails.model_validate({**self.model_dump(), **changes})


class ErrorStatistics(BaseModel):
    """Aggregate view over the error ledger."""

    total: int
    by_kind: dict[str, int]
    by_provider: dict[str, int]
    by_severity: dict[str, int]
    recoverable_ratio: float


# =============================================================================
# Jobs and batches
# =============================================================================


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.QUEUED, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.QUEUED: frozenset(
        {JobStatus.OPTIMIZING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.OPTIMIZING: frozenset(
        {JobStatus.SUBMITTED, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.SUBMITTED: frozenset(
        {JobStatus.RUNNING, JobStatus.RETRYING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.RETRYING, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.RETRYING: frozenset(
        {JobStatus.SUBMITTED, JobStatus.CANCELLED, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobDependency(BaseModel):
    """Edge from a job to a job it waits for."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    kind: DependencyKind = DependencyKind.DATA
    optional: bool = False
    max_wait_time: float | None = Field(default=None, gt=0, le=600)


class JobResult(BaseModel):
    """Simulated execution output."""

    backend_job_id: str
    shots: int
    counts: dict[str, int]
    execution_time: float = Field(description="seconds")


class Job(BaseModel):
    """A circuit bound to a provider, tracked through the job lifecycle."""

    job_id: str = Field(default_factory=lambda: new_id("job"))
    name: str | None = None
    circuit: Circuit
    provider: str
    priority: Priority = Priority.MEDIUM
    owner: str = "default"
    shots: int = Field(default=1024, gt=0)
    dependencies: list[JobDependency] = Field(default_factory=list)
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    error: ErrorDetails | None = None
    batch_id: str | None = None
    sequence: int = 0
    optimization: OptimizationResult | None = None
    fidelity: FidelityEstimate | None = None
    result: JobResult | None = None
    created_at: datetime = Field(default_factory=utcnow)
    queued_at: datetime | None = None
    submitted_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, status: JobStatus) -> bool:
        return status in _ALLOWED_TRANSITIONS[self.status]

    def transition_to(
        self,
        status: JobStatus,
        *,
        error: ErrorDetails | None = None,
    ) -> None:
        """Move the job to `status`.

        Args:
            status: The target state.
            error: Error details to attach (failed transitions).

        Raises:
            InvalidTransitionError: If the job is terminal or the lifecycle
                does not permit the move.

        """
        if self.status.is_terminal:
            message = (
                f"job {self.job_id} is already {self.status}; "
                f"cannot move to {status}"
            )
            raise InvalidTransitionError(message)
        if not self.can_transition_to(status):
            message = f"job {self.job_id} cannot move from {self.status} to {status}"
            raise InvalidTransitionError(message)

        now = utcnow()
        self.status = status
        if error is not None:
            self.error = error
        if status == JobStatus.QUEUED:
            self.queued_at = now
        elif status == JobStatus.SUBMITTED and self.submitted_at is None:
            self.submitted_at = now
        elif status == JobStatus.RUNNING:
            self.started_at = now
        elif status.is_terminal:
            self.ended_at = now

    def record_retry(self) -> None:
        """Count one more retry attempt."""
        if self.status.is_terminal:
            message = f"job {self.job_id} is {self.status}; retries are not allowed"
            raise InvalidTransitionError(message)
        self.retry_count += 1


class ResourceUsage(BaseModel):
    """Modeled resource footprint of a batch."""

    memory_mb: float = 0.0
    gate_operations: int = 0
    qubit_hours: float = 0.0
    data_transfer_mb: float = 0.0
    runtime_seconds: float = 0.0


class BatchMetrics(BaseModel):
    """Rollup metrics over a batch's member jobs.

    The estimates are fixed when the batch is created. The outcome counts
    follow the members as they finish; `average_execution_time` and
    `actual_resource_usage` cover completed members and are filled in once
    the whole batch is terminal.
    """

    total_jobs: int
    total_gates: int
    average_complexity: float
    estimated_cost: float
    estimated_time: float = Field(description="seconds")
    total_parameters: int = 0
    average_depth: float = 0.0
    priority: float = 0.0
    merge_conflicts: int = 0
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    completed_jobs: int = 0
    failed_jobs: int = 0
    average_execution_time: float | None = Field(default=None, description="seconds")
    actual_resource_usage: ResourceUsage | None = None


class BatchJob(BaseModel):
    """A group of jobs scheduled together under one strategy."""

    batch_id: str = Field(default_factory=lambda: new_id("batch"))
    name: str | None = None
    strategy: str
    job_ids: list[str]
    status: JobStatus = JobStatus.PENDING
    optimal_provider: str
    merged_circuit: Circuit
    metrics: BatchMetrics
    created_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    jobs: list[Job] = Field(default_factory=list)
