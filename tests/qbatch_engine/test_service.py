import asyncio

import pytest

from qbatch_engine.backends import SimulatedBackend
from qbatch_engine.framework import (
    AuthenticationError,
    ErrorKind,
    ExecutionTimeoutError,
    InvalidTransitionError,
    JobStatus,
    ValidationError,
)
from qbatch_engine.noise import NoiseEstimator
from qbatch_engine.optimizer import CircuitOptimizer
from qbatch_engine.providers import GOOGLE_WILLOW, IBM_CONDOR, default_registry
from qbatch_engine.service import QuantumWorkloadService, to_job

BELL_QASM = """
OPENQASM 2.0;
include "qelib1.inc";
qreg q[2];
creg c[2];
h q[0];
cx q[0],q[1];
measure q[0] -> c[0];
measure q[1] -> c[1];
"""

BELL = {
    "qubit_count": 2,
    "gates": [
        {"type": "h", "qubits": [0]},
        {"type": "cx", "qubits": [0, 1]},
        {"type": "measure", "qubits": [0]},
        {"type": "measure", "qubits": [1]},
    ],
}

FAST = {"time_scale": 0, "seed": 1, "poll_interval": 0.01}

# ------------------------------------------------------------
# Test doubles and helpers
# ------------------------------------------------------------


class FailingBackend(SimulatedBackend):
    """Raises `error` from `run` for the first `failures` attempts of each job."""

    def __init__(self, error: Exception, failures: int):
        super().__init__(time_scale=0, seed=1)
        self.error = error
        self.failures = failures
        self.runs: dict[str, int] = {}
        self.submitted_at: dict[str, list] = {}

    async def submit(self, job, circuit, provider):
        self.submitted_at.setdefault(job.job_id, []).append(job.submitted_at)
        return await super().submit(job, circuit, provider)

    async def run(self, backend_job_id, job, circuit, provider):
        self.runs[job.job_id] = self.runs.get(job.job_id, 0) + 1
        if self.runs[job.job_id] <= self.failures:
            raise self.error
        return await super().run(backend_job_id, job, circuit, provider)


class SelectiveBackend(SimulatedBackend):
    """Rejects jobs named `doomed` and parks jobs named `slow` until released."""

    def __init__(self):
        super().__init__(time_scale=0, seed=1)
        self.release = asyncio.Event()
        self.submitted: list[str] = []

    async def submit(self, job, circuit, provider):
        if job.name == "doomed":
            message = "credentials expired"
            raise AuthenticationError(message)
        self.submitted.append(job.name)
        return await super().submit(job, circuit, provider)

    async def run(self, backend_job_id, job, circuit, provider):
        if job.name == "slow":
            await self.release.wait()
        return await super().run(backend_job_id, job, circuit, provider)


class SpyOptimizer(CircuitOptimizer):
    """Records the jobs it is asked to optimize."""

    def __init__(self):
        registry = default_registry()
        super().__init__(registry, NoiseEstimator(registry))
        self.calls: list[int] = []

    def optimize(self, circuit, provider_name, stages=None):
        self.calls.append(circuit.gate_count)
        return super().optimize(circuit, provider_name, stages)


def job(name: str, provider: str = GOOGLE_WILLOW, **fields) -> dict:
    return {"job_id": name, "name": name, "circuit": BELL, "provider": provider, **fields}


def engine_config(**ready_buffer) -> dict:
    nodes = {
        "job_status_step": "qbatch_engine.steps.JobStatusStep",
        "optimize_step": "qbatch_engine.steps.OptimizeStep",
        "estimate_step": "qbatch_engine.steps.EstimateStep",
        "execute_step": "qbatch_engine.steps.ExecuteStep",
        "recovery_exception_handler": "qbatch_engine.handlers.RecoveryExceptionHandler",
    }
    return {
        "engine": {"time_scale": 0, "seed": 1, "buffer_concurrency": 3, "poll_interval": 0.02},
        "pipeline_executor": {
            "pipeline": [
                "job_status_step",
                "ready_buffer",
                "optimize_step",
                "estimate_step",
                "execute_step",
            ],
            "exception_handler": "recovery_exception_handler",
        },
        "ready_buffer": {"_target_": "qbatch_engine.buffers.ScoredBuffer", **ready_buffer},
        **{name: {"_target_": target} for name, target in nodes.items()},
    }


async def wait_for_status(service, job_id, status, timeout=2.0):
    async with asyncio.timeout(timeout):
        while service.get_job(job_id).status != status:
            await asyncio.sleep(0.005)


# ------------------------------------------------------------
# Circuit operations
# ------------------------------------------------------------


def test_circuit_operations_accept_qasm_text():
    service = QuantumWorkloadService.create(FAST)

    result = service.optimize_circuit(BELL_QASM, IBM_CONDOR)
    estimate = service.estimate_fidelity(BELL_QASM, GOOGLE_WILLOW)
    suggestions = service.suggest_provider(BELL_QASM)

    assert {g.type for g in result.optimized_circuit.gates} <= {"x", "sx", "rz", "cx", "measure"}
    assert 0 < estimate.overall_fidelity <= 1
    assert len(suggestions) == 3


def test_analyze_circuit_from_qasm_text():
    analysis = QuantumWorkloadService.create(FAST).analyze_circuit(BELL_QASM, IBM_CONDOR)

    assert analysis.provider == IBM_CONDOR
    assert analysis.qubit_count == 2
    assert analysis.multi_qubit_gate_count == 1
    assert analysis.gate_counts["cx"] == 1


def test_create_batch_validates_without_scheduling():
    service = QuantumWorkloadService.create(FAST)
    jobs = [to_job(job("a")), to_job(job("b"))]

    batch = service.scheduler.create_batch(jobs, "FIFO", name="dry-run")

    assert batch.strategy == "fifo"
    assert batch.job_ids == ["a", "b"]
    assert batch.metrics.total_jobs == 2
    assert batch.merged_circuit.qubit_count == 4
    assert batch.metrics.merge_conflicts == 0
    assert not service.gctx.job_repository.has_job("a")


@pytest.mark.parametrize(
    "operation", ["estimate_fidelity", "analyze_circuit", "recommend_mitigations"]
)
def test_circuit_operations_reject_circuits_the_provider_cannot_run(operation):
    service = QuantumWorkloadService.create(FAST)
    wide = {"qubit_count": 2000, "gates": [{"type": "x", "qubits": [1999]}]}

    with pytest.raises(ValidationError) as info:
        getattr(service, operation)(wide, GOOGLE_WILLOW)

    assert info.value.code == "QUBIT_LIMIT_EXCEEDED"


def test_malformed_qasm_parameters_are_validation_errors():
    service = QuantumWorkloadService.create(FAST)

    with pytest.raises(ValidationError) as info:
        service.optimize_circuit("qreg q[1];\nrx(1/0) q[0];", GOOGLE_WILLOW)

    assert info.value.code == "QASM_PARSE_ERROR"


def test_invalid_settings_are_rejected():
    with pytest.raises(ValidationError) as info:
        QuantumWorkloadService.create({"time_scale": -1})

    assert info.value.code == "INVALID_INPUT"


# ------------------------------------------------------------
# Batch execution
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_batch_runs_to_completion():
    async with QuantumWorkloadService.create(FAST) as service:
        batch_id = await service.submit_batch(
            [job("a", shots=200), job("b", provider=IBM_CONDOR, shots=100)],
            strategy_name="priority",
            name="bells",
        )
        batch = await service.wait_for_batch(batch_id, timeout=5)

    assert batch.status == JobStatus.COMPLETED
    assert batch.name == "bells"
    assert batch.ended_at is not None
    assert batch.metrics.total_jobs == 2
    assert batch.metrics.estimated_cost > 0
    assert batch.metrics.total_parameters == 0
    assert batch.metrics.average_depth == to_job(job("x")).circuit.depth()
    assert batch.metrics.priority == 2.0
    assert batch.metrics.completed_jobs == 2
    assert batch.metrics.failed_jobs == 0
    assert batch.metrics.average_execution_time is not None
    assert batch.metrics.actual_resource_usage.gate_operations > 0
    for member in batch.jobs:
        assert member.status == JobStatus.COMPLETED
        assert sum(member.result.counts.values()) == member.shots
        assert set(member.result.counts) <= {"00", "11"}
        assert member.optimization is not None
        assert member.fidelity is not None
        assert member.queued_at <= member.submitted_at <= member.ended_at


@pytest.mark.asyncio
async def test_provider_names_are_stored_as_registered():
    async with QuantumWorkloadService.create(FAST) as service:
        batch_id = await service.submit_batch([job("a", provider=" Google-Willow")])
        await service.wait_for_batch(batch_id, timeout=5)

    assert service.get_job("a").provider == GOOGLE_WILLOW
    assert service.gctx.resource_tracker.usage(GOOGLE_WILLOW).running_jobs == 0


@pytest.mark.asyncio
async def test_dependent_job_starts_after_its_dependency():
    async with QuantumWorkloadService.create(FAST) as service:
        batch_id = await service.submit_batch(
            [job("second", dependencies=[{"job_id": "first"}]), job("first")],
            strategy_name="dependency-aware",
        )
        await service.wait_for_batch(batch_id, timeout=5)
        first, second = service.get_job("first"), service.get_job("second")

    assert second.status == JobStatus.COMPLETED
    assert second.queued_at >= first.ended_at


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    backend = FailingBackend(ExecutionTimeoutError("no answer"), failures=2)

    async with QuantumWorkloadService.create(FAST, backend=backend) as service:
        batch_id = await service.submit_batch([job("a")])
        batch = await service.wait_for_batch(batch_id, timeout=5)

    (member,) = batch.jobs
    assert member.status == JobStatus.COMPLETED
    assert member.retry_count == 2
    assert backend.runs["a"] == 3
    # Every resubmission keeps the time of the first submission.
    assert member.submitted_at is not None
    assert backend.submitted_at["a"] == [member.submitted_at] * 3
    assert service.error_statistics().total == 2


@pytest.mark.asyncio
async def test_retries_are_exhausted():
    backend = FailingBackend(ExecutionTimeoutError("no answer"), failures=10)

    async with QuantumWorkloadService.create(FAST, backend=backend) as service:
        batch_id = await service.submit_batch([job("a")])
        batch = await service.wait_for_batch(batch_id, timeout=5)

    (member,) = batch.jobs
    assert batch.status == JobStatus.FAILED
    assert member.status == JobStatus.FAILED
    assert member.retry_count == 3
    assert member.error.kind == ErrorKind.TIMEOUT
    assert member.error.code == "RETRIES_EXHAUSTED"
    assert batch.metrics.failed_jobs == 1
    assert batch.metrics.actual_resource_usage is None
    assert backend.runs["a"] == 4
    assert service.recent_errors(1)[0].job_id == "a"


@pytest.mark.asyncio
async def test_failed_dependency_fails_its_dependents():
    backend = SelectiveBackend()

    async with QuantumWorkloadService.create(FAST, backend=backend) as service:
        batch_id = await service.submit_batch(
            [
                job("doomed"),
                job("child", dependencies=[{"job_id": "doomed"}]),
                job("grandchild", dependencies=[{"job_id": "child"}]),
                job("bystander", dependencies=[{"job_id": "doomed", "optional": True}]),
            ]
        )
        batch = await service.wait_for_batch(batch_id, timeout=5)

    statuses = {j.job_id: j for j in batch.jobs}
    assert statuses["doomed"].error.code == "AUTHENTICATION_FAILED"
    assert statuses["child"].error.code == "DEPENDENCY_FAILED"
    assert statuses["child"].error.kind == ErrorKind.EXECUTION
    assert statuses["grandchild"].status == JobStatus.FAILED
    assert statuses["bystander"].status == JobStatus.COMPLETED
    assert batch.status == JobStatus.FAILED
    assert backend.submitted == ["bystander"]


@pytest.mark.asyncio
async def test_cancel_batch_stops_running_and_waiting_jobs():
    backend = SelectiveBackend()

    async with QuantumWorkloadService.create(FAST, backend=backend) as service:
        batch_id = await service.submit_batch(
            [job("slow"), job("after", dependencies=[{"job_id": "slow"}])]
        )
        await wait_for_status(service, "slow", JobStatus.RUNNING)

        assert await service.cancel_batch(batch_id) is True
        batch = service.get_batch_status(batch_id)

        with pytest.raises(InvalidTransitionError):
            await service.cancel_batch(batch_id)
        with pytest.raises(InvalidTransitionError):
            await service.cancel_job("slow")

    assert batch.status == JobStatus.CANCELLED
    assert [j.status for j in batch.jobs] == [JobStatus.CANCELLED, JobStatus.CANCELLED]
    assert backend.submitted == ["slow"]
    assert service.gctx.resource_tracker.usage(GOOGLE_WILLOW).running_jobs == 0


@pytest.mark.asyncio
async def test_cancel_right_after_submit_skips_optimization():
    optimizer = SpyOptimizer()

    async with QuantumWorkloadService.create(FAST, optimizer=optimizer) as service:
        batch_id = await service.submit_batch(
            [job("a"), job("b"), job("c", dependencies=[{"job_id": "a"}])]
        )
        assert await service.cancel_batch(batch_id) is True
        await asyncio.sleep(0.05)
        batch = service.get_batch_status(batch_id)

    assert optimizer.calls == []
    assert batch.status == JobStatus.CANCELLED
    assert all(j.status == JobStatus.CANCELLED for j in batch.jobs)
    assert all(j.optimization is None for j in batch.jobs)


@pytest.mark.asyncio
async def test_cancelled_job_dependents_are_never_optimized():
    backend = SelectiveBackend()
    optimizer = SpyOptimizer()

    async with QuantumWorkloadService.create(
        FAST, backend=backend, optimizer=optimizer
    ) as service:
        batch_id = await service.submit_batch(
            [
                job("slow"),
                job("after", dependencies=[{"job_id": "slow"}]),
                job("last", dependencies=[{"job_id": "after"}]),
            ]
        )
        await wait_for_status(service, "slow", JobStatus.RUNNING)
        await service.cancel_job("slow")
        batch = await service.wait_for_batch(batch_id, timeout=2)

    assert len(optimizer.calls) == 1
    assert batch.status == JobStatus.FAILED
    statuses = {j.job_id: j.status for j in batch.jobs}
    assert statuses == {
        "slow": JobStatus.CANCELLED,
        "after": JobStatus.FAILED,
        "last": JobStatus.FAILED,
    }


# ------------------------------------------------------------
# Rejected batches
# ------------------------------------------------------------


@pytest.mark.parametrize(
    ("jobs", "strategy", "code"),
    [
        ([], None, "EMPTY_BATCH"),
        ([job("a")], "round-robin", "UNKNOWN_STRATEGY"),
        ([job("a"), job("a")], None, "DUPLICATE_JOB_ID"),
        ([job("a", shots=0)], None, "INVALID_INPUT"),
        ([job("a", provider="rigetti")], None, "PROVIDER_NOT_FOUND"),
        ([job("a", dependencies=[{"job_id": "ghost"}])], None, "UNKNOWN_DEPENDENCY"),
        (
            [
                job("a", dependencies=[{"job_id": "b"}]),
                job("b", dependencies=[{"job_id": "a"}]),
            ],
            None,
            "CIRCULAR_DEPENDENCY",
        ),
        (
            [
                {
                    "circuit": {"qubit_count": 2000, "gates": [{"type": "x", "qubits": [1999]}]},
                    "provider": GOOGLE_WILLOW,
                }
            ],
            None,
            "QUBIT_LIMIT_EXCEEDED",
        ),
    ],
)
@pytest.mark.asyncio
async def test_invalid_batches_are_rejected(jobs, strategy, code):
    service = QuantumWorkloadService.create(FAST)

    with pytest.raises(ValidationError) as info:
        await service.submit_batch(jobs, strategy_name=strategy)

    assert info.value.code == code
    assert service.gctx.job_repository.has_job("a") is False


# ------------------------------------------------------------
# Configuration
# ------------------------------------------------------------


def test_buffer_takes_engine_settings_from_config():
    service = QuantumWorkloadService.from_config(engine_config())

    (buffer,) = service.scheduler.executor.buffers()
    assert buffer.max_concurrency == 3
    assert buffer.poll_interval == 0.02


def test_buffer_settings_in_its_own_entry_win():
    service = QuantumWorkloadService.from_config(engine_config(max_concurrency=1))

    (buffer,) = service.scheduler.executor.buffers()
    assert buffer.max_concurrency == 1
    assert buffer.poll_interval == 0.02


@pytest.mark.asyncio
async def test_configured_service_runs_a_batch():
    async with QuantumWorkloadService.from_config(engine_config()) as service:
        batch_id = await service.submit_batch([job("a"), job("b")])
        batch = await service.wait_for_batch(batch_id, timeout=5)

    assert batch.status == JobStatus.COMPLETED
    assert service.settings.buffer_concurrency == 3
