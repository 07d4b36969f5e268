"""Batch-level aggregates: complexity, resource usage, merged view and status."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from qbatch_engine.framework import Circuit, JobStatus, ResourceUsage

if TYPE_CHECKING:
    from collections.abc import Sequence

    from qbatch_engine.framework import Job

MEMORY_MB_PER_QUBIT = 50.0
MEMORY_MB_PER_GATE = 10.0
TRANSFER_BYTES_PER_GATE = 100.0
SECONDS_PER_HOUR = 3600.0

# A member this large that also waits on other jobs raises the batch priority.
HEAVY_JOB_QUBITS = 10
HEAVY_JOB_DEPTH = 50
HEAVY_JOB_BONUS = 2.0
REQUIRED_DEPENDENCY_BONUS = 3.0

# Non-terminal states from least to most advanced.
_PROGRESS = (
    JobStatus.PENDING,
    JobStatus.QUEUED,
    JobStatus.OPTIMIZING,
    JobStatus.SUBMITTED,
    JobStatus.RETRYING,
    JobStatus.RUNNING,
)


def circuit_complexity(circuit: Circuit) -> float:
    """Unit-less complexity score, 1 for a trivial circuit."""
    return (
        1.0
        + 0.1 * circuit.parameter_count()
        + math.log2(max(1.0, circuit.depth() / 10))
        + math.log2(max(1.0, circuit.qubit_count / 2))
    )


def resource_usage(circuits: Sequence[Circuit], runtimes: Sequence[float]) -> ResourceUsage:
    """Modeled footprint of running the circuits.

    Args:
        circuits: Member circuits.
        runtimes: Runtime of each circuit in seconds.

    """
    return ResourceUsage(
        memory_mb=sum(
            c.qubit_count * MEMORY_MB_PER_QUBIT + c.gate_count * MEMORY_MB_PER_GATE
            for c in circuits
        ),
        gate_operations=sum(c.gate_count for c in circuits),
        qubit_hours=sum(
            c.qubit_count * runtime / SECONDS_PER_HOUR
            for c, runtime in zip(circuits, runtimes, strict=True)
        ),
        data_transfer_mb=sum(c.gate_count * TRANSFER_BYTES_PER_GATE / 1e6 for c in circuits),
        runtime_seconds=sum(runtimes),
    )


def batch_priority(jobs: Sequence[Job]) -> float:
    """Mean member priority weight plus a bonus for constrained batches.

    A member with dependencies that needs more than `HEAVY_JOB_QUBITS`
    qubits and more than `HEAVY_JOB_DEPTH` layers adds `HEAVY_JOB_BONUS`.
    Otherwise any required dependency adds `REQUIRED_DEPENDENCY_BONUS`.
    """
    if not jobs:
        return 0.0
    priority = sum(job.priority.weight for job in jobs) / len(jobs)
    if any(
        job.dependencies
        and job.circuit.qubit_count > HEAVY_JOB_QUBITS
        and job.circuit.depth() > HEAVY_JOB_DEPTH
        for job in jobs
    ):
        return priority + HEAVY_JOB_BONUS
    if any(not dep.optional for job in jobs for dep in job.dependencies):
        return priority + REQUIRED_DEPENDENCY_BONUS
    return priority


def actual_resource_usage(jobs: Sequence[Job]) -> ResourceUsage | None:
    """Footprint of the completed jobs, measured on the circuits that ran.

    Returns:
        None when no job completed.

    """
    done = [job for job in jobs if job.status == JobStatus.COMPLETED and job.result]
    if not done:
        return None
    circuits = [
        job.optimization.optimized_circuit if job.optimization else job.circuit
        for job in done
    ]
    return resource_usage(circuits, [job.result.execution_time for job in done])


def average_execution_time(jobs: Sequence[Job]) -> float | None:
    times = [
        job.result.execution_time
        for job in jobs
        if job.status == JobStatus.COMPLETED and job.result
    ]
    return sum(times) / len(times) if times else None


def merge_circuits(circuits: Sequence[Circuit], width: int) -> tuple[Circuit, int]:
    """Lay circuits side by side on a register of `width` qubits.

    Each circuit gets the next free offset; when it would overflow the
    register the offset wraps to 0. A slot claimed by several circuits goes
    to the circuit whose local qubit index on it is higher (the earlier
    circuit on a tie). Gates touching a slot their circuit does not own are
    dropped.

    Returns:
        The merged circuit and the number of dropped gates.

    """
    offsets = []
    offset = 0
    for circuit in circuits:
        if offset + circuit.qubit_count > width:
            offset = 0
        offsets.append(offset)
        offset += circuit.qubit_count

    owner: dict[int, tuple[int, int]] = {}
    for index, (circuit, base) in enumerate(zip(circuits, offsets, strict=True)):
        for local in range(circuit.qubit_count):
            slot = (base + local) % width
            current = owner.get(slot)
            if current is None or local > current[0]:
                owner[slot] = (local, index)

    gates = []
    conflicts = 0
    for index, (circuit, base) in enumerate(zip(circuits, offsets, strict=True)):
        for gate in circuit.gates:
            slots = tuple((base + q) % width for q in gate.qubits)
            if len(set(slots)) != len(slots) or any(owner[s][1] != index for s in slots):
                conflicts += 1
                continue
            gates.append(gate.on(*slots))

    used = max(owner, default=0) + 1
    return Circuit(qubit_count=used, gates=tuple(gates)), conflicts


def rollup_status(statuses: Sequence[JobStatus]) -> JobStatus:
    """Batch status derived from its members' statuses."""
    if not statuses:
        return JobStatus.PENDING
    if all(s.is_terminal for s in statuses):
        if JobStatus.FAILED in statuses:
            return JobStatus.FAILED
        if JobStatus.CANCELLED in statuses:
            return JobStatus.CANCELLED
        return JobStatus.COMPLETED

    active = [s for s in statuses if not s.is_terminal]
    status = max(active, key=_PROGRESS.index)
    if len(active) < len(statuses):
        status = max(status, JobStatus.RUNNING, key=_PROGRESS.index)
    return status
