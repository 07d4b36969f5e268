import pytest

from qbatch_engine.framework import Circuit, Gate, Job, JobDependency, JobResult, JobStatus
from qbatch_engine.scheduler import (
    actual_resource_usage,
    average_execution_time,
    batch_priority,
    circuit_complexity,
    merge_circuits,
    resource_usage,
    rollup_status,
)

S = JobStatus


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([], S.PENDING),
        ([S.COMPLETED, S.COMPLETED], S.COMPLETED),
        ([S.COMPLETED, S.FAILED, S.CANCELLED], S.FAILED),
        ([S.COMPLETED, S.CANCELLED], S.CANCELLED),
        ([S.PENDING, S.QUEUED], S.QUEUED),
        ([S.SUBMITTED, S.RETRYING, S.OPTIMIZING], S.RETRYING),
        ([S.RETRYING, S.RUNNING], S.RUNNING),
        ([S.COMPLETED, S.PENDING], S.RUNNING),
        ([S.FAILED, S.QUEUED], S.RUNNING),
    ],
)
def test_rollup_status(statuses, expected):
    assert rollup_status(statuses) == expected


def test_trivial_circuit_has_unit_complexity():
    assert circuit_complexity(Circuit(qubit_count=1)) == 1.0


def test_complexity_grows_with_parameters_depth_and_width():
    circuit = Circuit(
        qubit_count=8,
        gates=(Gate.of("rz", 0, params=(0.1,)), Gate.of("rx", 0, params=(0.2,)))
        + (Gate.of("x", 0),) * 38,
    )

    assert circuit_complexity(circuit) == pytest.approx(1 + 0.2 + 2 + 2)


def test_resource_usage_sums_members():
    small = Circuit(qubit_count=2, gates=(Gate.of("h", 0), Gate.of("cx", 0, 1)))
    large = Circuit(qubit_count=4, gates=(Gate.of("x", 3),))

    usage = resource_usage([small, large], [1.0, 3600.0])

    assert usage.memory_mb == pytest.approx(2 * 50 + 2 * 10 + 4 * 50 + 1 * 10)
    assert usage.gate_operations == 3
    assert usage.qubit_hours == pytest.approx(2 / 3600 + 4)
    assert usage.data_transfer_mb == pytest.approx(3 * 100 / 1e6)
    assert usage.runtime_seconds == pytest.approx(3601.0)


def test_merge_lays_circuits_side_by_side():
    bell = Circuit(qubit_count=2, gates=(Gate.of("h", 0), Gate.of("cx", 0, 1)))

    merged, conflicts = merge_circuits([bell, bell], width=4)

    assert conflicts == 0
    assert merged.qubit_count == 4
    assert [g.qubits for g in merged.gates] == [(0,), (0, 1), (2,), (2, 3)]


def test_merge_wraps_and_drops_gates_on_taken_slots():
    bell = Circuit(qubit_count=2, gates=(Gate.of("h", 0), Gate.of("cx", 0, 1)))
    flip = Circuit(qubit_count=2, gates=(Gate.of("x", 1),))

    merged, conflicts = merge_circuits([bell, bell, flip], width=4)

    # The third circuit wraps to offset 0, where the first one owns both slots.
    assert conflicts == 1
    assert merged.gate_count == 4


# ------------------------------------------------------------
# Batch priority and outcome metrics
# ------------------------------------------------------------


def member(priority="medium", qubits=2, depth=1, requires=(), optional=(), **fields) -> Job:
    dependencies = [JobDependency(job_id=d) for d in requires]
    dependencies += [JobDependency(job_id=d, optional=True) for d in optional]
    return Job(
        circuit=Circuit(qubit_count=qubits, gates=(Gate.of("x", 0),) * depth),
        provider="ibm-condor",
        priority=priority,
        dependencies=dependencies,
        **fields,
    )


def finished(execution_time: float, **fields) -> Job:
    result = JobResult(backend_job_id="b", shots=1, counts={"00": 1}, execution_time=execution_time)
    return member(status=JobStatus.COMPLETED, result=result, **fields)


@pytest.mark.parametrize(
    ("jobs", "expected"),
    [
        ([], 0.0),
        ([member("high"), member("low")], 2.0),
        ([member("high"), member("low", optional=["x"])], 2.0),
        ([member("high"), member("low", requires=["x"])], 5.0),
        ([member("high", qubits=12, depth=51, requires=["x"]), member("low")], 4.0),
        ([member("high", qubits=12, depth=51), member("low")], 2.0),
    ],
)
def test_batch_priority(jobs, expected):
    assert batch_priority(jobs) == pytest.approx(expected)


def test_actual_usage_covers_completed_jobs_only():
    done = finished(2.0, qubits=3, depth=4)
    failed = member(status=JobStatus.FAILED, qubits=5, depth=9)

    usage = actual_resource_usage([done, failed])

    assert usage == resource_usage([done.circuit], [2.0])
    assert actual_resource_usage([failed]) is None


def test_average_execution_time_of_completed_jobs():
    jobs = [finished(1.0), finished(3.0), member(status=JobStatus.CANCELLED)]

    assert average_execution_time(jobs) == pytest.approx(2.0)
    assert average_execution_time(jobs[2:]) is None
