from __future__ import annotations

import math
from functools import reduce
from typing import TYPE_CHECKING

from qbatch_engine.circuit.gates import (
    is_identity,
    is_rotation,
    unitary,
    wrap_angle,
    zyz_angles,
)
from qbatch_engine.framework.model import Gate

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, ProviderCapability

# Gate types whose runs collapse by adding angles.
_SINGLE_AXIS = frozenset({"rx", "ry", "rz", "u1"})


def merge_run(run: list[Gate]) -> list[Gate]:
    """Collapse consecutive one-qubit rotations on one qubit.

    Returns:
        An empty list when the run is the identity, the summed rotation for
        a single-axis run, otherwise one `u3`.

    """
    if len(run) < 2:  # noqa: PLR2004
        return list(run)
    (qubit,) = run[0].qubits
    types = {g.type for g in run}

    if len(types) == 1 and run[0].type in _SINGLE_AXIS:
        angle = wrap_angle(sum(g.params[0] for g in run))
        if math.isclose(angle, 0.0, abs_tol=1e-12):
            return []
        return [Gate.of(run[0].type, qubit, params=(angle,))]

    # Later gates multiply from the left.
    matrix = reduce(lambda acc, g: unitary(g) @ acc, run[1:], unitary(run[0]))
    if is_identity(matrix):
        return []
    return [Gate.of("u3", qubit, params=zyz_angles(matrix))]


class GateMergingStage(OptimizationStage):
    """Merge runs of rotation gates (`rx ry rz u1 u2 u3`) on the same qubit.

    The net unitary is computed exactly. A run ends at the first gate that
    touches its qubit and is not a rotation; since nothing else acts on the
    qubit in between, the merged gate is emitted just before that gate.
    """

    name = StageName.GATE_MERGING

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:  # noqa: ARG002
        output: list[Gate] = []
        runs: dict[int, list[Gate]] = {}
        merged_runs = 0

        def flush(qubit: int) -> None:
            nonlocal merged_runs
            run = runs.pop(qubit, [])
            replacement = merge_run(run)
            if len(run) > 1:
                merged_runs += 1
            output.extend(replacement)

        for gate in circuit.gates:
            if gate.arity == 1 and is_rotation(gate):
                runs.setdefault(gate.qubits[0], []).append(gate)
                continue
            for q in gate.qubits:
                flush(q)
            output.append(gate)
        for q in sorted(runs):
            flush(q)

        removed = circuit.gate_count - len(output)
        trace = (
            (f"gate_merging: merged {merged_runs} rotation run(s), {removed} gates saved",)
            if merged_runs
            else ("gate_merging: no rotation runs",)
        )
        return StageOutcome(
            circuit=circuit.with_gates(output),
            changes=merged_runs,
            trace=trace,
            detail={"merged_runs": merged_runs, "removed": removed},
        )
