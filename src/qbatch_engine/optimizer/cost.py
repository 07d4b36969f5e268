from __future__ import annotations

import math
from typing import TYPE_CHECKING

from qbatch_engine.circuit.gates import diagonal_phase, unitary
from qbatch_engine.framework.model import Gate

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, ProviderCapability

# Diagonal gates that equal an rz up to global phase.
_PHASE_GATES = frozenset({"z", "s", "sdg", "t", "tdg", "u1"})

_ANGLE_TOL = 1e-9


def _is_multiple(angle: float, period: float) -> bool:
    ratio = angle / period
    return math.isclose(ratio, round(ratio), abs_tol=_ANGLE_TOL)


def cheaper_equivalent(gate: Gate) -> list[Gate] | None:
    """Return a functionally equivalent substitute, or None.

    The substitute is not checked for cost or nativeness here.
    """
    if gate.type == "id":
        return []
    if gate.type in {"rz", "u1"} and _is_multiple(gate.params[0], 2 * math.pi):
        return []
    if gate.type in {"rx", "ry"} and _is_multiple(gate.params[0], 4 * math.pi):
        return []
    if gate.type in _PHASE_GATES:
        phase = diagonal_phase(unitary(gate))
        if phase is not None:
            return [Gate.of("rz", *gate.qubits, params=(phase,))]
    return None


class CostOptimizationStage(OptimizationStage):
    """Swap gates for strictly cheaper equivalents.

    A substitution happens only when every replacement gate is native on
    the provider and the replacement's tabulated cost is strictly lower.
    """

    name = StageName.COST_OPTIMIZATION

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:  # noqa: PLR6301
        output: list[Gate] = []
        saved = 0.0
        substitutions = 0
        for gate in circuit.gates:
            substitute = cheaper_equivalent(gate)
            if substitute is not None and all(provider.supports(g.type) for g in substitute):
                before = provider.cost_of(gate)
                after = sum(provider.cost_of(g) for g in substitute)
                if after < before:
                    output.extend(substitute)
                    saved += before - after
                    substitutions += 1
                    continue
            output.append(gate)

        trace = (
            (f"cost_optimization: {substitutions} substitution(s), saved {saved:.4f} in gate cost",)
            if substitutions
            else ("cost_optimization: no cheaper equivalents",)
        )
        return StageOutcome(
            circuit=circuit.with_gates(output),
            changes=substitutions,
            trace=trace,
            detail={"substitutions": substitutions, "gate_cost_saved": saved},
        )
