from __future__ import annotations

from typing import TYPE_CHECKING

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, Gate, ProviderCapability


class CommutationStage(OptimizationStage):
    """Pull entangling gates forward past one-qubit gates on other qubits.

    Only gates with disjoint qubit sets are swapped, so the circuit's
    behavior is unchanged. Measurements never move and block movement.
    """

    name = StageName.COMMUTATION

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:  # noqa: ARG002
        output: list[Gate] = []
        moves = 0
        moved_gates = 0

        for gate in circuit.gates:
            position = len(output)
            if gate.arity > 1:
                qubits = set(gate.qubits)
                while position > 0:
                    before = output[position - 1]
                    if before.arity != 1 or before.type == "measure":
                        break
                    if not qubits.isdisjoint(before.qubits):
                        break
                    position -= 1
            if position < len(output):
                moves += len(output) - position
                moved_gates += 1
            output.insert(position, gate)

        trace = (
            (f"commutation: moved {moved_gates} entangling gate(s) {moves} position(s) earlier",)
            if moved_gates
            else ("commutation: order unchanged",)
        )
        return StageOutcome(
            circuit=circuit.with_gates(output),
            changes=moved_gates,
            trace=trace,
            detail={"moved_gates": moved_gates, "positions": moves},
        )
