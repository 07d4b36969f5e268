from __future__ import annotations

from typing import TYPE_CHECKING

from qbatch_engine.circuit.gates import cancels

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, Gate, ProviderCapability


class GateCancellationStage(OptimizationStage):
    """Remove adjacent gate pairs that undo each other.

    A single left-to-right pass keeps, per qubit, a stack of the surviving
    gates. A new gate cancels against the top of the stack when that gate is
    the most recent one on every qubit they share and the pair is a known
    self-inverse or inverse pair. Removing a pair exposes the previous gate,
    so nested pairs such as `h x x h` collapse completely.
    """

    name = StageName.GATE_CANCELLATION

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:  # noqa: ARG002
        kept: list[Gate | None] = []
        stacks: dict[int, list[int]] = {}
        pairs = 0

        for gate in circuit.gates:
            tops = {stacks[q][-1] if stacks.get(q) else None for q in gate.qubits}
            if len(tops) == 1:
                (top,) = tops
                previous = kept[top] if top is not None else None
                if previous is not None and cancels(previous, gate):
                    kept[top] = None
                    for q in previous.qubits:
                        stacks[q].pop()
                    pairs += 1
                    continue
            kept.append(gate)
            for q in gate.qubits:
                stacks.setdefault(q, []).append(len(kept) - 1)

        gates = [g for g in kept if g is not None]
        removed = circuit.gate_count - len(gates)
        trace = (
            (f"gate_cancellation: removed {pairs} inverse pair(s), {removed} gates",)
            if pairs
            else ("gate_cancellation: nothing to cancel",)
        )
        return StageOutcome(
            circuit=circuit.with_gates(gates),
            changes=pairs,
            trace=trace,
            detail={"pairs": pairs, "removed": removed},
        )
