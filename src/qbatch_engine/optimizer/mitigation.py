from __future__ import annotations

import math
from typing import TYPE_CHECKING

from qbatch_engine.framework.model import Gate

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, ProviderCapability

DEFAULT_ERROR_THRESHOLD = 0.01

# Share of a mitigated gate's log-error the decoupling pair is expected to
# suppress.
DEFAULT_SUPPRESSION = 0.5


class ErrorMitigationStage(OptimizationStage):
    """Insert dynamical-decoupling pairs after error-prone gates.

    Every qubit of a gate whose error rate exceeds the threshold gets an
    identity pair (`x x`, or `rx(pi) rx(pi)` when `x` is not native) right
    after the gate. The pairs leave the unitary unchanged; the expected
    suppression is reported as a fidelity credit.

    Args:
        threshold: Error rate (1 - fidelity) above which a gate is mitigated.
        suppression: Fraction of the gate's log-error credited back.

    """

    name = StageName.ERROR_MITIGATION

    def __init__(
        self,
        threshold: float = DEFAULT_ERROR_THRESHOLD,
        suppression: float = DEFAULT_SUPPRESSION,
    ) -> None:
        self._threshold = threshold
        self._suppression = suppression

    @staticmethod
    def _pulse(provider: ProviderCapability, qubit: int) -> Gate | None:
        if provider.supports("x"):
            return Gate.of("x", qubit)
        if provider.supports("rx"):
            return Gate.of("rx", qubit, params=(math.pi,))
        return None

    def supports(self, provider: ProviderCapability) -> bool:
        return self._pulse(provider, 0) is not None

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:
        output: list[Gate] = []
        mitigated = 0
        credit = 0.0
        for gate in circuit.gates:
            output.append(gate)
            if gate.type == "measure":
                continue
            error_rate = provider.error_rate_of(gate)
            if error_rate <= self._threshold:
                continue
            for q in gate.qubits:
                pulse = self._pulse(provider, q)
                if pulse is not None:
                    output.extend((pulse, pulse))
            mitigated += 1
            credit += self._suppression * -math.log1p(-error_rate)

        inserted = len(output) - circuit.gate_count
        trace = (
            (
                f"error_mitigation: decoupled {mitigated} gate(s) above error rate "
                f"{self._threshold}, inserted {inserted} pulses",
            )
            if mitigated
            else (f"error_mitigation: no gate above error rate {self._threshold}",)
        )
        return StageOutcome(
            circuit=circuit.with_gates(output),
            changes=mitigated,
            trace=trace,
            fidelity_credit=credit,
            detail={"mitigated_gates": mitigated, "inserted": inserted},
        )
