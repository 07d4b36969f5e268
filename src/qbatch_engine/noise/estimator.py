from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import TYPE_CHECKING

import numpy as np

from qbatch_engine.circuit.gates import GATE_LIBRARY
from qbatch_engine.framework.enums import ErrorCorrectionLevel, TopologyKind
from qbatch_engine.framework.model import (
    CircuitAnalysis,
    FidelityEstimate,
    ProviderCapability,
    ProviderSuggestion,
)
from qbatch_engine.providers.topology import is_local

from .mitigation import MitigationCatalog, MitigationInputs

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from qbatch_engine.framework.model import Circuit, MitigationStrategy
    from qbatch_engine.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# Lower bound for the mean fidelities so that `-ln` stays finite.
_TINY = 1e-150

FIDELITY_TIE_WINDOW = 0.1
POOR_SUITABILITY = 0.7
EXCELLENT_SUITABILITY = 0.9

MICROSECONDS = 1e-6


class NoiseEstimator:
    """Fidelity, runtime and cost model over the provider registry.

    Every operation accepts either a provider name or a
    `ProviderCapability`, so the optimizer can score intermediate circuits
    without a registry round-trip.

    Args:
        registry: The provider registry.
        catalog: Mitigation rules; defaults to the built-in catalogue.

    """

    def __init__(
        self,
        registry: ProviderRegistry,
        catalog: MitigationCatalog | None = None,
    ) -> None:
        self._registry = registry
        self._catalog = catalog or MitigationCatalog()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def _capability(self, provider: str | ProviderCapability) -> ProviderCapability:
        if isinstance(provider, ProviderCapability):
            return provider
        return self._registry.lookup(provider)

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------

    def analyze(
        self, circuit: Circuit, provider: str | ProviderCapability
    ) -> CircuitAnalysis:
        """Summarize circuit structure and timing on a provider.

        Runtime is the sum of gate durations. The critical path schedules
        each gate as soon as all of its qubits are free. Parallelizable
        gates come from one greedy pass that groups consecutive gates on
        disjoint qubits; only groups of two or more count.
        """
        capability = self._capability(provider)

        finish: dict[int, float] = defaultdict(float)
        critical = 0.0
        runtime = 0.0
        for gate in circuit.gates:
            duration = capability.duration_of(gate)
            runtime += duration
            start = max(finish[q] for q in gate.qubits)
            for q in gate.qubits:
                finish[q] = start + duration
            critical = max(critical, start + duration)

        parallelizable = 0
        layer_size = 0
        layer_qubits: set[int] = set()
        for gate in circuit.gates:
            if layer_qubits.isdisjoint(gate.qubits):
                layer_qubits.update(gate.qubits)
                layer_size += 1
                continue
            if layer_size > 1:
                parallelizable += layer_size
            layer_qubits = set(gate.qubits)
            layer_size = 1
        if layer_size > 1:
            parallelizable += layer_size

        return CircuitAnalysis(
            provider=capability.name,
            qubit_count=circuit.qubit_count,
            gate_count=circuit.gate_count,
            multi_qubit_gate_count=circuit.multi_qubit_gate_count(),
            gate_counts=circuit.gate_counts(),
            depth=circuit.depth(),
            estimated_runtime=runtime,
            critical_path_length=critical,
            parallelizable_gates=parallelizable,
            non_native_gates=sum(
                1 for g in circuit.gates if not capability.supports(g.type)
            ),
            non_adjacent_gates=sum(
                1 for g in circuit.gates if not is_local(capability.topology, g.qubits)
            ),
        )

    def estimate_runtime(
        self, circuit: Circuit, provider: str | ProviderCapability
    ) -> float:
        """Sum of gate durations in microseconds."""
        capability = self._capability(provider)
        return sum(capability.duration_of(g) for g in circuit.gates)

    # ------------------------------------------------------------------
    # fidelity
    # ------------------------------------------------------------------

    def estimate_fidelity(
        self, circuit: Circuit, provider: str | ProviderCapability
    ) -> FidelityEstimate:
        """Estimate how close execution comes to the noiseless result.

        Returns:
            The estimate. `overall_fidelity` is the product of the mean
            per-gate-type fidelity and the mean per-qubit fidelity, and
            equals `exp(-total_error)`.

        """
        capability = self._capability(provider)

        counts = circuit.gate_counts()
        by_type = {
            gate.type: gate for gate in circuit.gates if gate.type != "measure"
        }
        per_gate = {
            gate_type: capability.fidelity_of(gate) ** counts[gate_type]
            for gate_type, gate in by_type.items()
        }

        coherence = max(capability.coherence_t1, capability.coherence_t2)
        busy: dict[int, float] = defaultdict(float)
        for gate in circuit.gates:
            duration = capability.duration_of(gate)
            for q in gate.qubits:
                busy[q] += duration
        per_qubit = {q: math.exp(-busy[q] / coherence) for q in sorted(busy)}

        mean_gate = max(float(np.mean(list(per_gate.values()))), _TINY) if per_gate else 1.0
        mean_qubit = (
            max(float(np.mean(list(per_qubit.values()))), _TINY) if per_qubit else 1.0
        )
        gate_error = -math.log(mean_gate)
        decoherence_error = -math.log(mean_qubit)
        total_error = gate_error + decoherence_error
        overall = min(1.0, math.exp(-total_error))

        two_qubit = circuit.multi_qubit_gate_count()
        crosstalk = 1.0 - (1.0 - capability.crosstalk_rate) ** two_qubit
        readout = 1.0 - (1.0 - capability.readout_error) ** len(circuit.measured_qubits())
        error_probability = 1.0 - overall * (1.0 - crosstalk) * (1.0 - readout)

        return FidelityEstimate(
            overall_fidelity=overall,
            per_gate_fidelity=per_gate,
            per_qubit_fidelity=per_qubit,
            gate_error=gate_error,
            decoherence_error=decoherence_error,
            crosstalk_error=crosstalk,
            readout_error=readout,
            total_error=total_error,
            error_probability=min(1.0, max(0.0, error_probability)),
        )

    # ------------------------------------------------------------------
    # cost
    # ------------------------------------------------------------------

    def estimate_cost(self, circuit: Circuit, provider: str | ProviderCapability) -> float:
        """Monetary cost of one execution.

        Gate costs, plus measurement cost per measured qubit (every qubit
        when the circuit has no measurement), plus setup cost, plus runtime
        cost.
        """
        capability = self._capability(provider)
        gate_cost = sum(
            capability.cost_of(g) for g in circuit.gates if g.type != "measure"
        )
        measured = len(circuit.measured_qubits()) or circuit.qubit_count
        runtime_s = self.estimate_runtime(circuit, capability) * MICROSECONDS
        return (
            gate_cost
            + measured * capability.measurement_cost
            + capability.setup_cost
            + runtime_s * capability.cost_per_second
        )

    # ------------------------------------------------------------------
    # mitigation
    # ------------------------------------------------------------------

    def recommend_mitigations(
        self, circuit: Circuit, provider: str | ProviderCapability
    ) -> list[MitigationStrategy]:
        capability = self._capability(provider)
        inputs = MitigationInputs(
            analysis=self.analyze(circuit, capability),
            provider=capability,
            error_probability=self.estimate_fidelity(circuit, capability).error_probability,
        )
        return self._catalog.recommend(inputs)

    # ------------------------------------------------------------------
    # provider ranking
    # ------------------------------------------------------------------

    @staticmethod
    def can_host(circuit: Circuit, capability: ProviderCapability) -> bool:
        """Whether a circuit fits the provider's permanent limits."""
        if circuit.qubit_count > min(capability.qubit_count, capability.limits.max_qubits):
            return False
        if any(g.type not in GATE_LIBRARY for g in circuit.gates):
            return False
        return circuit.depth() <= capability.limits.max_circuit_depth

    def suggest_provider(self, circuit: Circuit) -> list[ProviderSuggestion]:
        """Rank every provider that can host the circuit."""
        return self.rank_providers([circuit])

    def rank_providers(
        self,
        circuits: Sequence[Circuit],
        names: Iterable[str] | None = None,
    ) -> list[ProviderSuggestion]:
        """Rank providers for a set of circuits run together.

        Fidelity is the mean over the circuits, runtime and cost are sums.
        Fidelities are grouped into bands 0.1 wide measured down from the
        best one, so every provider within 0.1 of the best shares the first
        band. Bands are ordered best first; inside a band the cheaper
        provider wins and the provider name breaks remaining ties.

        Args:
            circuits: The circuits to place.
            names: Restrict the ranking to these providers.

        Returns:
            Suggestions, best first. Providers unable to host every circuit
            are left out.

        """
        candidates = (
            [self._registry.lookup(name) for name in dict.fromkeys(names)]
            if names is not None
            else list(self._registry)
        )

        suggestions = []
        for capability in candidates:
            if not all(self.can_host(c, capability) for c in circuits):
                continue
            fidelities = [
                self.estimate_fidelity(c, capability).overall_fidelity for c in circuits
            ]
            fidelity = float(np.mean(fidelities)) if fidelities else 1.0
            runtime = sum(self.estimate_runtime(c, capability) for c in circuits)
            cost = sum(self.estimate_cost(c, capability) for c in circuits)
            suggestions.append(
                ProviderSuggestion(
                    provider=capability.name,
                    fidelity=fidelity,
                    runtime=runtime,
                    cost=cost,
                    suitability=_suitability(fidelity),
                    reasons=tuple(_reasons(circuits, capability, fidelity)),
                )
            )

        best = max((s.fidelity for s in suggestions), default=1.0)
        ranked = sorted(suggestions, key=lambda s: _rank_key(s, best))
        logger.debug(
            "providers ranked",
            extra={"ranking": [s.provider for s in ranked], "circuits": len(circuits)},
        )
        return ranked


def _rank_key(suggestion: ProviderSuggestion, best: float) -> tuple[int, float, str]:
    # Band 0 reaches one window below the best fidelity, band n the n-th window after it.
    steps = round((best - suggestion.fidelity) / FIDELITY_TIE_WINDOW, 9)
    band = max(math.ceil(steps) - 1, 0)
    return band, suggestion.cost, suggestion.provider


def _suitability(fidelity: float) -> str:
    if fidelity < POOR_SUITABILITY:
        return "poor"
    if fidelity > EXCELLENT_SUITABILITY:
        return "excellent"
    return "good"


def _reasons(
    circuits: Sequence[Circuit], capability: ProviderCapability, fidelity: float
) -> list[str]:
    reasons = [f"estimated fidelity {fidelity:.4f}"]
    used = {g.type for c in circuits for g in c.gates}
    if all(capability.supports(t) for t in used):
        reasons.append("all gates are native")
    if capability.topology.kind == TopologyKind.FULL:
        reasons.append("full connectivity, no routing needed")
    if capability.error_correction_level != ErrorCorrectionLevel.NONE:
        reasons.append(f"{capability.error_correction_level} error correction")
    return reasons
