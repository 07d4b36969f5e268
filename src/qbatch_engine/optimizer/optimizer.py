from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING

from qbatch_engine.circuit.gates import equivalent_up_to_phase
from qbatch_engine.circuit.simulation import MAX_SIMULATED_QUBITS, circuit_unitary
from qbatch_engine.framework.enums import Priority
from qbatch_engine.framework.errors import CompilationError
from qbatch_engine.framework.model import (
    ImpactMetrics,
    OptimizationRecommendation,
    OptimizationResult,
    StageImpact,
)
from qbatch_engine.providers.validation import ensure_valid

from .cancellation import GateCancellationStage
from .commutation import CommutationStage
from .cost import CostOptimizationStage
from .layout import LayoutMappingStage
from .merging import GateMergingStage
from .mitigation import ErrorMitigationStage
from .stage import StageName, StageRegistry
from .transpilation import TranspilationStage

if TYPE_CHECKING:
    from collections.abc import Iterable

    from qbatch_engine.framework.model import Circuit
    from qbatch_engine.noise.estimator import NoiseEstimator
    from qbatch_engine.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

ALGORITHM_PREFIX = "qbatch-optimizer"

# Stages a compilation retry falls back to.
CONSERVATIVE_STAGES = (StageName.GATE_CANCELLATION, StageName.TRANSPILATION)

_HIGH_GAIN_PCT = 10.0


def default_stage_registry() -> StageRegistry:
    """Return a registry with every built-in stage."""
    return StageRegistry(
        [
            GateCancellationStage(),
            GateMergingStage(),
            CommutationStage(),
            LayoutMappingStage(),
            TranspilationStage(),
            CostOptimizationStage(),
            ErrorMitigationStage(),
        ]
    )


def _pct(before: float, after: float) -> float:
    if before == 0:
        return 0.0
    return (before - after) / before * 100.0


class CircuitOptimizer:
    """Provider-aware circuit optimization pipeline.

    Args:
        registry: Provider registry used to resolve provider names.
        estimator: Scores fidelity and cost before and after every stage.
        stages: Stage registry; defaults to all built-in stages.
        verify_equivalence: Check with a dense simulation that the result
            implements the same unitary as the input (small circuits only).

    """

    def __init__(
        self,
        registry: ProviderRegistry,
        estimator: NoiseEstimator,
        stages: StageRegistry | None = None,
        *,
        verify_equivalence: bool = False,
    ) -> None:
        self._registry = registry
        self._estimator = estimator
        self._stages = stages or default_stage_registry()
        self._verify = verify_equivalence

    @property
    def stages(self) -> StageRegistry:
        return self._stages

    def optimize(
        self,
        circuit: Circuit,
        provider_name: str,
        stages: Iterable[str] | None = None,
    ) -> OptimizationResult:
        """Run the enabled stages over a circuit.

        Args:
            circuit: The circuit to optimize.
            provider_name: The target provider.
            stages: Stage names to enable; all registered stages when None.

        Returns:
            The optimized circuit with impact metrics relative to the input.

        Raises:
            ValidationError: Unknown provider or stage, or a circuit the
                provider can never run.
            CompilationError: A stage could not produce a native circuit.

        """
        capability = self._registry.lookup(provider_name)
        ensure_valid(circuit, capability)
        selected = self._stages.ordered(stages)

        start = time.perf_counter()
        fidelity0 = self._estimator.estimate_fidelity(circuit, capability).overall_fidelity
        cost0 = self._estimator.estimate_cost(circuit, capability)

        current = circuit
        fidelity, cost = fidelity0, cost0
        credit = 0.0
        layout = {q: q for q in range(circuit.qubit_count)}
        applied: list[str] = []
        trace: list[str] = []
        impacts: list[StageImpact] = []

        for stage in selected:
            if not stage.supports(capability):
                trace.append(f"{stage.name}: skipped, not applicable to {capability.name}")
                continue
            outcome = stage.apply(current, capability)
            next_fidelity = self._estimator.estimate_fidelity(
                outcome.circuit, capability
            ).overall_fidelity
            next_cost = self._estimator.estimate_cost(outcome.circuit, capability)
            impacts.append(
                StageImpact(
                    stage=stage.name,
                    gates_before=current.gate_count,
                    gates_after=outcome.circuit.gate_count,
                    depth_before=current.depth(),
                    depth_after=outcome.circuit.depth(),
                    fidelity_before=fidelity,
                    fidelity_after=next_fidelity,
                    cost_before=cost,
                    cost_after=next_cost,
                    fidelity_credit=outcome.fidelity_credit,
                    detail=outcome.detail,
                )
            )
            trace.extend(outcome.trace)
            applied.append(stage.name)
            credit += outcome.fidelity_credit
            if outcome.layout is not None:
                layout = outcome.layout
            current, fidelity, cost = outcome.circuit, next_fidelity, next_cost

        if self._verify:
            self._check_equivalence(circuit, current, layout)

        effective = min(1.0, fidelity * math.exp(credit))
        impact = ImpactMetrics(
            gate_reduction_pct=_pct(circuit.gate_count, current.gate_count),
            depth_reduction_pct=_pct(circuit.depth(), current.depth()),
            fidelity_improvement_pct=(effective - fidelity0) / fidelity0 * 100.0,
            cost_savings_pct=_pct(cost0, cost),
        )
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            "circuit optimized",
            extra={
                "elapsed_ms": round(elapsed_ms, 3),
                "provider": capability.name,
                "stages": applied,
                "gates_before": circuit.gate_count,
                "gates_after": current.gate_count,
            },
        )
        return OptimizationResult(
            original_circuit=circuit,
            optimized_circuit=current,
            provider=capability.name,
            algorithm_name=f"{ALGORITHM_PREFIX}/{'+'.join(applied) or 'none'}",
            impact=impact,
            stage_impacts=tuple(impacts),
            trace=tuple(trace),
            layout=layout,
        )

    def recommend_optimizations(
        self, circuit: Circuit, provider_name: str
    ) -> list[OptimizationRecommendation]:
        """Dry-run each stage on the circuit and rank the useful ones.

        Raises:
            ValidationError: Unknown provider or unrunnable circuit.

        """
        capability = self._registry.lookup(provider_name)
        ensure_valid(circuit, capability)

        recommendations = []
        for stage in self._stages.ordered():
            if not stage.supports(capability):
                continue
            try:
                outcome = stage.apply(circuit, capability)
            except CompilationError:
                logger.exception(
                    "stage dry run failed",
                    extra={"stage": stage.name, "provider": capability.name},
                )
                continue
            if outcome.changes == 0:
                continue
            reduction = _pct(circuit.gate_count, outcome.circuit.gate_count)
            recommendations.append(
                OptimizationRecommendation(
                    stage=stage.name,
                    priority=self._priority(stage.name, reduction),
                    reason=outcome.trace[0] if outcome.trace else stage.name,
                    estimated_gate_reduction_pct=reduction,
                )
            )
        order = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
        return sorted(recommendations, key=lambda r: order[r.priority])

    @staticmethod
    def _priority(stage: str, reduction: float) -> Priority:
        if stage in {StageName.TRANSPILATION, StageName.LAYOUT_MAPPING}:
            return Priority.HIGH
        if reduction >= _HIGH_GAIN_PCT:
            return Priority.HIGH
        if reduction > 0 or stage == StageName.ERROR_MITIGATION:
            return Priority.MEDIUM
        return Priority.LOW

    @staticmethod
    def _check_equivalence(
        original: Circuit, optimized: Circuit, layout: dict[int, int]
    ) -> None:
        if original.qubit_count > MAX_SIMULATED_QUBITS:
            logger.debug(
                "equivalence check skipped",
                extra={"qubits": original.qubit_count},
            )
            return
        inverse = {p: q for q, p in layout.items()}
        logical = original.with_gates(
            g.on(*(inverse.get(q, q) for q in g.qubits)) for g in optimized.gates
        )
        if not equivalent_up_to_phase(circuit_unitary(original), circuit_unitary(logical)):
            message = "optimized circuit is not equivalent to the original"
            raise CompilationError(message, code="EQUIVALENCE_CHECK_FAILED")

