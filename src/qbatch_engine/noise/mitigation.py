"""Error-mitigation rule catalogue.

Rules are grouped by the provider's error-correction level. A provider may
override its level's rules by name. The shared fallback rules are evaluated
for every provider after the provider-specific ones.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from qbatch_engine.framework.enums import ErrorCorrectionLevel, TopologyKind
from qbatch_engine.framework.model import (
    CircuitAnalysis,
    MitigationStrategy,
    ProviderCapability,
)


class MitigationInputs(BaseModel):
    """What a rule predicate may look at."""

    model_config = ConfigDict(frozen=True)

    analysis: CircuitAnalysis
    provider: ProviderCapability
    error_probability: float


class MitigationRule(BaseModel):
    """A technique plus the predicate deciding whether it applies."""

    model_config = ConfigDict(frozen=True)

    technique: str
    fidelity_improvement_estimate: float
    overhead_multiplier: float
    condition: str
    applies: Callable[[MitigationInputs], bool]

    def to_strategy(self) -> MitigationStrategy:
        return MitigationStrategy(
            technique=self.technique,
            fidelity_improvement_estimate=self.fidelity_improvement_estimate,
            overhead_multiplier=self.overhead_multiplier,
            applicability_conditions=(self.condition,),
        )


def _always(_: MitigationInputs) -> bool:
    return True


LOGICAL_RULES = (
    MitigationRule(
        technique="logical_qubit_error_correction",
        fidelity_improvement_estimate=0.15,
        overhead_multiplier=3.0,
        condition="qubits <= 100",
        applies=lambda i: i.analysis.qubit_count <= 100,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="surface_code_optimization",
        fidelity_improvement_estimate=0.08,
        overhead_multiplier=1.5,
        condition="two-qubit gates > 20",
        applies=lambda i: i.analysis.multi_qubit_gate_count > 20,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="flag_qubit_optimization",
        fidelity_improvement_estimate=0.05,
        overhead_multiplier=1.3,
        condition="depth > 50",
        applies=lambda i: i.analysis.depth > 50,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="universal_gate_optimization",
        fidelity_improvement_estimate=0.04,
        overhead_multiplier=1.1,
        condition="non-native gates present",
        applies=lambda i: i.analysis.non_native_gates > 0,
    ),
)

ADVANCED_RULES = (
    MitigationRule(
        technique="advanced_error_suppression",
        fidelity_improvement_estimate=0.10,
        overhead_multiplier=1.5,
        condition="always",
        applies=_always,
    ),
    MitigationRule(
        technique="ibm_measurement_error_mitigation",
        fidelity_improvement_estimate=0.04,
        overhead_multiplier=1.2,
        condition="depth > 30",
        applies=lambda i: i.analysis.depth > 30,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="ibm_dynamical_decoupling",
        fidelity_improvement_estimate=0.03,
        overhead_multiplier=1.1,
        condition="depth > 40",
        applies=lambda i: i.analysis.depth > 40,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="transpilation_error_mitigation",
        fidelity_improvement_estimate=0.05,
        overhead_multiplier=1.3,
        condition="custom topology",
        applies=lambda i: i.provider.topology.kind == TopologyKind.CUSTOM,
    ),
)

BASIC_RULES = (
    MitigationRule(
        technique="multi_provider_noise_cancellation",
        fidelity_improvement_estimate=0.06,
        overhead_multiplier=2.0,
        condition="always",
        applies=_always,
    ),
    MitigationRule(
        technique="richardson_extrapolation_multi_scale",
        fidelity_improvement_estimate=0.08,
        overhead_multiplier=3.0,
        condition="error probability > 0.08",
        applies=lambda i: i.error_probability > 0.08,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="cost_optimized_error_mitigation",
        fidelity_improvement_estimate=0.03,
        overhead_multiplier=1.2,
        condition="depth > 25",
        applies=lambda i: i.analysis.depth > 25,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="provider_aware_gate_selection",
        fidelity_improvement_estimate=0.02,
        overhead_multiplier=1.05,
        condition="grid topology",
        applies=lambda i: i.provider.topology.kind == TopologyKind.GRID,
    ),
)

GENERIC_RULES = (
    MitigationRule(
        technique="zero_noise_extrapolation",
        fidelity_improvement_estimate=0.05,
        overhead_multiplier=3.0,
        condition="error probability > 0.1",
        applies=lambda i: i.error_probability > 0.1,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="probabilistic_error_cancellation",
        fidelity_improvement_estimate=0.03,
        overhead_multiplier=2.0,
        condition="two-qubit gates > 10",
        applies=lambda i: i.analysis.multi_qubit_gate_count > 10,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="dynamical_decoupling",
        fidelity_improvement_estimate=0.02,
        overhead_multiplier=1.2,
        condition="depth > 20",
        applies=lambda i: i.analysis.depth > 20,  # noqa: PLR2004
    ),
    MitigationRule(
        technique="readout_error_mitigation",
        fidelity_improvement_estimate=0.01,
        overhead_multiplier=1.1,
        condition="always",
        applies=_always,
    ),
)


class MitigationCatalog:
    """Registry of mitigation rules.

    Args:
        by_level: Rules per error-correction level. Defaults to the built-in
            tables.
        generic: Fallback rules evaluated for every provider.

    """

    def __init__(
        self,
        by_level: dict[ErrorCorrectionLevel, tuple[MitigationRule, ...]] | None = None,
        generic: tuple[MitigationRule, ...] = GENERIC_RULES,
    ) -> None:
        self._by_level = dict(
            by_level
            if by_level is not None
            else {
                ErrorCorrectionLevel.LOGICAL: LOGICAL_RULES,
                ErrorCorrectionLevel.ADVANCED: ADVANCED_RULES,
                ErrorCorrectionLevel.BASIC: BASIC_RULES,
            }
        )
        self._by_provider: dict[str, tuple[MitigationRule, ...]] = {}
        self._generic = generic

    def register_provider(self, name: str, rules: tuple[MitigationRule, ...]) -> None:
        """Use `rules` instead of the level rules for one provider."""
        self._by_provider[name] = tuple(rules)

    def rules_for(self, provider: ProviderCapability) -> tuple[MitigationRule, ...]:
        specific = self._by_provider.get(
            provider.name, self._by_level.get(provider.error_correction_level, ())
        )
        return (*specific, *self._generic)

    def recommend(self, inputs: MitigationInputs) -> list[MitigationStrategy]:
        """Return the applicable strategies, provider-specific rules first."""
        seen: set[str] = set()
        strategies = []
        for rule in self.rules_for(inputs.provider):
            if rule.technique in seen or not rule.applies(inputs):
                continue
            seen.add(rule.technique)
            strategies.append(rule.to_strategy())
        return strategies
