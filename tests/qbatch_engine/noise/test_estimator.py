import itertools
import math

import pytest

from qbatch_engine.framework import Circuit, Gate
from qbatch_engine.noise import MitigationCatalog, MitigationRule, NoiseEstimator
from qbatch_engine.providers import (
    ProviderRegistry,
    AMAZON_BRAKET,
    GOOGLE_WILLOW,
    IBM_CONDOR,
    default_registry,
)

# ------------------------------------------------------------
# Helper factory functions
# ------------------------------------------------------------


def make_estimator(catalog: MitigationCatalog | None = None) -> NoiseEstimator:
    return NoiseEstimator(default_registry(), catalog)


def bell(measure: bool = True) -> Circuit:
    gates = [Gate.of("h", 0), Gate.of("cx", 0, 1)]
    if measure:
        gates += [Gate.of("measure", 0), Gate.of("measure", 1)]
    return Circuit(qubit_count=2, gates=tuple(gates))


def ladder(layers: int) -> Circuit:
    gates = []
    for _ in range(layers):
        gates += [Gate.of("h", 0), Gate.of("cx", 0, 1), Gate.of("cx", 1, 2)]
    return Circuit(qubit_count=3, gates=tuple(gates))


# ------------------------------------------------------------
# Fidelity
# ------------------------------------------------------------


@pytest.mark.parametrize("provider", [GOOGLE_WILLOW, IBM_CONDOR, AMAZON_BRAKET])
def test_fidelity_is_a_product_of_means(provider):
    estimate = make_estimator().estimate_fidelity(ladder(5), provider)

    mean_gate = sum(estimate.per_gate_fidelity.values()) / len(estimate.per_gate_fidelity)
    mean_qubit = sum(estimate.per_qubit_fidelity.values()) / len(estimate.per_qubit_fidelity)
    assert 0 < estimate.overall_fidelity <= 1
    assert estimate.overall_fidelity == pytest.approx(mean_gate * mean_qubit)
    assert estimate.overall_fidelity == pytest.approx(math.exp(-estimate.total_error))
    assert estimate.total_error == pytest.approx(
        estimate.gate_error + estimate.decoherence_error
    )


def test_longer_circuits_estimate_lower_fidelity():
    estimator = make_estimator()

    short = estimator.estimate_fidelity(ladder(2), IBM_CONDOR).overall_fidelity
    long = estimator.estimate_fidelity(ladder(40), IBM_CONDOR).overall_fidelity

    assert long < short


def test_empty_circuit_is_perfect():
    estimate = make_estimator().estimate_fidelity(Circuit(qubit_count=3), GOOGLE_WILLOW)

    assert estimate.overall_fidelity == 1.0
    assert estimate.per_qubit_fidelity == {}


def test_per_qubit_fidelity_covers_active_qubits_only():
    circuit = Circuit(qubit_count=5, gates=(Gate.of("cx", 0, 3),))

    estimate = make_estimator().estimate_fidelity(circuit, GOOGLE_WILLOW)

    assert set(estimate.per_qubit_fidelity) == {0, 3}


def test_readout_and_crosstalk_enter_error_probability():
    estimate = make_estimator().estimate_fidelity(bell(), AMAZON_BRAKET)

    assert estimate.readout_error == pytest.approx(1 - 0.98**2)
    assert estimate.crosstalk_error == pytest.approx(0.0015)
    assert estimate.error_probability > 1 - estimate.overall_fidelity


# ------------------------------------------------------------
# Analysis, runtime and cost
# ------------------------------------------------------------


def test_analysis_timing():
    circuit = Circuit(
        qubit_count=2, gates=(Gate.of("h", 0), Gate.of("h", 1), Gate.of("cx", 0, 1))
    )

    analysis = make_estimator().analyze(circuit, GOOGLE_WILLOW)

    assert analysis.estimated_runtime == pytest.approx(0.19)
    assert analysis.critical_path_length == pytest.approx(0.17)
    assert analysis.parallelizable_gates == 2
    assert analysis.depth == 2
    assert analysis.non_native_gates == 0


def test_analysis_counts_non_native_and_non_adjacent_gates():
    circuit = Circuit(qubit_count=3, gates=(Gate.of("h", 0), Gate.of("cx", 0, 2)))

    analysis = make_estimator().analyze(circuit, IBM_CONDOR)

    assert analysis.non_native_gates == 1
    assert analysis.non_adjacent_gates == 1


def test_cost_adds_setup_and_measurement():
    willow = default_registry().lookup(GOOGLE_WILLOW)
    estimator = make_estimator()

    measured = estimator.estimate_cost(bell(), willow)
    unmeasured = estimator.estimate_cost(bell(measure=False), willow)

    gate_cost = willow.cost_table["h"] + willow.cost_table["cx"]
    assert measured > willow.setup_cost + gate_cost
    # Without measurements every qubit is read out.
    assert unmeasured == pytest.approx(
        gate_cost
        + 2 * willow.measurement_cost
        + willow.setup_cost
        + estimator.estimate_runtime(bell(measure=False), willow) * 1e-6 * willow.cost_per_second
    )


# ------------------------------------------------------------
# Provider ranking and mitigation
# ------------------------------------------------------------


def test_close_fidelities_are_ranked_by_cost():
    suggestions = make_estimator().suggest_provider(bell())

    assert [s.provider for s in suggestions] == [AMAZON_BRAKET, IBM_CONDOR, GOOGLE_WILLOW]
    assert all(s.suitability == "excellent" for s in suggestions)
    assert "full connectivity, no routing needed" in suggestions[-1].reasons


def test_providers_that_cannot_host_are_left_out():
    wide = Circuit(qubit_count=300, gates=(Gate.of("x", 299),))

    suggestions = make_estimator().suggest_provider(wide)

    assert {s.provider for s in suggestions} == {IBM_CONDOR, GOOGLE_WILLOW}


def test_rank_providers_restricted_to_names():
    suggestions = make_estimator().rank_providers([bell(), ladder(2)], [GOOGLE_WILLOW])

    assert [s.provider for s in suggestions] == [GOOGLE_WILLOW]


class PinnedEstimator(NoiseEstimator):
    """Reports fixed fidelity and cost per provider name."""

    def __init__(self, figures: dict[str, tuple[float, float]]):
        base = default_registry().lookup(GOOGLE_WILLOW)
        super().__init__(
            ProviderRegistry(base.model_copy(update={"name": name}) for name in figures)
        )
        self.figures = figures

    def estimate_fidelity(self, circuit, provider):
        estimate = super().estimate_fidelity(circuit, provider)
        fidelity = self.figures[self._capability(provider).name][0]
        return estimate.model_copy(update={"overall_fidelity": fidelity})

    def estimate_cost(self, circuit, provider):
        return self.figures[self._capability(provider).name][1]


def test_ranking_does_not_depend_on_input_order():
    # a-b and b-c are within the window but a-c is not.
    estimator = PinnedEstimator({"a": (0.95, 3.0), "b": (0.88, 2.0), "c": (0.80, 1.0)})

    rankings = {
        tuple(s.provider for s in estimator.rank_providers([bell()], order))
        for order in itertools.permutations("abc")
    }

    assert rankings == {("b", "a", "c")}


def test_equal_figures_are_ranked_by_name():
    estimator = PinnedEstimator({"zeta": (0.9, 1.0), "alpha": (0.9, 1.0)})

    suggestions = estimator.rank_providers([bell()], ["zeta", "alpha"])

    assert [s.provider for s in suggestions] == ["alpha", "zeta"]


def test_fidelity_exactly_one_window_below_the_best_still_ties():
    estimator = PinnedEstimator({"x": (0.9, 2.0), "y": (0.8, 1.0), "z": (0.79, 0.5)})

    suggestions = estimator.rank_providers([bell()])

    assert [s.provider for s in suggestions] == ["y", "x", "z"]


def test_logical_provider_mitigations():
    strategies = make_estimator().recommend_mitigations(bell(), GOOGLE_WILLOW)

    assert [s.technique for s in strategies] == [
        "logical_qubit_error_correction",
        "readout_error_mitigation",
    ]


def test_provider_specific_rules_override_level_rules():
    catalog = MitigationCatalog()
    catalog.register_provider(
        AMAZON_BRAKET,
        (
            MitigationRule(
                technique="custom_twirling",
                fidelity_improvement_estimate=0.02,
                overhead_multiplier=1.5,
                condition="always",
                applies=lambda inputs: True,
            ),
        ),
    )

    strategies = make_estimator(catalog).recommend_mitigations(bell(), AMAZON_BRAKET)

    assert strategies[0].technique == "custom_twirling"
    assert "multi_provider_noise_cancellation" not in {s.technique for s in strategies}
