import pytest

from qbatch_engine.framework import (
    Circuit,
    Gate,
    ProviderNotFoundError,
    TopologyKind,
    ValidationError,
)
from qbatch_engine.providers import (
    AMAZON_BRAKET,
    GOOGLE_WILLOW,
    IBM_CONDOR,
    ProviderRegistry,
    default_registry,
    ensure_valid,
    google_willow,
    grid_topology,
    heavy_hex_topology,
    is_local,
    validate_circuit,
)

# ------------------------------------------------------------
# Registry
# ------------------------------------------------------------


def test_default_registry_holds_builtin_providers():
    registry = default_registry()

    assert registry.names() == [GOOGLE_WILLOW, IBM_CONDOR, AMAZON_BRAKET]
    assert len(registry) == 3
    assert IBM_CONDOR in registry


def test_lookup_unknown_provider_suggests_close_name():
    registry = default_registry()

    with pytest.raises(ProviderNotFoundError) as info:
        registry.lookup("google-wilow")

    assert info.value.code == "PROVIDER_NOT_FOUND"
    assert "did you mean 'google-willow'?" in info.value.suggested_actions


def test_lookup_ignores_case_and_surrounding_space():
    registry = default_registry()

    assert registry.lookup(" Google-Willow ") is registry.lookup(GOOGLE_WILLOW)
    assert "IBM-CONDOR" in registry
    assert registry.lookup("AMAZON-BRAKET").name == AMAZON_BRAKET


def test_names_differing_only_in_case_collide():
    registry = ProviderRegistry([google_willow()])
    shouting = google_willow().model_copy(update={"name": "GOOGLE-WILLOW"})

    with pytest.raises(ValueError, match="already registered"):
        registry.register(shouting)


def test_register_twice_requires_replace():
    registry = ProviderRegistry([google_willow()])
    renamed = google_willow().model_copy(update={"qubit_count": 16})

    with pytest.raises(ValueError, match="already registered"):
        registry.register(renamed)
    registry.register(renamed, replace=True)

    assert registry.lookup(GOOGLE_WILLOW).qubit_count == 16


def test_builtin_providers_differ_in_connectivity():
    registry = default_registry()

    kinds = {p.name: p.topology.kind for p in registry}

    assert kinds == {
        GOOGLE_WILLOW: TopologyKind.FULL,
        IBM_CONDOR: TopologyKind.CUSTOM,
        AMAZON_BRAKET: TopologyKind.GRID,
    }


def test_capability_fallback_lookups():
    condor = default_registry().lookup(IBM_CONDOR)

    # crz has no table entry and falls back to the cx entry.
    assert condor.fidelity_of(Gate.of("crz", 0, 1, params=(0.1,))) == condor.gate_fidelity["cx"]
    assert condor.duration_of(Gate.of("measure", 0)) == condor.measurement_duration
    assert condor.supports("measure")
    assert not condor.supports("h")


# ------------------------------------------------------------
# Topologies
# ------------------------------------------------------------


def test_grid_topology_neighbours():
    grid = grid_topology(3, 3)

    assert grid.neighbors(4) == frozenset({1, 3, 5, 7})
    assert grid.distance(0, 8) == 4
    assert is_local(grid, (0, 1))
    assert not is_local(grid, (0, 4))


def test_heavy_hex_rows_are_bridged():
    topology = heavy_hex_topology(14)

    assert topology.are_adjacent(0, 7)
    assert topology.are_adjacent(4, 11)
    assert not topology.are_adjacent(6, 7)
    assert topology.degree(1) == 2


def test_three_qubit_gate_needs_a_connected_path():
    grid = grid_topology(1, 3)

    assert is_local(grid, (0, 1, 2))
    assert is_local(grid_topology(2, 2), (0, 3, 1))
    assert not is_local(grid_topology(1, 4), (0, 1, 3))


# ------------------------------------------------------------
# Validation
# ------------------------------------------------------------


def test_too_wide_circuit_is_rejected():
    circuit = Circuit(qubit_count=2000, gates=(Gate.of("x", 1999),))
    willow = default_registry().lookup(GOOGLE_WILLOW)

    report = validate_circuit(circuit, willow)

    assert not report.is_valid
    assert report.errors[0].code == "QUBIT_LIMIT_EXCEEDED"
    assert report.errors[0].suggested_actions
    with pytest.raises(ValidationError) as info:
        ensure_valid(circuit, willow)
    assert info.value.code == "QUBIT_LIMIT_EXCEEDED"


def test_too_deep_circuit_is_rejected():
    braket = default_registry().lookup(AMAZON_BRAKET)
    circuit = Circuit(qubit_count=1, gates=(Gate.of("x", 0),) * 3001)

    report = validate_circuit(circuit, braket)

    assert [e.code for e in report.errors] == ["DEPTH_LIMIT_EXCEEDED"]


def test_unknown_gate_is_an_error_with_its_index():
    circuit = Circuit(qubit_count=1, gates=(Gate.of("x", 0), Gate.of("foo", 0)))

    report = validate_circuit(circuit, google_willow())

    assert report.errors[0].code == "UNKNOWN_GATE"
    assert report.errors[0].gate_index == 1


def test_non_native_and_non_adjacent_gates_are_warnings():
    condor = default_registry().lookup(IBM_CONDOR)
    circuit = Circuit(qubit_count=3, gates=(Gate.of("h", 0), Gate.of("cx", 0, 2)))

    report = validate_circuit(circuit, condor, estimated_error=0.2)

    assert report.is_valid
    assert [w.code for w in report.warnings] == [
        "NON_NATIVE_GATES",
        "NON_ADJACENT_QUBITS",
        "ERROR_ABOVE_THRESHOLD",
    ]
