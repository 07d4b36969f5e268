"""Built-in provider catalogue.

The three providers differ in connectivity (full, sparse custom, grid) and
error-correction level (logical, advanced, basic), which is what makes the
optimizer and the estimator branch.
"""

from qbatch_engine.framework.enums import ErrorCorrectionLevel
from qbatch_engine.framework.model import ProviderCapability, ResourceLimits

from .registry import ProviderRegistry
from .topology import full_topology, grid_topology, heavy_hex_topology

GOOGLE_WILLOW = "google-willow"
IBM_CONDOR = "ibm-condor"
AMAZON_BRAKET = "amazon-braket"


def _one_qubit(value: float, gates: str) -> dict[str, float]:
    return dict.fromkeys(gates.split(), value)


def google_willow() -> ProviderCapability:
    return ProviderCapability(
        name=GOOGLE_WILLOW,
        qubit_count=1024,
        gate_set=frozenset("h x y z s sdg t tdg cx cz ccx rx ry rz swap".split()),
        topology=full_topology(1024),
        gate_fidelity={
            **_one_qubit(0.9999, "h x y z s sdg t tdg rx ry"),
            "rz": 0.99995,
            "cx": 0.9980,
            "cz": 0.9980,
            "swap": 0.9960,
            "ccx": 0.9850,
        },
        gate_duration={
            **_one_qubit(0.02, "h x y z s sdg t tdg rx ry"),
            "rz": 0.01,
            "cx": 0.15,
            "cz": 0.15,
            "swap": 0.30,
            "ccx": 0.45,
        },
        cost_table={
            **_one_qubit(0.001, "h x y z s sdg t tdg rx ry"),
            "rz": 0.0005,
            "cx": 0.01,
            "cz": 0.01,
            "swap": 0.02,
            "ccx": 0.03,
        },
        coherence_t1=1000.0,
        coherence_t2=500.0,
        error_correction_level=ErrorCorrectionLevel.LOGICAL,
        crosstalk_rate=0.0005,
        readout_error=0.01,
        error_threshold=0.01,
        measurement_duration=0.05,
        measurement_cost=0.005,
        setup_cost=1.0,
        cost_per_second=0.1,
        limits=ResourceLimits(
            max_concurrent_jobs=10,
            max_qubits=1024,
            max_circuit_depth=10000,
            max_jobs_per_hour=1000,
            max_wait_time=600,
        ),
    )


def ibm_condor() -> ProviderCapability:
    return ProviderCapability(
        name=IBM_CONDOR,
        qubit_count=433,
        gate_set=frozenset({"x", "sx", "rz", "cx"}),
        topology=heavy_hex_topology(433),
        gate_fidelity={
            **_one_qubit(0.9998, "h x y z s sdg t tdg rx ry"),
            "sx": 0.9997,
            "rz": 0.9999,
            "cx": 0.9970,
            "cz": 0.9965,
            "swap": 0.9940,
            "ccx": 0.9820,
        },
        gate_duration={
            **_one_qubit(0.03, "h x y z s sdg t tdg sx rx ry"),
            "rz": 0.02,
            "cx": 0.25,
            "cz": 0.30,
            "swap": 0.50,
            "ccx": 0.75,
        },
        cost_table={
            **_one_qubit(0.002, "h x y z s t tdg rx ry"),
            "sx": 0.0015,
            "sdg": 0.0015,
            "rz": 0.001,
            "cx": 0.015,
            "cz": 0.018,
            "swap": 0.025,
        },
        coherence_t1=150.0,
        coherence_t2=80.0,
        error_correction_level=ErrorCorrectionLevel.ADVANCED,
        crosstalk_rate=0.002,
        readout_error=0.015,
        error_threshold=0.05,
        measurement_duration=0.08,
        measurement_cost=0.008,
        setup_cost=0.5,
        cost_per_second=0.08,
        limits=ResourceLimits(
            max_concurrent_jobs=15,
            max_qubits=433,
            max_circuit_depth=5000,
            max_jobs_per_hour=500,
            max_wait_time=900,
        ),
    )


def amazon_braket() -> ProviderCapability:
    return ProviderCapability(
        name=AMAZON_BRAKET,
        qubit_count=256,
        gate_set=frozenset("h x y z s sdg cx cz rx ry rz swap".split()),
        topology=grid_topology(16, 16),
        gate_fidelity={
            **_one_qubit(0.9997, "h x y z s sdg t tdg rx ry"),
            "rz": 0.99985,
            "cx": 0.9965,
            "cz": 0.9960,
            "swap": 0.9930,
            "ccx": 0.9800,
        },
        gate_duration={
            **_one_qubit(0.025, "h x y z s sdg t tdg rx ry"),
            "rz": 0.015,
            "cx": 0.20,
            "cz": 0.25,
            "swap": 0.40,
            "ccx": 0.60,
        },
        cost_table={
            **_one_qubit(0.0015, "h x y z s sdg t tdg rx ry"),
            "rz": 0.0008,
            "cx": 0.012,
            "cz": 0.015,
            "swap": 0.020,
        },
        coherence_t1=200.0,
        coherence_t2=100.0,
        error_correction_level=ErrorCorrectionLevel.BASIC,
        crosstalk_rate=0.0015,
        readout_error=0.02,
        error_threshold=0.1,
        measurement_duration=0.10,
        measurement_cost=0.006,
        setup_cost=0.3,
        cost_per_second=0.05,
        limits=ResourceLimits(
            max_concurrent_jobs=25,
            max_qubits=256,
            max_circuit_depth=3000,
            max_jobs_per_hour=2000,
            max_wait_time=300,
        ),
    )


def default_registry() -> ProviderRegistry:
    """Return a fresh registry holding the three built-in providers."""
    return ProviderRegistry([google_willow(), ibm_condor(), amazon_braket()])
