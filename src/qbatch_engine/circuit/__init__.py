from . import qasm
from .gates import (
    GATE_LIBRARY,
    GateDefinition,
    cancels,
    check_gate,
    definition,
    diagonal_phase,
    equivalent_up_to_phase,
    is_identity,
    is_rotation,
    u3_matrix,
    unitary,
    wrap_angle,
    zyz_angles,
)
from .qasm import QasmParseError
from .simulation import circuit_unitary, gate_matrix, probabilities, statevector

__all__ = [
    "GATE_LIBRARY",
    "GateDefinition",
    "QasmParseError",
    "cancels",
    "check_gate",
    "circuit_unitary",
    "definition",
    "diagonal_phase",
    "equivalent_up_to_phase",
    "gate_matrix",
    "is_identity",
    "is_rotation",
    "probabilities",
    "qasm",
    "statevector",
    "u3_matrix",
    "unitary",
    "wrap_angle",
    "zyz_angles",
]
