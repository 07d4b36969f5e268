"""Gate vocabulary and one-qubit unitary algebra.

Every gate type the engine understands is listed in `GATE_LIBRARY`. The
optimizer stages, the validator and the assembly codec all consult it, so
adding a gate means adding one `GateDefinition` (plus a matrix for
one-qubit gates).
"""

from __future__ import annotations

import cmath
import math
from collections.abc import Callable
from typing import TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, ConfigDict

from qbatch_engine.framework.errors import ValidationError

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Gate

ATOL = 1e-9

Matrix = np.ndarray


class GateDefinition(BaseModel):
    """Static properties of one gate type."""

    model_config = ConfigDict(frozen=True)

    name: str
    num_qubits: int
    num_params: int = 0
    self_inverse: bool = False
    inverse: str | None = None
    rotation: bool = False
    symmetric: bool = False
    unitary: bool = True


def _diag(a: complex, b: complex) -> Matrix:
    return np.array([[a, 0], [0, b]], dtype=complex)


def u3_matrix(theta: float, phi: float, lam: float) -> Matrix:
    """Return the standard U3(theta, phi, lambda) matrix."""
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array(
        [
            [c, -cmath.exp(1j * lam) * s],
            [cmath.exp(1j * phi) * s, cmath.exp(1j * (phi + lam)) * c],
        ],
        dtype=complex,
    )


def _rx(theta: float) -> Matrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=complex)


def _ry(theta: float) -> Matrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -s], [s, c]], dtype=complex)


def _rz(theta: float) -> Matrix:
    return _diag(cmath.exp(-0.5j * theta), cmath.exp(0.5j * theta))


_SQRT_HALF = 1 / math.sqrt(2)

_ONE_QUBIT_MATRICES: dict[str, Callable[..., Matrix]] = {
    "id": lambda: np.eye(2, dtype=complex),
    "x": lambda: np.array([[0, 1], [1, 0]], dtype=complex),
    "y": lambda: np.array([[0, -1j], [1j, 0]], dtype=complex),
    "z": lambda: _diag(1, -1),
    "h": lambda: np.array([[1, 1], [1, -1]], dtype=complex) * _SQRT_HALF,
    "s": lambda: _diag(1, 1j),
    "sdg": lambda: _diag(1, -1j),
    "t": lambda: _diag(1, cmath.exp(0.25j * math.pi)),
    "tdg": lambda: _diag(1, cmath.exp(-0.25j * math.pi)),
    "sx": lambda: 0.5 * np.array([[1 + 1j, 1 - 1j], [1 - 1j, 1 + 1j]], dtype=complex),
    "sxdg": lambda: 0.5 * np.array([[1 - 1j, 1 + 1j], [1 + 1j, 1 - 1j]], dtype=complex),
    "rx": _rx,
    "ry": _ry,
    "rz": _rz,
    "u1": lambda lam: _diag(1, cmath.exp(1j * lam)),
    "u2": lambda phi, lam: u3_matrix(math.pi / 2, phi, lam),
    "u3": u3_matrix,
}

GATE_LIBRARY: dict[str, GateDefinition] = {
    d.name: d
    for d in (
        GateDefinition(name="id", num_qubits=1, self_inverse=True),
        GateDefinition(name="x", num_qubits=1, self_inverse=True),
        GateDefinition(name="y", num_qubits=1, self_inverse=True),
        GateDefinition(name="z", num_qubits=1, self_inverse=True),
        GateDefinition(name="h", num_qubits=1, self_inverse=True),
        GateDefinition(name="s", num_qubits=1, inverse="sdg"),
        GateDefinition(name="sdg", num_qubits=1, inverse="s"),
        GateDefinition(name="t", num_qubits=1, inverse="tdg"),
        GateDefinition(name="tdg", num_qubits=1, inverse="t"),
        GateDefinition(name="sx", num_qubits=1, inverse="sxdg"),
        GateDefinition(name="sxdg", num_qubits=1, inverse="sx"),
        GateDefinition(name="rx", num_qubits=1, num_params=1, rotation=True),
        GateDefinition(name="ry", num_qubits=1, num_params=1, rotation=True),
        GateDefinition(name="rz", num_qubits=1, num_params=1, rotation=True),
        GateDefinition(name="u1", num_qubits=1, num_params=1, rotation=True),
        GateDefinition(name="u2", num_qubits=1, num_params=2, rotation=True),
        GateDefinition(name="u3", num_qubits=1, num_params=3, rotation=True),
        GateDefinition(name="measure", num_qubits=1, unitary=False),
        GateDefinition(name="cx", num_qubits=2, self_inverse=True),
        GateDefinition(name="cy", num_qubits=2, self_inverse=True),
        GateDefinition(name="cz", num_qubits=2, self_inverse=True, symmetric=True),
        GateDefinition(name="swap", num_qubits=2, self_inverse=True, symmetric=True),
        GateDefinition(name="crz", num_qubits=2, num_params=1),
        GateDefinition(name="ccx", num_qubits=3, self_inverse=True),
    )
}


def definition(gate_type: str) -> GateDefinition | None:
    """Return the definition of a gate type, or None if it is unknown."""
    return GATE_LIBRARY.get(gate_type)


def check_gate(gate: Gate) -> None:
    """Validate a gate against the vocabulary.

    Raises:
        ValidationError: If the type is unknown or arity/parameters mismatch.

    """
    spec = GATE_LIBRARY.get(gate.type)
    if spec is None:
        message = f"unknown gate type {gate.type!r}"
        raise ValidationError(
            message,
            code="UNKNOWN_GATE",
            suggested_actions=(
                f"use one of: {', '.join(sorted(GATE_LIBRARY))}",
            ),
        )
    if gate.arity != spec.num_qubits:
        message = (
            f"gate {gate.type!r} acts on {spec.num_qubits} qubit(s), "
            f"got {gate.arity}"
        )
        raise ValidationError(message, code="GATE_ARITY_MISMATCH")
    if len(gate.params) != spec.num_params:
        message = (
            f"gate {gate.type!r} takes {spec.num_params} parameter(s), "
            f"got {len(gate.params)}"
        )
        raise ValidationError(message, code="GATE_PARAMETER_MISMATCH")
    if any(not math.isfinite(p) for p in gate.params):
        message = f"gate {gate.type!r} has a non-finite parameter {gate.params}"
        raise ValidationError(message, code="PARAMETER_OUT_OF_RANGE")


def is_rotation(gate: Gate) -> bool:
    spec = GATE_LIBRARY.get(gate.type)
    return spec is not None and spec.rotation


def same_support(a: Gate, b: Gate) -> bool:
    """Whether two gates act on the same qubits in a compatible order."""
    if a.qubits == b.qubits:
        return True
    spec = GATE_LIBRARY.get(a.type)
    return (
        spec is not None
        and spec.symmetric
        and a.type == b.type
        and set(a.qubits) == set(b.qubits)
    )


def cancels(first: Gate, second: Gate) -> bool:
    """Whether `second` directly undoes `first`.

    Covers self-inverse gates (x, y, z, h, cx, cz, swap, ...) and the
    inverse pairs s/sdg, t/tdg and sx/sxdg.
    """
    if first.params or second.params or not same_support(first, second):
        return False
    spec = GATE_LIBRARY.get(first.type)
    if spec is None:
        return False
    if spec.self_inverse:
        return first.type == second.type
    return spec.inverse == second.type


# =============================================================================
# One-qubit unitary algebra
# =============================================================================


def unitary(gate: Gate) -> Matrix:
    """Return the 2x2 matrix of a one-qubit unitary gate.

    Raises:
        ValueError: If the gate is not a one-qubit unitary gate.

    """
    factory = _ONE_QUBIT_MATRICES.get(gate.type)
    if factory is None or gate.arity != 1:
        message = f"no one-qubit matrix for gate {gate.type!r}"
        raise ValueError(message)
    return factory(*gate.params)


def wrap_angle(angle: float) -> float:
    """Map an angle onto (-pi, pi]."""
    wrapped = math.remainder(angle, 2 * math.pi)
    if math.isclose(wrapped, -math.pi, abs_tol=ATOL):
        return math.pi
    return wrapped


def zyz_angles(matrix: Matrix) -> tuple[float, float, float]:
    """Decompose a 2x2 unitary into U3 angles.

    Returns:
        (theta, phi, lam) such that `u3_matrix(theta, phi, lam)` equals
        `matrix` up to a global phase.

    """
    det = complex(np.linalg.det(matrix))
    special = matrix / cmath.sqrt(det)
    a, b = special[0, 0], special[1, 0]
    theta = 2 * math.atan2(abs(b), abs(a))
    phase_a = cmath.phase(a) if abs(a) > ATOL else 0.0
    phase_b = cmath.phase(b) if abs(b) > ATOL else 0.0
    return theta, wrap_angle(phase_b - phase_a), wrap_angle(-phase_a - phase_b)


def equivalent_up_to_phase(a: Matrix, b: Matrix, atol: float = 1e-8) -> bool:
    """Whether two matrices differ only by a global phase."""
    if a.shape != b.shape:
        return False
    index = np.unravel_index(np.argmax(np.abs(b)), b.shape)
    if abs(a[index]) < atol:
        return False
    phase = a[index] / b[index]
    phase /= abs(phase)
    return bool(np.allclose(a, phase * b, atol=atol))


def is_identity(matrix: Matrix, atol: float = 1e-8) -> bool:
    return equivalent_up_to_phase(matrix, np.eye(matrix.shape[0], dtype=complex), atol)


def diagonal_phase(matrix: Matrix, atol: float = 1e-8) -> float | None:
    """Return `angle` if the matrix equals rz(angle) up to phase, else None."""
    if abs(matrix[0, 1]) > atol or abs(matrix[1, 0]) > atol:
        return None
    return wrap_angle(cmath.phase(matrix[1, 1]) - cmath.phase(matrix[0, 0]))
