"""Dense state-vector simulation for small circuits.

Used to sample simulated counts and to check that two circuits implement
the same unitary. Qubit 0 is the most significant axis of the tensor; count
bitstrings are printed with qubit 0 as the rightmost character.
"""

from __future__ import annotations

import cmath
from typing import TYPE_CHECKING

import numpy as np

from .gates import unitary

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, Gate

MAX_SIMULATED_QUBITS = 12

_CX = np.array(
    [[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 0, 1], [0, 0, 1, 0]], dtype=complex
)
_CZ = np.diag([1, 1, 1, -1]).astype(complex)
_SWAP = np.array(
    [[1, 0, 0, 0], [0, 0, 1, 0], [0, 1, 0, 0], [0, 0, 0, 1]], dtype=complex
)


def _controlled(target: np.ndarray) -> np.ndarray:
    matrix = np.eye(4, dtype=complex)
    matrix[2:, 2:] = target
    return matrix


def gate_matrix(gate: Gate) -> np.ndarray:
    """Return the local 2^k x 2^k matrix of a unitary gate.

    The first qubit of the gate is the most significant local index.

    Raises:
        ValueError: If the gate is not unitary or has no matrix.

    """
    if gate.arity == 1:
        return unitary(gate)
    if gate.type == "cx":
        return _CX
    if gate.type == "cz":
        return _CZ
    if gate.type == "swap":
        return _SWAP
    if gate.type == "cy":
        return _controlled(np.array([[0, -1j], [1j, 0]], dtype=complex))
    if gate.type == "crz":
        (theta,) = gate.params
        return _controlled(
            np.diag([cmath.exp(-0.5j * theta), cmath.exp(0.5j * theta)])
        )
    if gate.type == "ccx":
        matrix = np.eye(8, dtype=complex)
        matrix[[6, 7]] = matrix[[7, 6]]
        return matrix
    message = f"no matrix for gate {gate.type!r}"
    raise ValueError(message)


def _apply(state: np.ndarray, matrix: np.ndarray, qubits: tuple[int, ...]) -> np.ndarray:
    k = len(qubits)
    tensor = matrix.reshape((2,) * (2 * k))
    state = np.tensordot(tensor, state, axes=(list(range(k, 2 * k)), list(qubits)))
    return np.moveaxis(state, list(range(k)), list(qubits))


def _check_width(circuit: Circuit) -> None:
    if circuit.qubit_count > MAX_SIMULATED_QUBITS:
        message = (
            f"cannot simulate {circuit.qubit_count} qubits "
            f"(limit {MAX_SIMULATED_QUBITS})"
        )
        raise ValueError(message)


def circuit_unitary(circuit: Circuit) -> np.ndarray:
    """Return the full unitary of a circuit, ignoring measurements."""
    _check_width(circuit)
    n = circuit.qubit_count
    dim = 2**n
    state = np.eye(dim, dtype=complex).reshape((2,) * n + (dim,))
    for gate in circuit.gates:
        if gate.type == "measure":
            continue
        state = _apply(state, gate_matrix(gate), gate.qubits)
    return state.reshape(dim, dim)


def statevector(circuit: Circuit) -> np.ndarray:
    """Return the final state of the circuit applied to |0...0>."""
    _check_width(circuit)
    n = circuit.qubit_count
    state = np.zeros((2,) * n, dtype=complex)
    state[(0,) * n] = 1.0
    for gate in circuit.gates:
        if gate.type == "measure":
            continue
        state = _apply(state, gate_matrix(gate), gate.qubits)
    return state.reshape(2**n)


def probabilities(circuit: Circuit) -> dict[str, float]:
    """Return outcome probabilities keyed by bitstring."""
    amplitudes = statevector(circuit)
    n = circuit.qubit_count
    result = {}
    for index, amplitude in enumerate(amplitudes):
        p = float(abs(amplitude) ** 2)
        if p > 1e-12:
            result[format(index, f"0{n}b")[::-1]] = p
    return result
