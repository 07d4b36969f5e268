"""Rewrite non-native gates into a provider's native gate set.

Rules, tried in order for a non-native gate:

- `swap a,b` -> `cx a,b; cx b,a; cx a,b`
- `cz a,b` -> `h b; cx a,b; h b` and `cx a,b` -> `h b; cz a,b; h b`
- `crz(t) c,t` -> `cx c,t; rz(-t/2) t; cx c,t; rz(t/2) t`
- `cy c,t` -> `sdg t; cx c,t; s t`
- `ccx a,b,c` -> the 6-`cx` decomposition from qelib1
- any one-qubit gate -> `rz`, `u3`, `rz ry rz`, `rz rx rz` or
  `rz sx rz sx rz`, whichever the provider supports first

Rewritten gates that are still not native are rewritten again, up to a
fixed depth. All rules hold up to global phase.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from qbatch_engine.circuit.gates import (
    diagonal_phase,
    is_identity,
    unitary,
    wrap_angle,
    zyz_angles,
)
from qbatch_engine.framework.errors import CompilationError
from qbatch_engine.framework.model import Gate

from .stage import OptimizationStage, StageName, StageOutcome

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, ProviderCapability

MAX_REWRITE_DEPTH = 4

_HALF_PI = math.pi / 2


def _rz(angle: float, qubit: int) -> list[Gate]:
    angle = wrap_angle(angle)
    if math.isclose(angle, 0.0, abs_tol=1e-12):
        return []
    return [Gate.of("rz", qubit, params=(angle,))]


def decompose_one_qubit(gate: Gate, provider: ProviderCapability) -> list[Gate] | None:
    """Express a one-qubit gate with the provider's native gates.

    Returns:
        The replacement sequence, or None if no supported form exists.

    """
    (q,) = gate.qubits
    matrix = unitary(gate)
    if is_identity(matrix):
        return []

    supports = provider.supports
    phase = diagonal_phase(matrix)
    if phase is not None and supports("rz"):
        return _rz(phase, q)

    theta, phi, lam = zyz_angles(matrix)
    if supports("u3"):
        return [Gate.of("u3", q, params=(theta, phi, lam))]
    if supports("rz") and supports("ry"):
        return [*_rz(lam, q), Gate.of("ry", q, params=(theta,)), *_rz(phi, q)]
    if supports("rz") and supports("rx"):
        return [
            *_rz(lam - _HALF_PI, q),
            Gate.of("rx", q, params=(theta,)),
            *_rz(phi + _HALF_PI, q),
        ]
    if supports("rz") and supports("sx"):
        if math.isclose(theta, _HALF_PI, abs_tol=1e-9):
            return [*_rz(lam - _HALF_PI, q), Gate.of("sx", q), *_rz(phi + _HALF_PI, q)]
        return [
            *_rz(lam, q),
            Gate.of("sx", q),
            *_rz(theta + math.pi, q),
            Gate.of("sx", q),
            *_rz(phi + math.pi, q),
        ]
    return None


def _ccx(a: int, b: int, c: int) -> list[Gate]:
    g = Gate.of
    return [
        g("h", c),
        g("cx", b, c),
        g("tdg", c),
        g("cx", a, c),
        g("t", c),
        g("cx", b, c),
        g("tdg", c),
        g("cx", a, c),
        g("t", b),
        g("t", c),
        g("h", c),
        g("cx", a, b),
        g("t", a),
        g("tdg", b),
        g("cx", a, b),
    ]


def rewrite(gate: Gate, provider: ProviderCapability) -> list[Gate] | None:  # noqa: PLR0911
    """Apply one rewrite rule; None if no rule fits."""
    g = Gate.of
    if gate.arity == 1:
        return decompose_one_qubit(gate, provider)

    has_cx = provider.supports("cx")
    has_cz = provider.supports("cz")
    if gate.type == "ccx":
        return _ccx(*gate.qubits)
    a, b = gate.qubits
    if gate.type == "cx" and has_cz:
        return [g("h", b), g("cz", a, b), g("h", b)]
    if not has_cx and not has_cz:
        return None
    if gate.type == "swap":
        return [g("cx", a, b), g("cx", b, a), g("cx", a, b)]
    if gate.type == "cz":
        return [g("h", b), g("cx", a, b), g("h", b)]
    if gate.type == "crz":
        (theta,) = gate.params
        return [
            g("cx", a, b),
            g("rz", b, params=(-theta / 2,)),
            g("cx", a, b),
            g("rz", b, params=(theta / 2,)),
        ]
    if gate.type == "cy":
        return [g("sdg", b), g("cx", a, b), g("s", b)]
    return None


class TranspilationStage(OptimizationStage):
    """Rewrite every gate outside the provider's native set."""

    name = StageName.TRANSPILATION

    def _native(self, gate: Gate, provider: ProviderCapability, depth: int) -> list[Gate]:
        if provider.supports(gate.type):
            return [gate]
        replacement = rewrite(gate, provider) if depth < MAX_REWRITE_DEPTH else None
        if replacement is None:
            message = (
                f"gate {gate.type!r} has no decomposition into the native gates "
                f"of {provider.name} ({', '.join(sorted(provider.gate_set))})"
            )
            raise CompilationError(
                message,
                code="NO_NATIVE_DECOMPOSITION",
                suggested_actions=(
                    "choose a provider that supports this gate",
                    "rewrite the gate manually",
                ),
            )
        return [
            native
            for part in replacement
            for native in self._native(part, provider, depth + 1)
        ]

    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:
        output: list[Gate] = []
        rewritten: dict[str, int] = {}
        for gate in circuit.gates:
            replacement = self._native(gate, provider, 0)
            if replacement != [gate]:
                rewritten[gate.type] = rewritten.get(gate.type, 0) + 1
            output.extend(replacement)

        count = sum(rewritten.values())
        trace = tuple(
            f"transpilation: rewrote {n} {gate_type} gate(s) into native gates"
            for gate_type, n in sorted(rewritten.items())
        ) or ("transpilation: all gates already native",)
        return StageOutcome(
            circuit=circuit.with_gates(output),
            changes=count,
            trace=trace,
            detail={"rewritten": rewritten, "added": len(output) - circuit.gate_count},
        )
