from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from qbatch_engine.circuit.gates import check_gate
from qbatch_engine.framework.errors import ValidationError

from .topology import is_local

if TYPE_CHECKING:
    from qbatch_engine.framework.model import Circuit, ProviderCapability

logger = logging.getLogger(__name__)


class ValidationIssue(BaseModel):
    """One finding of a circuit/provider compatibility check."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    suggested_actions: tuple[str, ...] = ()
    gate_index: int | None = None


class ValidationReport(BaseModel):
    """Errors make the circuit unrunnable on the provider; warnings do not."""

    provider: str
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_circuit(
    circuit: Circuit,
    capability: ProviderCapability,
    *,
    estimated_error: float | None = None,
) -> ValidationReport:
    """Check a circuit against a provider's static capability.

    Args:
        circuit: The circuit to check.
        capability: The target provider.
        estimated_error: Optional error probability from the estimator, used
            for the error-threshold warning.

    Returns:
        The report. Only permanently unsatisfiable conditions are errors.

    """
    report = ValidationReport(provider=capability.name)

    for index, gate in enumerate(circuit.gates):
        try:
            check_gate(gate)
        except ValidationError as e:
            report.errors.append(
                ValidationIssue(
                    code=e.code,
                    message=f"gate #{index}: {e.message}",
                    suggested_actions=e.suggested_actions,
                    gate_index=index,
                )
            )

    max_qubits = min(capability.qubit_count, capability.limits.max_qubits)
    if circuit.qubit_count > max_qubits:
        report.errors.append(
            ValidationIssue(
                code="QUBIT_LIMIT_EXCEEDED",
                message=(
                    f"circuit needs {circuit.qubit_count} qubits but "
                    f"{capability.name} offers at most {max_qubits}"
                ),
                suggested_actions=(
                    f"reduce the circuit to at most {max_qubits} qubits",
                    "split the workload into smaller circuits",
                    "choose a provider with more qubits",
                ),
            )
        )

    depth = circuit.depth()
    if depth > capability.limits.max_circuit_depth:
        report.errors.append(
            ValidationIssue(
                code="DEPTH_LIMIT_EXCEEDED",
                message=(
                    f"circuit depth {depth} exceeds the {capability.name} "
                    f"limit of {capability.limits.max_circuit_depth}"
                ),
                suggested_actions=(
                    "enable gate cancellation and merging to shorten the circuit",
                    "choose a provider with a higher depth limit",
                ),
            )
        )

    non_native = sorted(
        {g.type for g in circuit.gates if not capability.supports(g.type)}
    )
    if non_native:
        report.warnings.append(
            ValidationIssue(
                code="NON_NATIVE_GATES",
                message=(
                    f"gates {', '.join(non_native)} are not native on "
                    f"{capability.name} and will be transpiled"
                ),
            )
        )

    topology = capability.topology
    if not topology.is_fully_connected:
        non_adjacent = sum(
            1 for g in circuit.gates if not is_local(topology, g.qubits)
        )
        if non_adjacent:
            report.warnings.append(
                ValidationIssue(
                    code="NON_ADJACENT_QUBITS",
                    message=(
                        f"{non_adjacent} multi-qubit gate(s) act on qubits that "
                        f"are not adjacent on {capability.name}"
                    ),
                    suggested_actions=("enable layout mapping",),
                )
            )

    if estimated_error is not None and estimated_error > capability.error_threshold:
        report.warnings.append(
            ValidationIssue(
                code="ERROR_ABOVE_THRESHOLD",
                message=(
                    f"estimated error {estimated_error:.3f} exceeds the "
                    f"{capability.name} threshold {capability.error_threshold}"
                ),
                suggested_actions=("apply the recommended error mitigations",),
            )
        )

    return report


def ensure_valid(
    circuit: Circuit,
    capability: ProviderCapability,
    *,
    estimated_error: float | None = None,
) -> ValidationReport:
    """Validate and raise on the first error.

    Raises:
        ValidationError: If the report holds any error.

    """
    report = validate_circuit(circuit, capability, estimated_error=estimated_error)
    if report.errors:
        first = report.errors[0]
        logger.info(
            "circuit rejected",
            extra={
                "provider": capability.name,
                "code": first.code,
                "errors": len(report.errors),
            },
        )
        raise ValidationError(
            first.message,
            code=first.code,
            suggested_actions=first.suggested_actions,
        )
    return report
