from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from qbatch_engine.framework.errors import ValidationError
from qbatch_engine.framework.model import Circuit  # noqa: TC001

if TYPE_CHECKING:
    from collections.abc import Iterable

    from qbatch_engine.framework.model import ProviderCapability

logger = logging.getLogger(__name__)


class StageName(StrEnum):
    """Built-in optimizer stages, in canonical pipeline order."""

    GATE_CANCELLATION = "gate_cancellation"
    GATE_MERGING = "gate_merging"
    COMMUTATION = "commutation"
    LAYOUT_MAPPING = "layout_mapping"
    TRANSPILATION = "transpilation"
    COST_OPTIMIZATION = "cost_optimization"
    ERROR_MITIGATION = "error_mitigation"


class StageOutcome(BaseModel):
    """What a stage produced.

    Attributes:
        circuit: The transformed circuit.
        changes: Number of rewrites the stage performed.
        trace: Human-readable description of what happened.
        fidelity_credit: Log-fidelity the stage expects to win back beyond
            what the static estimate sees (mitigation only).
        layout: Logical to physical qubit map, if the stage remapped qubits.
        detail: Stage-specific counters.

    """

    model_config = ConfigDict(frozen=True)

    circuit: Circuit
    changes: int = 0
    trace: tuple[str, ...] = ()
    fidelity_credit: float = 0.0
    layout: dict[int, int] | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


class OptimizationStage(ABC):
    """One provider-aware circuit transformation."""

    name: ClassVar[str]

    def supports(self, provider: ProviderCapability) -> bool:  # noqa: ARG002, PLR6301
        """Whether the stage is meaningful for the provider."""
        return True

    @abstractmethod
    def apply(self, circuit: Circuit, provider: ProviderCapability) -> StageOutcome:
        """Transform the circuit.

        Raises:
            NotImplementedError: If not implemented in subclass.

        """
        message = "`apply` must be implemented in subclasses of OptimizationStage."
        raise NotImplementedError(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class StageRegistry:
    """Name to stage map.

    Built-in stages run in `StageName` order; stages registered under any
    other name run afterwards, in registration order.
    """

    def __init__(self, stages: Iterable[OptimizationStage] = ()) -> None:
        self._stages: dict[str, OptimizationStage] = {}
        for stage in stages:
            self.register(stage)

    def register(self, stage: OptimizationStage, *, replace: bool = False) -> None:
        """Add a stage.

        Raises:
            ValueError: If the name is taken and `replace` is False.

        """
        if stage.name in self._stages and not replace:
            message = f"stage {stage.name!r} is already registered"
            raise ValueError(message)
        self._stages[stage.name] = stage
        logger.debug("optimizer stage registered", extra={"stage": stage.name})

    def get(self, name: str) -> OptimizationStage:
        """Return a stage by name.

        Raises:
            ValidationError: If the name is unknown.

        """
        stage = self._stages.get(name)
        if stage is None:
            message = f"unknown optimization stage {name!r}"
            raise ValidationError(
                message,
                code="UNKNOWN_STAGE",
                suggested_actions=(f"use one of: {', '.join(self.names())}",),
            )
        return stage

    def names(self) -> list[str]:
        return [stage.name for stage in self.ordered()]

    def ordered(self, subset: Iterable[str] | None = None) -> list[OptimizationStage]:
        """Return stages in execution order, optionally restricted to `subset`.

        Raises:
            ValidationError: If `subset` names an unknown stage.

        """
        wanted = None
        if subset is not None:
            wanted = {str(name) for name in subset}
            for name in wanted:
                self.get(name)
        canonical = [s for s in StageName if s.value in self._stages]
        extra = [n for n in self._stages if n not in set(StageName)]
        return [
            self._stages[str(name)]
            for name in [*canonical, *extra]
            if wanted is None or str(name) in wanted
        ]
