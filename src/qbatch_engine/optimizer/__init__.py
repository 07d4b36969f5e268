from .cancellation import GateCancellationStage
from .commutation import CommutationStage
from .cost import CostOptimizationStage, cheaper_equivalent
from .layout import LayoutMappingStage, greedy_layout, remap
from .merging import GateMergingStage, merge_run
from .mitigation import ErrorMitigationStage
from .optimizer import (
    ALGORITHM_PREFIX,
    CONSERVATIVE_STAGES,
    CircuitOptimizer,
    default_stage_registry,
)
from .stage import OptimizationStage, StageName, StageOutcome, StageRegistry
from .transpilation import TranspilationStage, decompose_one_qubit, rewrite

__all__ = [
    "ALGORITHM_PREFIX",
    "CONSERVATIVE_STAGES",
    "CircuitOptimizer",
    "CommutationStage",
    "CostOptimizationStage",
    "ErrorMitigationStage",
    "GateCancellationStage",
    "GateMergingStage",
    "LayoutMappingStage",
    "OptimizationStage",
    "StageName",
    "StageOutcome",
    "StageRegistry",
    "TranspilationStage",
    "cheaper_equivalent",
    "decompose_one_qubit",
    "default_stage_registry",
    "greedy_layout",
    "merge_run",
    "remap",
    "rewrite",
]
