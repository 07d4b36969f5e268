from .estimator import NoiseEstimator
from .mitigation import (
    ADVANCED_RULES,
    BASIC_RULES,
    GENERIC_RULES,
    LOGICAL_RULES,
    MitigationCatalog,
    MitigationInputs,
    MitigationRule,
)

__all__ = [
    "ADVANCED_RULES",
    "BASIC_RULES",
    "GENERIC_RULES",
    "LOGICAL_RULES",
    "MitigationCatalog",
    "MitigationInputs",
    "MitigationRule",
    "NoiseEstimator",
]
