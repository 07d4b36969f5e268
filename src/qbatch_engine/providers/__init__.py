from .builtin import (
    AMAZON_BRAKET,
    GOOGLE_WILLOW,
    IBM_CONDOR,
    amazon_braket,
    default_registry,
    google_willow,
    ibm_condor,
)
from .registry import ProviderRegistry
from .topology import full_topology, grid_topology, heavy_hex_topology, is_local
from .validation import (
    ValidationIssue,
    ValidationReport,
    ensure_valid,
    validate_circuit,
)

__all__ = [
    "AMAZON_BRAKET",
    "GOOGLE_WILLOW",
    "IBM_CONDOR",
    "ProviderRegistry",
    "ValidationIssue",
    "ValidationReport",
    "amazon_braket",
    "default_registry",
    "ensure_valid",
    "full_topology",
    "google_willow",
    "grid_topology",
    "heavy_hex_topology",
    "ibm_condor",
    "is_local",
    "validate_circuit",
]
