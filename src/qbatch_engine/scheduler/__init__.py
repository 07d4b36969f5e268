from .dependencies import DependencyGraph, blocking_state, find_cycle, required_cycle
from .limits import ProviderUsage, ResourceTracker
from .rollup import (
    actual_resource_usage,
    average_execution_time,
    batch_priority,
    circuit_complexity,
    merge_circuits,
    resource_usage,
    rollup_status,
)
from .scheduler import BatchScheduler
from .strategies import (
    CostOptimizedStrategy,
    DependencyAwareStrategy,
    FairShareStrategy,
    FifoStrategy,
    PriorityStrategy,
    ResourceAwareStrategy,
    SchedulingContext,
    SchedulingStrategy,
    SchedulingStrategyRegistry,
)

__all__ = [
    "BatchScheduler",
    "CostOptimizedStrategy",
    "DependencyAwareStrategy",
    "DependencyGraph",
    "FairShareStrategy",
    "FifoStrategy",
    "PriorityStrategy",
    "ProviderUsage",
    "ResourceAwareStrategy",
    "ResourceTracker",
    "SchedulingContext",
    "SchedulingStrategy",
    "SchedulingStrategyRegistry",
    "actual_resource_usage",
    "average_execution_time",
    "batch_priority",
    "blocking_state",
    "circuit_complexity",
    "find_cycle",
    "merge_circuits",
    "required_cycle",
    "resource_usage",
    "rollup_status",
]
