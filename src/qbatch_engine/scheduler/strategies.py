from __future__ import annotations

import difflib
import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import TYPE_CHECKING, ClassVar

from qbatch_engine.framework import JobStatus, ValidationError

from .rollup import circuit_complexity

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from qbatch_engine.framework import Job, JobRepository
    from qbatch_engine.noise import NoiseEstimator
    from qbatch_engine.providers import ProviderRegistry

    from .dependencies import DependencyGraph
    from .limits import ResourceTracker

logger = logging.getLogger(__name__)

OPTIONAL_DEPENDENCY_PENALTY = 0.5
DEPENDENT_WEIGHT = 10.0


class SchedulingContext:
    """What the strategies may look at when scoring a job.

    Derived values that never change for a job (complexity, cost) are
    cached per job id.
    """

    def __init__(
        self,
        repository: JobRepository,
        graph: DependencyGraph,
        tracker: ResourceTracker,
        registry: ProviderRegistry,
        estimator: NoiseEstimator,
    ) -> None:
        self._repository = repository
        self._graph = graph
        self._tracker = tracker
        self._registry = registry
        self._estimator = estimator
        self._complexity: dict[str, float] = {}
        self._cost: dict[str, float] = {}
        self._dispatched: Counter[str] = Counter()

    def complexity(self, job: Job) -> float:
        if job.job_id not in self._complexity:
            self._complexity[job.job_id] = circuit_complexity(job.circuit)
        return self._complexity[job.job_id]

    def estimated_cost(self, job: Job) -> float:
        if job.job_id not in self._cost:
            self._cost[job.job_id] = self._estimator.estimate_cost(job.circuit, job.provider)
        return self._cost[job.job_id]

    def provider_load(self, provider: str) -> float:
        return self._tracker.load(self._registry.lookup(provider))

    def dependents(self, job_id: str) -> int:
        return len(self._graph.transitive_dependents(job_id))

    def owner_share(self, owner: str) -> float:
        total = self._dispatched.total()
        return self._dispatched[owner] / total if total else 0.0

    def record_dispatch(self, job: Job) -> None:
        self._dispatched[job.owner] += 1

    def unsatisfied_optional(self, job: Job) -> int:
        return sum(
            1
            for dep in self._graph.dependencies_of(job.job_id)
            if dep.optional
            and self._repository.get_job(dep.job_id).status != JobStatus.COMPLETED
        )


class SchedulingStrategy(ABC):
    """Orders the ready queue; a higher score runs first."""

    name: ClassVar[str]

    def score(self, job: Job, context: SchedulingContext) -> float:
        penalty = OPTIONAL_DEPENDENCY_PENALTY * context.unsatisfied_optional(job)
        return self.base_score(job, context) - penalty

    @abstractmethod
    def base_score(self, job: Job, context: SchedulingContext) -> float:
        message = "`base_score` must be implemented in subclasses of SchedulingStrategy"
        raise NotImplementedError(message)


class FifoStrategy(SchedulingStrategy):
    name = "fifo"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: ARG002, PLR6301
        return -float(job.sequence)


class PriorityStrategy(SchedulingStrategy):
    name = "priority"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: ARG002, PLR6301
        return float(job.priority.weight)


class ResourceAwareStrategy(SchedulingStrategy):
    """Prefers simple circuits on lightly loaded providers."""

    name = "resource-aware"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: PLR6301
        return (
            job.priority.weight
            - context.complexity(job) / 10
            - context.provider_load(job.provider)
        )


class DependencyAwareStrategy(SchedulingStrategy):
    """Runs jobs that unblock the most other jobs first."""

    name = "dependency-aware"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: PLR6301
        return DEPENDENT_WEIGHT * context.dependents(job.job_id) + job.priority.weight


class CostOptimizedStrategy(SchedulingStrategy):
    name = "cost-optimized"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: PLR6301
        return -context.estimated_cost(job)


class FairShareStrategy(SchedulingStrategy):
    """Discounts owners that already received a large share of dispatches."""

    name = "fair-share"

    def base_score(self, job: Job, context: SchedulingContext) -> float:  # noqa: PLR6301
        return job.priority.weight - context.owner_share(job.owner)


def _normalize(name: str) -> str:
    return name.strip().lower().replace("_", "-")


class SchedulingStrategyRegistry:
    """Name to scheduling strategy map.

    Names are matched case-insensitively and `_` is accepted for `-`.
    """

    def __init__(self, strategies: Iterable[SchedulingStrategy] | None = None) -> None:
        self._strategies: dict[str, SchedulingStrategy] = {}
        if strategies is None:
            strategies = (
                FifoStrategy(),
                PriorityStrategy(),
                ResourceAwareStrategy(),
                DependencyAwareStrategy(),
                CostOptimizedStrategy(),
                FairShareStrategy(),
            )
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: SchedulingStrategy, *, replace: bool = False) -> None:
        """Add a strategy under its `name`.

        Raises:
            ValueError: If the name is taken and `replace` is False.

        """
        key = _normalize(strategy.name)
        if key in self._strategies and not replace:
            message = f"scheduling strategy {strategy.name!r} is already registered"
            raise ValueError(message)
        self._strategies[key] = strategy

    def get(self, name: str) -> SchedulingStrategy:
        """Return a strategy by name.

        Raises:
            ValidationError: If no strategy has that name.

        """
        strategy = self._strategies.get(_normalize(name))
        if strategy is not None:
            return strategy
        close = difflib.get_close_matches(_normalize(name), self._strategies, n=1)
        actions = [f"did you mean {close[0]!r}?"] if close else []
        actions.append(f"use one of: {', '.join(self._strategies)}")
        message = f"unknown scheduling strategy {name!r}"
        raise ValidationError(message, code="UNKNOWN_STRATEGY", suggested_actions=actions)

    def names(self) -> list[str]:
        return list(self._strategies)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and _normalize(name) in self._strategies

    def __iter__(self) -> Iterator[SchedulingStrategy]:
        return iter(list(self._strategies.values()))
