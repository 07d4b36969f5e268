import pytest

from qbatch_engine.framework import (
    Circuit,
    Gate,
    Job,
    JobDependency,
    JobStatus,
    Priority,
    ValidationError,
)
from qbatch_engine.noise import NoiseEstimator
from qbatch_engine.providers import GOOGLE_WILLOW, default_registry
from qbatch_engine.scheduler import (
    DependencyGraph,
    ResourceTracker,
    SchedulingContext,
    SchedulingStrategyRegistry,
)

# ------------------------------------------------------------
# Test doubles and helpers
# ------------------------------------------------------------


class DictRepository:
    """Minimal stand-in exposing the lookup the scheduling context uses."""

    def __init__(self, jobs):
        self.jobs = {job.job_id: job for job in jobs}

    def get_job(self, job_id):
        return self.jobs[job_id]


def make_job(
    job_id: str,
    *,
    gates: int = 1,
    priority: Priority = Priority.MEDIUM,
    owner: str = "default",
    sequence: int = 0,
    deps: tuple[JobDependency, ...] = (),
    status: JobStatus = JobStatus.PENDING,
) -> Job:
    return Job(
        job_id=job_id,
        circuit=Circuit(qubit_count=1, gates=(Gate.of("x", 0),) * gates),
        provider=GOOGLE_WILLOW,
        priority=priority,
        owner=owner,
        sequence=sequence,
        dependencies=list(deps),
        status=status,
    )


def make_context(*jobs: Job) -> tuple[SchedulingContext, ResourceTracker]:
    graph = DependencyGraph()
    for job in jobs:
        graph.add(job)
    registry = default_registry()
    tracker = ResourceTracker()
    context = SchedulingContext(
        DictRepository(jobs), graph, tracker, registry, NoiseEstimator(registry)
    )
    return context, tracker


STRATEGIES = SchedulingStrategyRegistry()


def score(name: str, job: Job, context: SchedulingContext) -> float:
    return STRATEGIES.get(name).score(job, context)


# ------------------------------------------------------------
# Strategies
# ------------------------------------------------------------


def test_fifo_prefers_earlier_submissions():
    early, late = make_job("a", sequence=1), make_job("b", sequence=2)
    context, _ = make_context(early, late)

    assert score("fifo", early, context) > score("fifo", late, context)


def test_priority_uses_weights():
    high, low = make_job("a", priority=Priority.HIGH), make_job("b", priority=Priority.LOW)
    context, _ = make_context(high, low)

    assert score("priority", high, context) == 3.0
    assert score("priority", low, context) == 1.0


def test_dependency_aware_counts_transitive_dependents():
    root = make_job("root")
    mid = make_job("mid", deps=(JobDependency(job_id="root"),))
    leaf = make_job("leaf", deps=(JobDependency(job_id="mid"),))
    context, _ = make_context(root, mid, leaf)

    assert score("dependency-aware", root, context) == 22.0
    assert score("dependency-aware", leaf, context) == 2.0


def test_unsatisfied_optional_dependencies_are_penalized():
    upstream = make_job("up", status=JobStatus.RUNNING)
    waiting = make_job("w", deps=(JobDependency(job_id="up", optional=True),))
    context, _ = make_context(upstream, waiting)

    assert score("priority", waiting, context) == pytest.approx(2.0 - 0.5)

    upstream.status = JobStatus.COMPLETED

    assert score("priority", waiting, context) == pytest.approx(2.0)


def test_cost_optimized_prefers_cheaper_jobs():
    cheap, costly = make_job("a", gates=1), make_job("b", gates=200)
    context, _ = make_context(cheap, costly)

    assert score("cost-optimized", cheap, context) > score("cost-optimized", costly, context)


def test_fair_share_discounts_busy_owners():
    alice, bob = make_job("a", owner="alice"), make_job("b", owner="bob")
    context, _ = make_context(alice, bob)

    context.record_dispatch(alice)
    context.record_dispatch(alice)

    assert score("fair-share", alice, context) == pytest.approx(1.0)
    assert score("fair-share", bob, context) == pytest.approx(2.0)


def test_resource_aware_penalizes_provider_load():
    job = make_job("a")
    context, tracker = make_context(job)
    willow = default_registry().lookup(GOOGLE_WILLOW)

    idle = score("resource-aware", job, context)
    tracker.acquire(make_job("busy"), willow)
    loaded = score("resource-aware", job, context)

    assert idle - loaded == pytest.approx(1 / willow.limits.max_concurrent_jobs)


# ------------------------------------------------------------
# Registry
# ------------------------------------------------------------


def test_registry_names_and_lenient_lookup():
    assert STRATEGIES.names() == [
        "fifo",
        "priority",
        "resource-aware",
        "dependency-aware",
        "cost-optimized",
        "fair-share",
    ]
    assert STRATEGIES.get("FAIR_SHARE").name == "fair-share"
    assert "Cost_Optimized" in STRATEGIES


def test_unknown_strategy_suggests_close_name():
    with pytest.raises(ValidationError) as info:
        STRATEGIES.get("fair-shar")

    assert info.value.code == "UNKNOWN_STRATEGY"
    assert info.value.suggested_actions[0] == "did you mean 'fair-share'?"
