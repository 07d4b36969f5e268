from __future__ import annotations

from typing import TYPE_CHECKING

from qbatch_engine.framework import JobDependency, JobStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from qbatch_engine.framework import Job


def find_cycle(edges: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Return one cycle of the directed graph, or None.

    The cycle is reported as a node path whose first and last entries are
    the same node.
    """
    white, grey, black = 0, 1, 2
    color = dict.fromkeys(edges, white)

    for root in edges:
        if color[root] != white:
            continue
        path = [root]
        stack = [iter(edges[root])]
        color[root] = grey
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = black
                stack.pop()
                continue
            state = color.get(nxt, black)
            if state == grey:
                return [*path[path.index(nxt) :], nxt]
            if state == white:
                color[nxt] = grey
                path.append(nxt)
                stack.append(iter(edges[nxt]))
    return None


class DependencyGraph:
    """Job dependency edges known to the scheduler.

    Edges point from a job to the jobs it depends on. The reverse index
    answers "who is waiting for this job".
    """

    def __init__(self) -> None:
        self._dependencies: dict[str, tuple[JobDependency, ...]] = {}
        self._dependents: dict[str, set[str]] = {}

    def add(self, job: Job) -> None:
        self._dependencies[job.job_id] = tuple(job.dependencies)
        for dep in job.dependencies:
            self._dependents.setdefault(dep.job_id, set()).add(job.job_id)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._dependencies

    def dependencies_of(self, job_id: str) -> tuple[JobDependency, ...]:
        return self._dependencies.get(job_id, ())

    def dependents_of(self, job_id: str) -> list[str]:
        """Direct dependents, in registration order of the dependents."""
        waiting = self._dependents.get(job_id, set())
        return [j for j in self._dependencies if j in waiting]

    def transitive_dependents(self, job_id: str) -> set[str]:
        seen: set[str] = set()
        frontier = [job_id]
        while frontier:
            for dependent in self._dependents.get(frontier.pop(), ()):
                if dependent not in seen:
                    seen.add(dependent)
                    frontier.append(dependent)
        seen.discard(job_id)
        return seen


def required_cycle(jobs: Iterable[Job]) -> list[str] | None:
    """Cycle formed by required dependencies among the given jobs."""
    jobs = list(jobs)
    ids = {job.job_id for job in jobs}
    edges = {
        job.job_id: [d.job_id for d in job.dependencies if not d.optional and d.job_id in ids]
        for job in jobs
    }
    return find_cycle(edges)


def blocking_state(
    dependencies: Iterable[JobDependency], status_of: Mapping[str, JobStatus]
) -> tuple[str, JobDependency | None]:
    """Classify a job's required dependencies.

    Returns:
        `("ready", None)` when every required dependency completed,
        `("failed", dep)` when a required dependency failed or was
        cancelled, `("waiting", dep)` with the first unfinished one
        otherwise.

    """
    waiting = None
    for dep in dependencies:
        if dep.optional:
            continue
        status = status_of[dep.job_id]
        if status in {JobStatus.FAILED, JobStatus.CANCELLED}:
            return "failed", dep
        if status != JobStatus.COMPLETED and waiting is None:
            waiting = dep
    if waiting is not None:
        return "waiting", waiting
    return "ready", None
