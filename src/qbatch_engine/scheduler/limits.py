from __future__ import annotations

import logging
import time
from collections import deque
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Callable

    from qbatch_engine.framework import Job, ProviderCapability

logger = logging.getLogger(__name__)

SUBMISSION_WINDOW = 3600.0


class ProviderUsage(BaseModel):
    """Point-in-time resource usage of one provider."""

    provider: str
    running_jobs: int
    qubits_in_use: int
    submissions_last_hour: int


class _Slots:
    def __init__(self) -> None:
        self.jobs: dict[str, int] = {}
        self.submissions: deque[float] = deque()


class ResourceTracker:
    """Admission control against per-provider `ResourceLimits`.

    A job holds its slot from admission until it reaches a terminal state,
    retries included. Exceeding a cap is never an error here: the job simply
    is not admitted yet.

    Args:
        clock: Monotonic clock in seconds, injectable for tests.

    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._providers: dict[str, _Slots] = {}
        self._owner: dict[str, str] = {}

    def _slots(self, provider: str) -> _Slots:
        return self._providers.setdefault(provider, _Slots())

    def _recent(self, slots: _Slots) -> int:
        horizon = self._clock() - SUBMISSION_WINDOW
        while slots.submissions and slots.submissions[0] <= horizon:
            slots.submissions.popleft()
        return len(slots.submissions)

    def fits(self, job: Job, capability: ProviderCapability) -> bool:
        limits = capability.limits
        slots = self._slots(capability.name)
        if job.job_id in slots.jobs:
            return True
        if len(slots.jobs) >= limits.max_concurrent_jobs:
            return False
        max_qubits = min(capability.qubit_count, limits.max_qubits)
        if sum(slots.jobs.values()) + job.circuit.qubit_count > max_qubits:
            return False
        return self._recent(slots) < limits.max_jobs_per_hour

    def acquire(self, job: Job, capability: ProviderCapability) -> bool:
        """Admit the job if every cap allows it.

        Returns:
            True if the job now holds a slot.

        """
        if not self.fits(job, capability):
            return False
        slots = self._slots(capability.name)
        if job.job_id not in slots.jobs:
            slots.jobs[job.job_id] = job.circuit.qubit_count
            slots.submissions.append(self._clock())
            self._owner[job.job_id] = capability.name
            logger.debug(
                "resources acquired",
                extra={"job_id": job.job_id, "provider": capability.name},
            )
        return True

    def release(self, job_id: str) -> bool:
        """Free the slot held by a job. Releasing twice is a no-op."""
        provider = self._owner.pop(job_id, None)
        if provider is None:
            return False
        self._providers[provider].jobs.pop(job_id, None)
        logger.debug("resources released", extra={"job_id": job_id, "provider": provider})
        return True

    def holds(self, job_id: str) -> bool:
        return job_id in self._owner

    def load(self, capability: ProviderCapability) -> float:
        """Fraction of the concurrent-job cap in use."""
        slots = self._slots(capability.name)
        return len(slots.jobs) / capability.limits.max_concurrent_jobs

    def usage(self, provider: str) -> ProviderUsage:
        slots = self._slots(provider)
        return ProviderUsage(
            provider=provider,
            running_jobs=len(slots.jobs),
            qubits_in_use=sum(slots.jobs.values()),
            submissions_last_hour=self._recent(slots),
        )
