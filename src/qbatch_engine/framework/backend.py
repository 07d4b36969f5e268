from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import Circuit, Job, JobResult, ProviderCapability


class ExecutionBackend(ABC):
    """Abstract base class for the component that runs circuits on a provider."""

    @abstractmethod
    async def submit(
        self, job: Job, circuit: Circuit, provider: ProviderCapability
    ) -> str:
        """Hand the circuit over to the provider.

        Args:
            job: The job being submitted.
            circuit: The circuit to execute (usually the optimized one).
            provider: The target provider.

        Returns:
            The backend-side identifier of the submission.

        """
        message = "`submit` must be implemented in subclasses of ExecutionBackend."
        raise NotImplementedError(message)

    @abstractmethod
    async def run(
        self,
        backend_job_id: str,
        job: Job,
        circuit: Circuit,
        provider: ProviderCapability,
    ) -> JobResult:
        """Wait for a submitted circuit to finish.

        Returns:
            The execution result.

        """
        message = "`run` must be implemented in subclasses of ExecutionBackend."
        raise NotImplementedError(message)
