from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import numpy as np

from qbatch_engine.circuit.simulation import MAX_SIMULATED_QUBITS, probabilities
from qbatch_engine.framework import (
    ExecutionBackend,
    JobResult,
    ProviderUnavailableError,
)
from qbatch_engine.framework.model import new_id

if TYPE_CHECKING:
    from qbatch_engine.framework import Circuit, Job, ProviderCapability

logger = logging.getLogger(__name__)

MICROSECONDS = 1e-6


class SimulatedBackend(ExecutionBackend):
    """In-process stand-in for a provider.

    Counts are sampled from the ideal outcome distribution of the job's
    logical circuit (dense simulation up to 12 qubits; wider circuits report
    every shot as all zeros). Execution takes the circuit's summed gate
    duration per shot, multiplied by `time_scale`.

    Args:
        time_scale: Multiplies the simulated execution time; 0 runs instantly.
        seed: Seed of the sampling generator.
        failure_rate: Probability that a submission is refused with
            `ProviderUnavailableError`.

    """

    def __init__(
        self,
        time_scale: float = 1.0,
        seed: int | None = None,
        failure_rate: float = 0.0,
    ) -> None:
        if time_scale < 0:
            message = f"time_scale must not be negative, got {time_scale}"
            raise ValueError(message)
        if not 0 <= failure_rate <= 1:
            message = f"failure_rate must be in [0, 1], got {failure_rate}"
            raise ValueError(message)
        self._time_scale = time_scale
        self._failure_rate = failure_rate
        self._rng = np.random.default_rng(seed)

        logger.info(
            "SimulatedBackend was initialized",
            extra={"time_scale": time_scale, "failure_rate": failure_rate},
        )

    async def submit(
        self, job: Job, circuit: Circuit, provider: ProviderCapability
    ) -> str:
        if self._failure_rate and self._rng.random() < self._failure_rate:
            message = f"{provider.name} refused job {job.job_id}"
            raise ProviderUnavailableError(
                message, suggested_actions=("retry later", "try another provider")
            )
        backend_job_id = new_id("sim")
        logger.info(
            "job submitted to backend",
            extra={
                "job_id": job.job_id,
                "backend_job_id": backend_job_id,
                "provider": provider.name,
                "gates": circuit.gate_count,
            },
        )
        await asyncio.sleep(0)
        return backend_job_id

    async def run(
        self,
        backend_job_id: str,
        job: Job,
        circuit: Circuit,
        provider: ProviderCapability,
    ) -> JobResult:
        per_shot = sum(provider.duration_of(g) for g in circuit.gates) * MICROSECONDS
        execution_time = per_shot * job.shots
        await asyncio.sleep(execution_time * self._time_scale)
        return JobResult(
            backend_job_id=backend_job_id,
            shots=job.shots,
            counts=self.sample(job.circuit, job.shots),
            execution_time=execution_time,
        )

    def sample(self, circuit: Circuit, shots: int) -> dict[str, int]:
        """Draw `shots` outcomes keyed by bitstring (qubit 0 rightmost)."""
        if circuit.qubit_count > MAX_SIMULATED_QUBITS:
            return {"0" * circuit.qubit_count: shots}
        distribution = probabilities(circuit)
        outcomes = sorted(distribution)
        weights = np.array([distribution[o] for o in outcomes])
        draws = self._rng.multinomial(shots, weights / weights.sum())
        return {o: int(n) for o, n in zip(outcomes, draws, strict=True) if n}
