import asyncio
import logging

from qbatch_engine.circuit import qasm
from qbatch_engine.framework import Circuit, Gate, Job
from qbatch_engine.service import QuantumWorkloadService
from qbatch_engine.utils import (
    load_config,
    mask_sensitive_info,
    parse_args,
    setup_logging,
)

BELL_PAIR = Circuit(
    qubit_count=2,
    gates=(
        Gate.of("h", 0),
        Gate.of("cx", 0, 1),
        Gate.of("measure", 0),
        Gate.of("measure", 1),
    ),
)


async def main(argv: list[str] | None = None) -> None:
    """Run one batch through the engine and log the outcome."""
    args = parse_args(argv)

    # Load the configuration file
    config = load_config(args.config)
    # Setup logging
    logging_config = load_config(args.logging)
    setup_logging(logging_config, level=args.log_level)
    logger = logging.getLogger("qbatch_engine")

    logger.info("starting qbatch engine")
    logger.info("config=%s", mask_sensitive_info(config))

    circuits = [qasm.load(path) for path in args.qasm] or [BELL_PAIR]

    async with QuantumWorkloadService.from_config(config) as service:
        jobs = []
        for index, circuit in enumerate(circuits):
            provider = args.provider
            if provider is None:
                suggestions = service.suggest_provider(circuit)
                provider = suggestions[0].provider if suggestions else "google-willow"
            jobs.append(Job(name=f"circuit-{index}", circuit=circuit, provider=provider))

        batch_id = await service.submit_batch(jobs, args.strategy)
        batch = await service.wait_for_batch(batch_id)

        logger.info(
            "batch finished",
            extra={
                "batch_id": batch_id,
                "status": batch.status,
                "estimated_cost": batch.metrics.estimated_cost,
            },
        )
        for job in batch.jobs:
            logger.info(
                "job summary",
                extra={
                    "job_id": job.job_id,
                    "status": job.status,
                    "provider": job.provider,
                    "fidelity": job.fidelity.overall_fidelity if job.fidelity else None,
                    "counts": job.result.counts if job.result else None,
                    "error": job.error.message if job.error else None,
                },
            )


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
