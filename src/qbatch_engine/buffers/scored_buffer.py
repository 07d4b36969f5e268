from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import TYPE_CHECKING, NamedTuple

from qbatch_engine.framework import Buffer, GlobalContext, Job, JobContext

if TYPE_CHECKING:
    from collections.abc import Callable

    Scorer = Callable[[GlobalContext, JobContext, Job], float]
    Admission = Callable[[GlobalContext, JobContext, Job], bool]

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    seq: int
    gctx: GlobalContext
    jctx: JobContext
    job: Job


class ScoredBuffer(Buffer):
    """Ready queue that hands out the best-scored admissible job.

    `get()` picks, among the stored jobs the `admission` callback accepts,
    the one with the highest `scorer` value; ties go to the job stored
    first. Jobs that became terminal while waiting are dropped. A job the
    admission callback rejects stays queued and is reconsidered on the next
    `put`, `wake` or after `poll_interval` seconds.

    The scheduler installs `scorer` and `admission`. Without them the buffer
    is a plain FIFO queue.

    Args:
        max_concurrency: Number of worker tasks the executor spawns.
        poll_interval: Upper bound in seconds between admission re-checks
            while nothing else happens (per-hour caps free up over time).

    """

    def __init__(self, max_concurrency: int = 1, poll_interval: float = 1.0) -> None:
        super().__init__(max_concurrency=max_concurrency)
        if poll_interval <= 0:
            message = f"poll_interval must be positive, got {poll_interval}"
            raise ValueError(message)
        self._poll_interval = poll_interval
        self._entries: list[_Entry] = []
        self._seq = itertools.count()
        self._changed = asyncio.Event()
        self.scorer: Scorer | None = None
        self.admission: Admission | None = None

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    async def put(self, gctx: GlobalContext, jctx: JobContext, job: Job) -> None:
        """Store a job and wake the waiting workers."""
        self._entries.append(_Entry(next(self._seq), gctx, jctx, job))
        logger.debug(
            "job buffered",
            extra={"job_id": job.job_id, "buffered": len(self._entries)},
        )
        self._changed.set()

    async def get(self) -> tuple[GlobalContext, JobContext, Job]:
        """Wait for and remove the best admissible job.

        Returns:
            A tuple `(gctx, jctx, job)`.

        """
        while True:
            entry = self._pick()
            if entry is not None:
                return entry.gctx, entry.jctx, entry.job
            self._changed.clear()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._changed.wait(), self._poll_interval)

    def size(self) -> int:
        return len(self._entries)

    async def discard(self, job_id: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.job.job_id != job_id]
        return len(self._entries) < before

    def wake(self) -> None:
        """Make waiting workers re-evaluate admission now."""
        self._changed.set()

    def _pick(self) -> _Entry | None:
        self._entries = [e for e in self._entries if not e.job.is_terminal]
        ranked = sorted(self._entries, key=lambda e: (-self._score(e), e.seq))
        for entry in ranked:
            if self.admission is None or self.admission(entry.gctx, entry.jctx, entry.job):
                self._entries.remove(entry)
                return entry
        return None

    def _score(self, entry: _Entry) -> float:
        if self.scorer is None:
            return -float(entry.seq)
        return self.scorer(entry.gctx, entry.jctx, entry.job)
