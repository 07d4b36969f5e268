from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import timedelta
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict

from qbatch_engine.framework.enums import ErrorKind, Severity
from qbatch_engine.framework.errors import RecoveryFailedError
from qbatch_engine.framework.model import ErrorDetails, utcnow

from .classifier import ErrorContext, classify
from .ledger import ErrorLedger
from .strategies import BackoffKind, RecoveryStrategy, StrategyRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

T = TypeVar("T")

logger = logging.getLogger(__name__)

ADAPTIVE_WINDOW = timedelta(seconds=60)
ADAPTIVE_CAP = 10


class RecoveryOutcome(BaseModel):
    """Result of executing a recovery strategy once.

    `success` means the caller may retry now. Otherwise `follow_up_error`
    is the terminal error to surface.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    strategy: str
    delay: float = 0.0
    follow_up_error: ErrorDetails | None = None


class RecoveryEngine:
    """Classifies failures, picks recovery strategies and waits out backoff.

    Args:
        strategies: Strategy registry; defaults to the built-in strategies.
        ledger: Error ledger; a fresh one by default.
        rng: Random source for jitter.
        time_scale: Multiplies every delay and timeout. Tests and demos run
            with a small scale.
        clock: Wall clock used for ledger windows.

    """

    def __init__(
        self,
        strategies: StrategyRegistry | None = None,
        ledger: ErrorLedger | None = None,
        rng: random.Random | None = None,
        time_scale: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if time_scale < 0:
            message = f"time_scale must not be negative, got {time_scale}"
            raise ValueError(message)
        self._strategies = strategies or StrategyRegistry()
        self._ledger = ledger or ErrorLedger()
        self._rng = rng or random.Random()  # noqa: S311
        self._time_scale = time_scale
        self._clock = clock

    @property
    def ledger(self) -> ErrorLedger:
        return self._ledger

    @property
    def strategies(self) -> StrategyRegistry:
        return self._strategies

    @property
    def time_scale(self) -> float:
        return self._time_scale

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------

    def classify(
        self, error: BaseException, context: ErrorContext | None = None
    ) -> ErrorDetails:
        return classify(error, context)

    def observe(
        self, error: BaseException, context: ErrorContext | None = None
    ) -> ErrorDetails:
        """Classify an error and record it in the ledger."""
        details = classify(error, context)
        self._ledger.append(details)
        logger.warning(
            "error observed",
            extra={
                "code": details.code,
                "kind": details.kind,
                "severity": details.severity,
                "recoverable": details.recoverable,
                "provider": details.provider,
                "job_id": details.job_id,
                "retry_count": details.retry_count,
            },
        )
        return details

    def select_strategy(self, details: ErrorDetails) -> RecoveryStrategy:
        return self._strategies.select(details)

    # ------------------------------------------------------------------
    # backoff
    # ------------------------------------------------------------------

    def compute_delay(
        self, strategy: RecoveryStrategy, details: ErrorDetails, retry_count: int
    ) -> float:
        """Delay in seconds before retry number `retry_count + 1`."""
        n = retry_count + 1
        if strategy.backoff == BackoffKind.EXPONENTIAL:
            growth = 2.0 ** (n - 1)
        elif strategy.backoff == BackoffKind.LINEAR:
            growth = float(n)
        elif strategy.backoff == BackoffKind.ADAPTIVE:
            recent = self._ledger.count_since(details.kind, self._clock() - ADAPTIVE_WINDOW)
            growth = 1.5 ** (n - 1) * (1 + min(recent, ADAPTIVE_CAP) / ADAPTIVE_CAP)
        else:
            growth = 1.0
        delay = min(strategy.base_delay * growth, strategy.max_delay)
        if strategy.jitter > 0:
            delay += self._rng.uniform(0, strategy.jitter)
        return delay * self._time_scale

    def timeout_for(self, strategy: RecoveryStrategy) -> float | None:
        """Scaled strategy timeout in seconds.

        None when the strategy has no timeout or when the engine runs with
        `time_scale == 0`, where nothing waits and nothing times out.
        """
        return self.scaled(strategy.timeout)

    def scaled(self, seconds: float) -> float | None:
        scaled = seconds * self._time_scale
        return scaled if scaled > 0 else None

    # ------------------------------------------------------------------
    # follow-up errors
    # ------------------------------------------------------------------

    @staticmethod
    def exhausted(
        details: ErrorDetails, strategy: RecoveryStrategy, retry_count: int
    ) -> ErrorDetails:
        return details.evolve(
            code="RETRIES_EXHAUSTED",
            severity=Severity.HIGH,
            recoverable=False,
            message=(
                f"{details.message} (gave up after {retry_count} "
                f"retr{'y' if retry_count == 1 else 'ies'} with {strategy.name})"
            ),
            suggested_actions=_merge(details.suggested_actions, strategy.suggested_actions),
            retry_count=retry_count,
            timestamp=utcnow(),
        )

    @staticmethod
    def needs_user(details: ErrorDetails, strategy: RecoveryStrategy) -> ErrorDetails:
        return details.evolve(
            recoverable=False,
            suggested_actions=_merge(details.suggested_actions, strategy.suggested_actions),
            timestamp=utcnow(),
        )

    @staticmethod
    def timed_out(details: ErrorDetails, reason: str) -> ErrorDetails:
        return details.evolve(
            code="RECOVERY_TIMEOUT",
            kind=ErrorKind.TIMEOUT,
            severity=Severity.HIGH,
            recoverable=False,
            message=f"{details.message} ({reason})",
            suggested_actions=_merge(
                details.suggested_actions, ("retry later", "try another provider")
            ),
            timestamp=utcnow(),
        )

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        strategy: RecoveryStrategy,
        details: ErrorDetails,
        retry_count: int,
    ) -> RecoveryOutcome:
        """Run one step of a strategy.

        For an unattended strategy with retries left this waits out the
        backoff delay (a cancellable `asyncio.sleep`) and reports success.
        Strategies needing user input, non-recoverable errors and exhausted
        retries report failure with a follow-up error and do not wait.
        """
        if not details.recoverable or not strategy.retries_automatically:
            return RecoveryOutcome(
                success=False,
                strategy=strategy.name,
                follow_up_error=self.needs_user(details, strategy),
            )
        if retry_count >= strategy.max_retries:
            logger.warning(
                "retries exhausted",
                extra={
                    "strategy": strategy.name,
                    "job_id": details.job_id,
                    "retry_count": retry_count,
                },
            )
            return RecoveryOutcome(
                success=False,
                strategy=strategy.name,
                follow_up_error=self.exhausted(details, strategy, retry_count),
            )

        delay = self.compute_delay(strategy, details, retry_count)
        logger.info(
            "recovery backoff",
            extra={
                "strategy": strategy.name,
                "job_id": details.job_id,
                "retry": retry_count + 1,
                "delay_s": round(delay, 3),
            },
        )
        await asyncio.sleep(delay)
        return RecoveryOutcome(success=True, strategy=strategy.name, delay=delay)

    async def run_with_recovery(
        self,
        operation: Callable[[int], Awaitable[T]],
        context: ErrorContext | None = None,
    ) -> T:
        """Call `operation(attempt)` until it succeeds or recovery gives up.

        Raises:
            RecoveryFailedError: With the terminal `ErrorDetails` once the
                strategy is exhausted, needs user input or times out.

        """
        context = context or ErrorContext()
        attempt = 0
        started: float | None = None
        while True:
            try:
                return await operation(attempt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                now = time.monotonic()
                started = now if started is None else started
                details = self.observe(e, context.model_copy(update={"retry_count": attempt}))
                strategy = self.select_strategy(details)
                limit = self.timeout_for(strategy)
                if limit is not None and now - started > limit:
                    raise RecoveryFailedError(
                        self.timed_out(details, f"{strategy.name} timeout exceeded")
                    ) from e
                outcome = await self.execute(strategy, details, attempt)
                if not outcome.success:
                    raise RecoveryFailedError(outcome.follow_up_error or details) from e
                attempt += 1


def _merge(*groups: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(action for group in groups for action in group))
