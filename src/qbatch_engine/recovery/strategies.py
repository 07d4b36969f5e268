from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from qbatch_engine.framework.enums import ErrorKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from qbatch_engine.framework.model import ErrorDetails

logger = logging.getLogger(__name__)


class BackoffKind(StrEnum):
    """How the delay grows between retries."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


class RecoveryStrategy(BaseModel):
    """A named policy describing how to respond to a class of failures.

    Delays and the timeout are in seconds. A timeout of 0 means the strategy
    never times out.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kinds: frozenset[ErrorKind] = frozenset()
    codes: frozenset[str] = frozenset()
    automatic: bool = True
    requires_user_input: bool = False
    max_retries: int = Field(default=0, ge=0)
    backoff: BackoffKind = BackoffKind.FIXED
    base_delay: float = Field(default=0.0, ge=0)
    max_delay: float = Field(default=0.0, ge=0)
    jitter: float = Field(default=0.0, ge=0)
    timeout: float = Field(default=0.0, ge=0)
    suggested_actions: tuple[str, ...] = ()

    @property
    def retries_automatically(self) -> bool:
        return self.automatic and not self.requires_user_input

    @property
    def automation_level(self) -> int:
        """2 for unattended retries, 1 for assisted, 0 for manual."""
        if self.retries_automatically:
            return 2
        return 1 if self.automatic else 0


def default_strategies() -> list[RecoveryStrategy]:
    return [
        RecoveryStrategy(
            name="network_timeout",
            kinds=frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT}),
            max_retries=3,
            backoff=BackoffKind.EXPONENTIAL,
            base_delay=1.0,
            max_delay=10.0,
            jitter=0.5,
            timeout=30.0,
            suggested_actions=(
                "check network connectivity",
                "retry on an alternative provider",
            ),
        ),
        RecoveryStrategy(
            name="provider_failure",
            codes=frozenset({"PROVIDER_UNAVAILABLE"}),
            max_retries=1,
            backoff=BackoffKind.FIXED,
            base_delay=5.0,
            max_delay=5.0,
            jitter=1.0,
            timeout=60.0,
            suggested_actions=(
                "check the provider status page",
                "submit the job to an alternative provider",
            ),
        ),
        RecoveryStrategy(
            name="compilation_failure",
            kinds=frozenset({ErrorKind.COMPILATION}),
            max_retries=3,
            backoff=BackoffKind.ADAPTIVE,
            base_delay=2.0,
            max_delay=8.0,
            jitter=0.2,
            timeout=15.0,
            suggested_actions=(
                "retry with a conservative optimization stage set",
                "simplify the circuit",
            ),
        ),
        RecoveryStrategy(
            name="resource_exhaustion",
            kinds=frozenset({ErrorKind.RESOURCE}),
            max_retries=3,
            backoff=BackoffKind.LINEAR,
            base_delay=5.0,
            max_delay=15.0,
            jitter=1.0,
            timeout=600.0,
            suggested_actions=(
                "wait for running jobs to finish",
                "reduce the batch size",
            ),
        ),
        RecoveryStrategy(
            name="execution_timeout",
            kinds=frozenset({ErrorKind.EXECUTION}),
            max_retries=2,
            backoff=BackoffKind.EXPONENTIAL,
            base_delay=5.0,
            max_delay=20.0,
            jitter=1.0,
            timeout=60.0,
            suggested_actions=("reduce circuit depth or shot count",),
        ),
        RecoveryStrategy(
            name="authentication_failure",
            kinds=frozenset({ErrorKind.AUTH}),
            requires_user_input=True,
            max_retries=2,
            backoff=BackoffKind.EXPONENTIAL,
            base_delay=1.0,
            max_delay=10.0,
            timeout=10.0,
            suggested_actions=(
                "refresh the provider credentials",
                "check the account permissions",
            ),
        ),
        RecoveryStrategy(
            name="validation_failure",
            kinds=frozenset({ErrorKind.VALIDATION}),
            automatic=False,
            requires_user_input=True,
            max_retries=0,
            suggested_actions=("fix the request and submit it again",),
        ),
    ]


class StrategyRegistry:
    """Ordered name to strategy map with error matching.

    A strategy listing the error code wins over one listing its kind. When
    nothing matches, the least automated strategy is used.
    """

    def __init__(self, strategies: Iterable[RecoveryStrategy] | None = None) -> None:
        self._strategies: dict[str, RecoveryStrategy] = {}
        for strategy in default_strategies() if strategies is None else strategies:
            self.register(strategy)

    def register(self, strategy: RecoveryStrategy, *, replace: bool = False) -> None:
        """Add a strategy.

        Raises:
            ValueError: If the name is taken and `replace` is False.

        """
        if strategy.name in self._strategies and not replace:
            message = f"recovery strategy {strategy.name!r} is already registered"
            raise ValueError(message)
        self._strategies[strategy.name] = strategy

    def get(self, name: str) -> RecoveryStrategy:
        """Return a strategy by name.

        Raises:
            KeyError: If the name is unknown.

        """
        return self._strategies[name]

    def names(self) -> list[str]:
        return list(self._strategies)

    def __iter__(self) -> Iterator[RecoveryStrategy]:
        return iter(list(self._strategies.values()))

    def select(self, details: ErrorDetails) -> RecoveryStrategy:
        """Pick the strategy for an error.

        Raises:
            LookupError: If the registry is empty.

        """
        strategies = list(self._strategies.values())
        if not strategies:
            message = "no recovery strategy registered"
            raise LookupError(message)
        for strategy in strategies:
            if details.code in strategy.codes:
                return strategy
        for strategy in strategies:
            if details.kind in strategy.kinds:
                return strategy
        fallback = min(strategies, key=lambda s: s.automation_level)
        logger.debug(
            "no recovery strategy matched, using fallback",
            extra={"code": details.code, "kind": details.kind, "strategy": fallback.name},
        )
        return fallback
