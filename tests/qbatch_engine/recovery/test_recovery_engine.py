import asyncio
import random
from datetime import UTC, datetime, timedelta

import pytest

from qbatch_engine.framework import (
    AuthenticationError,
    ErrorDetails,
    ErrorKind,
    ExecutionError,
    ExecutionTimeoutError,
    NetworkError,
    ProviderUnavailableError,
    RecoveryFailedError,
    Severity,
)
from qbatch_engine.recovery import (
    BackoffKind,
    ErrorContext,
    RecoveryEngine,
    RecoveryStrategy,
    StrategyRegistry,
    classify,
)

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)

# ------------------------------------------------------------
# Helper factory functions
# ------------------------------------------------------------


def strategy(**overrides) -> RecoveryStrategy:
    fields = {
        "name": "test",
        "kinds": frozenset({ErrorKind.EXECUTION}),
        "max_retries": 3,
        "backoff": BackoffKind.FIXED,
        "base_delay": 1.0,
        "max_delay": 10.0,
    }
    fields.update(overrides)
    return RecoveryStrategy(**fields)


def execution_details(**overrides) -> ErrorDetails:
    return classify(ExecutionError("backend crashed")).evolve(
        **{"timestamp": NOW, **overrides}
    )


class Flaky:
    """Async operation failing with `error` for the first `failures` calls."""

    def __init__(self, error: Exception, failures: int, result: str = "ok"):
        self.error = error
        self.failures = failures
        self.result = result
        self.attempts: list[int] = []

    async def __call__(self, attempt: int) -> str:
        self.attempts.append(attempt)
        if len(self.attempts) <= self.failures:
            raise self.error
        return self.result


# ------------------------------------------------------------
# Strategy selection
# ------------------------------------------------------------


def test_code_match_wins_over_kind_match():
    engine = RecoveryEngine()

    details = classify(ProviderUnavailableError("down"))

    assert engine.select_strategy(details).name == "provider_failure"
    assert engine.select_strategy(execution_details()).name == "execution_timeout"


@pytest.mark.parametrize(
    ("error", "name"),
    [
        (NetworkError("reset"), "network_timeout"),
        (ExecutionTimeoutError("slow"), "network_timeout"),
        (AuthenticationError("expired"), "authentication_failure"),
        (MemoryError(), "resource_exhaustion"),
        (ValueError("bad"), "validation_failure"),
    ],
)
def test_builtin_strategy_selection(error, name):
    assert RecoveryEngine().select_strategy(classify(error)).name == name


def test_unmatched_error_uses_least_automated_strategy():
    details = classify(RuntimeError("boom"))

    assert RecoveryEngine().select_strategy(details).name == "validation_failure"


def test_empty_registry_cannot_select():
    engine = RecoveryEngine(strategies=StrategyRegistry([]))

    with pytest.raises(LookupError):
        engine.select_strategy(execution_details())


def test_register_twice_requires_replace():
    registry = StrategyRegistry()

    with pytest.raises(ValueError, match="already registered"):
        registry.register(strategy(name="network_timeout"))
    registry.register(strategy(name="network_timeout"), replace=True)

    assert registry.get("network_timeout").kinds == frozenset({ErrorKind.EXECUTION})


# ------------------------------------------------------------
# Backoff
# ------------------------------------------------------------


@pytest.mark.parametrize(
    ("backoff", "expected"),
    [
        (BackoffKind.FIXED, [1.0, 1.0, 1.0, 1.0]),
        (BackoffKind.LINEAR, [1.0, 2.0, 3.0, 4.0]),
        (BackoffKind.EXPONENTIAL, [1.0, 2.0, 4.0, 8.0]),
    ],
)
def test_delay_growth(backoff, expected):
    engine = RecoveryEngine()
    chosen = strategy(backoff=backoff)

    delays = [engine.compute_delay(chosen, execution_details(), n) for n in range(4)]

    assert delays == pytest.approx(expected)


def test_delay_is_capped_and_scaled():
    engine = RecoveryEngine(time_scale=0.5)
    chosen = strategy(backoff=BackoffKind.EXPONENTIAL, max_delay=3.0)

    assert engine.compute_delay(chosen, execution_details(), 5) == pytest.approx(1.5)


def test_adaptive_delay_grows_with_recent_errors():
    engine = RecoveryEngine(clock=lambda: NOW)
    chosen = strategy(backoff=BackoffKind.ADAPTIVE, max_delay=100.0)

    quiet = engine.compute_delay(chosen, execution_details(), 1)
    for _ in range(5):
        engine.ledger.append(execution_details())
    engine.ledger.append(execution_details(timestamp=NOW - timedelta(minutes=5)))
    busy = engine.compute_delay(chosen, execution_details(), 1)

    assert quiet == pytest.approx(1.5)
    assert busy == pytest.approx(1.5 * 1.5)


def test_jitter_stays_within_bounds():
    engine = RecoveryEngine(rng=random.Random(7))
    chosen = strategy(jitter=0.5)

    delays = [engine.compute_delay(chosen, execution_details(), 0) for _ in range(20)]

    assert all(1.0 <= d <= 1.5 for d in delays)
    assert len(set(delays)) > 1


def test_zero_time_scale_disables_waits_and_timeouts():
    engine = RecoveryEngine(time_scale=0)
    chosen = strategy(jitter=1.0, timeout=30.0)

    assert engine.compute_delay(chosen, execution_details(), 2) == 0
    assert engine.timeout_for(chosen) is None


def test_negative_time_scale_is_rejected():
    with pytest.raises(ValueError, match="time_scale"):
        RecoveryEngine(time_scale=-1)


# ------------------------------------------------------------
# Follow-up errors
# ------------------------------------------------------------


def test_exhausted_follow_up():
    chosen = strategy(suggested_actions=("reduce circuit depth",))

    follow_up = RecoveryEngine.exhausted(execution_details(), chosen, 3)

    assert follow_up.code == "RETRIES_EXHAUSTED"
    assert follow_up.kind == ErrorKind.EXECUTION
    assert follow_up.severity == Severity.HIGH
    assert follow_up.recoverable is False
    assert follow_up.retry_count == 3
    assert "gave up after 3 retries with test" in follow_up.message
    assert follow_up.suggested_actions[-1] == "reduce circuit depth"


def test_timed_out_follow_up():
    follow_up = RecoveryEngine.timed_out(execution_details(), "test timeout exceeded")

    assert follow_up.code == "RECOVERY_TIMEOUT"
    assert follow_up.kind == ErrorKind.TIMEOUT
    assert follow_up.message.endswith("(test timeout exceeded)")


# ------------------------------------------------------------
# Execution
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_execute_reports_success_while_retries_remain():
    engine = RecoveryEngine(time_scale=0)

    outcome = await engine.execute(strategy(), execution_details(), 2)

    assert outcome.success is True
    assert outcome.follow_up_error is None


@pytest.mark.asyncio
async def test_execute_gives_up_when_exhausted():
    engine = RecoveryEngine(time_scale=0)

    outcome = await engine.execute(strategy(), execution_details(), 3)

    assert outcome.success is False
    assert outcome.follow_up_error.code == "RETRIES_EXHAUSTED"


@pytest.mark.asyncio
async def test_execute_needs_user_for_manual_strategies():
    engine = RecoveryEngine(time_scale=0)
    manual = strategy(requires_user_input=True)

    outcome = await engine.execute(manual, execution_details(), 0)

    assert outcome.success is False
    assert outcome.follow_up_error.code == "EXECUTION_FAILED"
    assert outcome.follow_up_error.recoverable is False


@pytest.mark.asyncio
async def test_backoff_sleep_is_cancellable():
    engine = RecoveryEngine()
    slow = strategy(base_delay=60.0, max_delay=60.0)

    task = asyncio.create_task(engine.execute(slow, execution_details(), 0))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_run_with_recovery_retries_until_success():
    engine = RecoveryEngine(time_scale=0)
    operation = Flaky(NetworkError("reset"), failures=2)

    result = await engine.run_with_recovery(operation, ErrorContext(provider="ibm-condor"))

    assert result == "ok"
    assert operation.attempts == [0, 1, 2]
    assert [d.retry_count for d in engine.ledger.recent()] == [1, 0]
    assert engine.ledger.count_by_provider() == {"ibm-condor": 2}


@pytest.mark.asyncio
async def test_run_with_recovery_exhausts_retries():
    engine = RecoveryEngine(time_scale=0)
    operation = Flaky(ExecutionTimeoutError("no answer"), failures=10)

    with pytest.raises(RecoveryFailedError) as info:
        await engine.run_with_recovery(operation)

    assert operation.attempts == [0, 1, 2, 3]
    assert info.value.kind == ErrorKind.TIMEOUT
    assert info.value.details.code == "RETRIES_EXHAUSTED"
    assert info.value.details.retry_count == 3


@pytest.mark.asyncio
async def test_run_with_recovery_stops_on_errors_needing_the_user():
    engine = RecoveryEngine(time_scale=0)
    operation = Flaky(AuthenticationError("token expired"), failures=1)

    with pytest.raises(RecoveryFailedError) as info:
        await engine.run_with_recovery(operation)

    assert operation.attempts == [0]
    assert info.value.details.code == "AUTHENTICATION_FAILED"
    assert "refresh the provider credentials" in info.value.details.suggested_actions


@pytest.mark.asyncio
async def test_run_with_recovery_times_out():
    impatient = strategy(base_delay=0.05, max_delay=0.05, timeout=0.01, max_retries=5)
    engine = RecoveryEngine(strategies=StrategyRegistry([impatient]))
    operation = Flaky(ExecutionError("backend crashed"), failures=10)

    with pytest.raises(RecoveryFailedError) as info:
        await engine.run_with_recovery(operation)

    assert operation.attempts == [0, 1]
    assert info.value.details.code == "RECOVERY_TIMEOUT"
    assert info.value.details.kind == ErrorKind.TIMEOUT
