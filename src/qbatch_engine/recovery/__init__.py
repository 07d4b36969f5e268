from .classifier import ErrorContext, classify
from .engine import RecoveryEngine, RecoveryOutcome
from .ledger import ErrorLedger, LedgerKey
from .strategies import (
    BackoffKind,
    RecoveryStrategy,
    StrategyRegistry,
    default_strategies,
)

__all__ = [
    "BackoffKind",
    "ErrorContext",
    "ErrorLedger",
    "LedgerKey",
    "RecoveryEngine",
    "RecoveryOutcome",
    "RecoveryStrategy",
    "StrategyRegistry",
    "classify",
    "default_strategies",
]
