from __future__ import annotations

import threading
from collections import Counter
from typing import TYPE_CHECKING, NamedTuple

from qbatch_engine.framework.model import ErrorStatistics

if TYPE_CHECKING:
    from datetime import date, datetime

    from qbatch_engine.framework.enums import ErrorKind
    from qbatch_engine.framework.model import ErrorDetails

UNKNOWN_PROVIDER = "unknown"


class LedgerKey(NamedTuple):
    kind: str
    provider: str
    day: date


class ErrorLedger:
    """Append-only record of every observed error.

    Entries are grouped by `(kind, provider, day)`. All methods are safe to
    call from several threads; readers get copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._log: list[ErrorDetails] = []
        self._by_key: dict[LedgerKey, list[ErrorDetails]] = {}

    @staticmethod
    def key_of(details: ErrorDetails) -> LedgerKey:
        return LedgerKey(
            kind=str(details.kind),
            provider=details.provider or UNKNOWN_PROVIDER,
            day=details.timestamp.date(),
        )

    def append(self, details: ErrorDetails) -> LedgerKey:
        key = self.key_of(details)
        with self._lock:
            self._log.append(details)
            self._by_key.setdefault(key, []).append(details)
        return key

    def __len__(self) -> int:
        with self._lock:
            return len(self._log)

    def keys(self) -> list[LedgerKey]:
        with self._lock:
            return list(self._by_key)

    def entries(
        self,
        kind: ErrorKind | str | None = None,
        provider: str | None = None,
        day: date | None = None,
    ) -> list[ErrorDetails]:
        """Entries matching every given key component, oldest first."""
        with self._lock:
            return [
                details
                for key, group in self._by_key.items()
                if (kind is None or key.kind == kind)
                and (provider is None or key.provider == provider)
                and (day is None or key.day == day)
                for details in group
            ]

    def recent(self, limit: int = 10, kind: ErrorKind | str | None = None) -> list[ErrorDetails]:
        """The `limit` newest entries, newest first."""
        with self._lock:
            selected = [d for d in reversed(self._log) if kind is None or d.kind == kind]
        return selected[:limit]

    def count_since(
        self,
        kind: ErrorKind | str,
        since: datetime,
        provider: str | None = None,
    ) -> int:
        with self._lock:
            return sum(
                1
                for d in self._log
                if d.kind == kind
                and d.timestamp >= since
                and (provider is None or (d.provider or UNKNOWN_PROVIDER) == provider)
            )

    def count_by_kind(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(str(d.kind) for d in self._log))

    def count_by_provider(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(d.provider or UNKNOWN_PROVIDER for d in self._log))

    def count_by_severity(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(str(d.severity) for d in self._log))

    def statistics(self) -> ErrorStatistics:
        with self._lock:
            total = len(self._log)
            recoverable = sum(1 for d in self._log if d.recoverable)
        return ErrorStatistics(
            total=total,
            by_kind=self.count_by_kind(),
            by_provider=self.count_by_provider(),
            by_severity=self.count_by_severity(),
            recoverable_ratio=recoverable / total if total else 0.0,
        )
