from __future__ import annotations

import pydantic
from pydantic import BaseModel, ConfigDict

from qbatch_engine.framework.enums import ErrorKind, Severity
from qbatch_engine.framework.errors import QBatchError, RecoveryFailedError
from qbatch_engine.framework.model import ErrorDetails


class ErrorContext(BaseModel):
    """Where an error happened."""

    model_config = ConfigDict(frozen=True)

    provider: str | None = None
    job_id: str | None = None
    operation: str | None = None
    retry_count: int = 0


# kind -> (code, severity, recoverable, suggested actions)
_DEFAULTS: dict[ErrorKind, tuple[str, Severity, bool, tuple[str, ...]]] = {
    ErrorKind.VALIDATION: (
        "VALIDATION_ERROR",
        Severity.MEDIUM,
        False,
        ("check the circuit and request parameters",),
    ),
    ErrorKind.COMPILATION: (
        "COMPILATION_FAILED",
        Severity.MEDIUM,
        True,
        ("retry with fewer optimization stages",),
    ),
    ErrorKind.EXECUTION: (
        "EXECUTION_FAILED",
        Severity.HIGH,
        True,
        ("retry the job", "try another provider"),
    ),
    ErrorKind.NETWORK: (
        "NETWORK_ERROR",
        Severity.MEDIUM,
        True,
        ("check network connectivity",),
    ),
    ErrorKind.AUTH: (
        "AUTHENTICATION_FAILED",
        Severity.CRITICAL,
        False,
        ("refresh the provider credentials",),
    ),
    ErrorKind.RESOURCE: (
        "RESOURCE_EXHAUSTED",
        Severity.MEDIUM,
        True,
        ("wait for capacity to free up", "reduce the batch size"),
    ),
    ErrorKind.TIMEOUT: (
        "TIMEOUT",
        Severity.MEDIUM,
        True,
        ("retry later", "try another provider"),
    ),
    ErrorKind.UNKNOWN: (
        "UNKNOWN_ERROR",
        Severity.HIGH,
        False,
        ("contact support with the error details",),
    ),
}

# Checked in order; the first keyword found in the message decides the kind.
_KEYWORDS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.AUTH, ("unauthorized", "forbidden", "credential", "authentication", "api key")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out", "deadline")),
    (ErrorKind.NETWORK, ("connection", "network", "unreachable", "dns")),
    (ErrorKind.RESOURCE, ("quota", "capacity", "rate limit", "exhausted", "out of memory")),
    (ErrorKind.COMPILATION, ("transpil", "compil", "decompos")),
    (ErrorKind.VALIDATION, ("invalid", "malformed", "out of range")),
    (ErrorKind.EXECUTION, ("execution", "backend", "provider")),
)


def _kind_of_builtin(error: BaseException) -> ErrorKind | None:  # noqa: PLR0911
    if isinstance(error, PermissionError):
        return ErrorKind.AUTH
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorKind.NETWORK
    if isinstance(error, MemoryError):
        return ErrorKind.RESOURCE
    if isinstance(error, (pydantic.ValidationError, ValueError, TypeError)):
        return ErrorKind.VALIDATION
    message = str(error).lower()
    for kind, keywords in _KEYWORDS:
        if any(word in message for word in keywords):
            return kind
    return None


def classify(error: BaseException, context: ErrorContext | None = None) -> ErrorDetails:
    """Turn any exception into `ErrorDetails`.

    Engine errors keep their own kind and code. Built-in exceptions map by
    type, anything else by keywords in its message; an error nothing
    matches is `unknown` and not recoverable.
    """
    context = context or ErrorContext()
    where = context.model_dump()

    if isinstance(error, RecoveryFailedError):
        return error.details.evolve(**{k: v for k, v in where.items() if v is not None})
    if isinstance(error, QBatchError):
        return error.to_details(**where)

    kind = _kind_of_builtin(error) or ErrorKind.UNKNOWN
    code, severity, recoverable, actions = _DEFAULTS[kind]
    message = str(error) or error.__class__.__name__
    return ErrorDetails(
        code=code,
        kind=kind,
        severity=severity,
        message=f"{error.__class__.__name__}: {message}",
        recoverable=recoverable,
        suggested_actions=actions,
        **where,
    )
