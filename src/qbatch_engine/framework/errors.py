from __future__ import annotations

from typing import TYPE_CHECKING

from .enums import ErrorKind, Severity

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .model import ErrorDetails


class QBatchError(Exception):
    """Base class of all errors raised by the engine.

    Every subclass pins an `ErrorKind` so that the recovery engine can
    classify it without inspecting the message.

    Args:
        message: Human-readable description.
        code: Stable machine-readable error code.
        severity: Overrides the class default severity.
        suggested_actions: Actions the caller may take to resolve the error.

    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_code: str = "ENGINE_ERROR"
    default_severity: Severity = Severity.HIGH
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        severity: Severity | None = None,
        suggested_actions: Iterable[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.severity = severity or self.default_severity
        self.suggested_actions: tuple[str, ...] = tuple(suggested_actions or ())

    def to_details(
        self,
        *,
        provider: str | None = None,
        job_id: str | None = None,
        operation: str | None = None,
        retry_count: int = 0,
    ) -> ErrorDetails:
        """Return the error as an immutable `ErrorDetails` record."""
        from .model import ErrorDetails  # noqa: PLC0415

        return ErrorDetails(
            code=self.code,
            kind=self.kind,
            severity=self.severity,
            message=self.message,
            recoverable=self.recoverable,
            suggested_actions=self.suggested_actions,
            provider=provider,
            job_id=job_id,
            operation=operation,
            retry_count=retry_count,
        )


class ValidationError(QBatchError):
    """Malformed input, out-of-range parameter or unsatisfiable request."""

    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"
    default_severity = Severity.MEDIUM


class NotFoundError(ValidationError):
    """A referenced entity does not exist."""

    default_code = "NOT_FOUND"


class ProviderNotFoundError(NotFoundError):
    """Unknown provider name."""

    default_code = "PROVIDER_NOT_FOUND"


class JobNotFoundError(NotFoundError):
    """Unknown job id."""

    default_code = "JOB_NOT_FOUND"


class BatchNotFoundError(NotFoundError):
    """Unknown batch id."""

    default_code = "BATCH_NOT_FOUND"


class InvalidTransitionError(QBatchError):
    """A job state change that the lifecycle does not permit."""

    kind = ErrorKind.VALIDATION
    default_code = "INVALID_STATE_TRANSITION"
    default_severity = Severity.MEDIUM


class CompilationError(QBatchError):
    """Transpilation or optimization failure."""

    kind = ErrorKind.COMPILATION
    default_code = "COMPILATION_FAILED"
    default_severity = Severity.MEDIUM
    recoverable = True


class ExecutionError(QBatchError):
    """Failure reported by the execution backend."""

    kind = ErrorKind.EXECUTION
    default_code = "EXECUTION_FAILED"
    recoverable = True


class ProviderUnavailableError(ExecutionError):
    """The provider refused or dropped the job."""

    default_code = "PROVIDER_UNAVAILABLE"


class NetworkError(QBatchError, ConnectionError):
    """Transient transport failure."""

    kind = ErrorKind.NETWORK
    default_code = "NETWORK_ERROR"
    default_severity = Severity.MEDIUM
    recoverable = True


class ExecutionTimeoutError(QBatchError, TimeoutError):
    """An operation did not finish in time."""

    kind = ErrorKind.TIMEOUT
    default_code = "TIMEOUT"
    default_severity = Severity.MEDIUM
    recoverable = True


class AuthenticationError(QBatchError):
    """Credentials were rejected by the provider."""

    kind = ErrorKind.AUTH
    default_code = "AUTHENTICATION_FAILED"
    default_severity = Severity.CRITICAL


class ResourceExhaustedError(QBatchError):
    """Capacity or quota exceeded."""

    kind = ErrorKind.RESOURCE
    default_code = "RESOURCE_EXHAUSTED"
    default_severity = Severity.MEDIUM
    recoverable = True


class RecoveryFailedError(QBatchError):
    """Recovery gave up; `details` holds the terminal error."""

    default_code = "RECOVERY_FAILED"

    def __init__(self, details: ErrorDetails) -> None:
        super().__init__(
            details.message,
            code=details.code,
            severity=details.severity,
            suggested_actions=details.suggested_actions,
        )
        self.kind = details.kind
        self.details = details
