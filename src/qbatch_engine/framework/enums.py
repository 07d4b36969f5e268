from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure taxonomy used by the recovery engine."""

    VALIDATION = "validation"
    COMPILATION = "compilation"
    EXECUTION = "execution"
    NETWORK = "network"
    AUTH = "auth"
    RESOURCE = "resource"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class Severity(StrEnum):
    """Severity of an observed error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Priority(StrEnum):
    """Scheduling priority of a job."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> int:
        """Numeric weight used by the scheduling strategies."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class JobStatus(StrEnum):
    """Job lifecycle states."""

    PENDING = "pending"
    QUEUED = "queued"
    OPTIMIZING = "optimizing"
    SUBMITTED = "submitted"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is permitted from this state."""
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


class DependencyKind(StrEnum):
    """What a dependent job consumes from the job it depends on."""

    DATA = "data"
    CIRCUIT = "circuit"
    RESULT = "result"
    RESOURCE = "resource"


class ErrorCorrectionLevel(StrEnum):
    """Error-correction capability of a provider."""

    NONE = "none"
    BASIC = "basic"
    ADVANCED = "advanced"
    LOGICAL = "logical"


class TopologyKind(StrEnum):
    """Shape of a provider's qubit connectivity graph."""

    FULL = "full"
    CUSTOM = "custom"
    GRID = "grid"
