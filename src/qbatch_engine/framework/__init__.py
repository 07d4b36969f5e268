from .backend import ExecutionBackend
from .buffer import Buffer
from .context import GlobalContext, JobContext
from .enums import (
    DependencyKind,
    ErrorCorrectionLevel,
    ErrorKind,
    JobStatus,
    Priority,
    Severity,
    TopologyKind,
)
from .errors import (
    AuthenticationError,
    BatchNotFoundError,
    CompilationError,
    ExecutionError,
    ExecutionTimeoutError,
    InvalidTransitionError,
    JobNotFoundError,
    NetworkError,
    NotFoundError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    QBatchError,
    RecoveryFailedError,
    ResourceExhaustedError,
    ValidationError,
)
from .exception_handler import PipelineExceptionHandler
from .job_repository import JobRepository
from .model import (
    BatchJob,
    BatchMetrics,
    Circuit,
    CircuitAnalysis,
    ErrorDetails,
    ErrorStatistics,
    FidelityEstimate,
    Gate,
    ImpactMetrics,
    Job,
    JobDependency,
    JobResult,
    MitigationStrategy,
    OptimizationRecommendation,
    OptimizationResult,
    ProviderCapability,
    ProviderSuggestion,
    ResourceLimits,
    ResourceUsage,
    StageImpact,
    Topology,
)
from .pipeline import PipelineExecutor, StepPhase
from .pipeline_builder import PipelineBuilder
from .step import Step

__all__ = [
    "AuthenticationError",
    "BatchJob",
    "BatchMetrics",
    "BatchNotFoundError",
    "Buffer",
    "Circuit",
    "CircuitAnalysis",
    "CompilationError",
    "DependencyKind",
    "ErrorCorrectionLevel",
    "ErrorDetails",
    "ErrorKind",
    "ErrorStatistics",
    "ExecutionBackend",
    "ExecutionError",
    "ExecutionTimeoutError",
    "FidelityEstimate",
    "Gate",
    "GlobalContext",
    "ImpactMetrics",
    "InvalidTransitionError",
    "Job",
    "JobContext",
    "JobDependency",
    "JobNotFoundError",
    "JobRepository",
    "JobResult",
    "JobStatus",
    "MitigationStrategy",
    "NetworkError",
    "NotFoundError",
    "OptimizationRecommendation",
    "OptimizationResult",
    "PipelineBuilder",
    "PipelineExceptionHandler",
    "PipelineExecutor",
    "Priority",
    "ProviderCapability",
    "ProviderNotFoundError",
    "ProviderSuggestion",
    "ProviderUnavailableError",
    "QBatchError",
    "RecoveryFailedError",
    "ResourceExhaustedError",
    "ResourceLimits",
    "ResourceUsage",
    "Severity",
    "StageImpact",
    "Step",
    "StepPhase",
    "Topology",
    "TopologyKind",
    "ValidationError",
]
