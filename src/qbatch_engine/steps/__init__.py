from .estimate_step import EstimateStep
from .execute_step import ExecuteStep
from .job_status_step import JobStatusStep
from .optimize_step import OptimizeStep
from .transitions import advance

__all__ = [
    "EstimateStep",
    "ExecuteStep",
    "JobStatusStep",
    "OptimizeStep",
    "advance",
]
