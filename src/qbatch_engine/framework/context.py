from __future__ import annotations

from collections import UserDict
from typing import Any

from pydantic import BaseModel, ConfigDict

from .backend import ExecutionBackend  # noqa: TC001
from .job_repository import JobRepository  # noqa: TC001


class GlobalContext(BaseModel):
    """A context shared across all jobs and steps.

    Besides the raw configuration it carries the engine-wide collaborators
    that steps and handlers reach through the context:

    - provider_registry: `qbatch_engine.providers.ProviderRegistry`
    - optimizer: `qbatch_engine.optimizer.CircuitOptimizer`
    - estimator: `qbatch_engine.noise.NoiseEstimator`
    - recovery_engine: `qbatch_engine.recovery.RecoveryEngine`
    - resource_tracker: `qbatch_engine.scheduler.ResourceTracker`
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: dict[str, Any]
    job_repository: JobRepository | None = None
    backend: ExecutionBackend | None = None
    provider_registry: Any = None
    optimizer: Any = None
    estimator: Any = None
    recovery_engine: Any = None
    resource_tracker: Any = None


class JobContext(UserDict):
    """Job-related context with attribute-style access.

    JobContext behaves like a mutable mapping for storing per-job execution
    state (the scheduling strategy, recovery bookkeeping and so on) that
    does not belong on the Job model itself.
    """

    def __init__(
        self,
        initial: dict | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> None:
        """Initialize a JobContext.

        Args:
            initial:
                Optional initial key-value pairs for the context. If None, an
                empty mapping is created.

            **kwargs:
                Additional key-value pairs to be inserted into the mapping.

        """
        super().__init__(initial or {}, **kwargs)

        # The pipeline appends (step_phase, cursor) tuples for debugging.
        self.data.setdefault("step_history", [])

    # ------------------------------------------------------------------
    # attribute-style access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:  # noqa: ANN401
        """Retrieve an attribute from the internal data store.

        Raises:
            AttributeError: If the key is not found in the data store.

        """
        if name != "data" and name in self.data:
            return self.data[name]
        message = f"{self.__class__.__name__!r} object has no attribute {name!r}"
        raise AttributeError(message)

    def __setattr__(self, name: str, value: Any) -> None:  # noqa: ANN401
        if name == "data":
            super().__setattr__(name, value)
        else:
            self.data[name] = value

    def __delattr__(self, name: str) -> None:
        """Delete an attribute from the internal data store.

        Raises:
            AttributeError: If the key is reserved or not found.

        """
        if name in {"data", "step_history"}:
            message = f"'{name}' is a reserved attribute and cannot be deleted"
            raise AttributeError(message)
        if name in self.data:
            del self.data[name]
        else:
            message = f"{self.__class__.__name__!r} object has no attribute {name!r}"
            raise AttributeError(message)
