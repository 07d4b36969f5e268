from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .buffer import Buffer
from .exception_handler import PipelineExceptionHandler
from .pipeline import PipelineExecutor
from .step import Step

if TYPE_CHECKING:
    from qbatch_engine.utils.di_container import DiContainer


class PipelineBuilder:
    """Assembles a `PipelineExecutor` from the `pipeline_executor` section.

    Only the executor is built here; the service wires the registry,
    repository, backend and engines around it.

    Example::

        pipeline_executor:
          pipeline: [job_status_step, ready_buffer, optimize_step, execute_step]
          exception_handler: recovery_exception_handler
    """

    @staticmethod
    def build(pipeline_config: dict[str, Any], dicon: DiContainer) -> PipelineExecutor:
        """Resolve every named node and the optional exception handler.

        Raises:
            ValueError: If the pipeline lists no nodes.
            TypeError: If a node is neither a `Step` nor a `Buffer`, or the
                handler is not a `PipelineExceptionHandler`.

        """
        names = pipeline_config.get("pipeline") or []
        if not names:
            message = "pipeline_executor.pipeline must name at least one node"
            raise ValueError(message)

        nodes: list[Step | Buffer] = []
        for name in names:
            node = dicon.get(name)
            if not isinstance(node, (Step, Buffer)):
                message = f"pipeline node {name!r} is a {type(node).__name__}, not a Step or Buffer"
                raise TypeError(message)
            nodes.append(node)

        handler = None
        handler_name = pipeline_config.get("exception_handler")
        if handler_name:
            handler = dicon.get(handler_name)
            if not isinstance(handler, PipelineExceptionHandler):
                message = f"exception handler {handler_name!r} is a {type(handler).__name__}"
                raise TypeError(message)

        return PipelineExecutor(pipeline=nodes, exception_handler=handler)
