"""Pipeline execution: context, handler registry and step executor."""

from rating_orchestrator.pipeline.context import ExecutionContext, ExecutionScope
from rating_orchestrator.pipeline.executor import PipelineExecutor
from rating_orchestrator.pipeline.registry import StepHandler, StepHandlerRegistry

__all__ = [
    "ExecutionContext",
    "ExecutionScope",
    "PipelineExecutor",
    "StepHandler",
    "StepHandlerRegistry",
]
