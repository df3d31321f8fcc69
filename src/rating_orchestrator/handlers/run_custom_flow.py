"""``run_custom_flow`` step: replay a reusable sub-flow inline."""

import logging
import time
from typing import Any, Dict, List

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.pipeline.executor import coerce_handler_result
from rating_orchestrator.pipeline.registry import StepHandlerRegistry
from rating_orchestrator.providers.protocol import CustomFlowProvider
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, StepStatus, ValidationResult
from rating_orchestrator.schemas.steps import order_active_steps
from rating_orchestrator.utils.conditions import evaluate_step_condition
from rating_orchestrator.utils.timing import elapsed_ms

logger = logging.getLogger(__name__)


class RunCustomFlowHandler:
    """Runs a custom flow's steps through the same registry and context.

    There is no per-sub-step resilience: the first missing handler, failed
    result or exception aborts the sub-flow and fails this step. Sub-steps
    whose condition is false are skipped.
    """

    type = "run_custom_flow"

    def __init__(self, registry: StepHandlerRegistry, flows: CustomFlowProvider):
        self.registry = registry
        self.flows = flows

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        cid = context.correlation_id
        flow_id = config.get("customFlowId")
        if not flow_id:
            return HandlerResult.failed("customFlowId is required")

        try:
            flow = await self.flows.get_custom_flow(str(flow_id), cid)
        except ProviderUnavailableError as e:
            return HandlerResult.failed(f"Failed to fetch custom flow {flow_id}: {e.message}")
        if flow is None:
            return HandlerResult.failed(f"Custom flow {flow_id} not found")

        executed: List[Dict[str, Any]] = []
        for step in order_active_steps(flow.steps):
            condition = step.effective_condition()
            if condition is not None and not evaluate_step_condition(condition, context.working):
                executed.append({"stepName": step.display_name, "status": StepStatus.SKIPPED.value})
                continue

            handler = self.registry.get(step.step_type)
            if handler is None:
                return HandlerResult.failed(
                    f"No handler registered for type: {step.step_type}",
                    output={"customFlowId": flow_id, "stepName": step.display_name, "steps": executed},
                )

            start = time.monotonic()
            try:
                outcome = coerce_handler_result(await handler.execute(context, step.config or {}))
            except Exception as e:
                logger.error(f"Custom flow {flow_id} step {step.display_name} threw: {e} [{cid}]")
                return HandlerResult.failed(
                    str(e) or type(e).__name__,
                    output={"customFlowId": flow_id, "stepName": step.display_name, "steps": executed},
                )

            executed.append(
                {
                    "stepName": step.display_name,
                    "status": outcome.status.value,
                    "durationMs": elapsed_ms(start),
                }
            )
            if outcome.status == StepStatus.FAILED:
                logger.warning(f"Custom flow {flow_id} aborted at {step.display_name} [{cid}]")
                return HandlerResult.failed(
                    outcome.error or f"Step {step.display_name} failed",
                    output={"customFlowId": flow_id, "stepName": step.display_name, "steps": executed},
                )

        return HandlerResult.completed(
            {
                "customFlowId": flow_id,
                "customFlowName": flow.name,
                "stepsExecuted": len(executed),
                "steps": executed,
            }
        )

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        if not config.get("customFlowId"):
            return ValidationResult.from_errors(["customFlowId is required"])
        return ValidationResult.from_errors([])

    async def health_check(self) -> HealthStatus:
        return await probe_provider(self.flows, "custom_flows")
