"""Pipeline executor: runs an ordered step list against one execution context.

Execution order per step:
1. Rule-requested skip (``working._skipSteps``) and step condition -> skipped
2. Circuit breaker open -> failed
3. Handler lookup; no handler -> skipped
4. Handler invocation with optional timeout and retry
5. ``onFailure`` policy on a failed result (``stop`` halts the run)

The executor never raises for a well-formed step list: handler exceptions,
timeouts and bad conditions all become step results.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.pipeline.registry import StepHandler, StepHandlerRegistry
from rating_orchestrator.pipeline.resilience import CircuitBreakerBook, call_with_retry
from rating_orchestrator.schemas.results import (
    ExecutionResult,
    HandlerResult,
    StepResult,
    StepStatus,
)
from rating_orchestrator.schemas.rules import SKIP_STEPS_FIELD
from rating_orchestrator.schemas.steps import OrchestratorStep, StepResilience, order_active_steps
from rating_orchestrator.utils.conditions import evaluate_step_condition
from rating_orchestrator.utils.timing import elapsed_ms

logger = logging.getLogger(__name__)


def coerce_handler_result(raw: Any) -> HandlerResult:
    """Accept a HandlerResult or a plain ``{status, output, error}`` dict."""
    if isinstance(raw, HandlerResult):
        return raw
    if raw is None:
        return HandlerResult.completed()
    if isinstance(raw, dict):
        try:
            return HandlerResult.model_validate(raw)
        except ValidationError as e:
            return HandlerResult.failed(f"Handler returned an invalid result: {e}")
    return HandlerResult.failed(f"Handler returned an unsupported result type: {type(raw).__name__}")


class PipelineExecutor:
    """Walks active steps in order and records one StepResult per step."""

    def __init__(self, registry: StepHandlerRegistry) -> None:
        self.registry = registry
        self.breakers = CircuitBreakerBook()

    async def execute(
        self, steps: List[OrchestratorStep], context: ExecutionContext
    ) -> ExecutionResult:
        """Run ``steps`` against ``context``.

        Args:
            steps: Flow steps as supplied by the flow provider (any order,
                inactive steps included).
            context: Fresh context for this request.

        Returns:
            ExecutionResult with overall status ``completed`` unless a failed
            step had ``onFailure="stop"``.
        """
        start = time.monotonic()
        cid = context.correlation_id

        for step in order_active_steps(steps):
            context.current_step = step.step_order
            resilience = step.effective_resilience()

            skip_reason = self._skip_reason(step, context)
            if skip_reason is not None:
                logger.info(f"Skipping step {step.step_order}: {step.display_name} - {skip_reason} [{cid}]")
                context.add_step_result(
                    self._result(step, StepStatus.SKIPPED, 0, output={"reason": skip_reason})
                )
                continue

            breaker = resilience.circuit_breaker
            breaker_key = step.id or step.display_name
            if breaker is not None and self.breakers.is_open(breaker_key, breaker):
                logger.warning(f"Circuit open for step {step.display_name}, short-circuiting [{cid}]")
                result = context.add_step_result(
                    self._result(step, StepStatus.FAILED, 0, error="Circuit breaker open")
                )
                if self._halts(result, resilience):
                    return self._finish(context, StepStatus.FAILED, start)
                continue

            handler = self.registry.get(step.step_type)
            if handler is None:
                logger.error(f"No handler registered for step type: {step.step_type} [{cid}]")
                context.add_step_result(
                    self._result(
                        step,
                        StepStatus.SKIPPED,
                        0,
                        error=f"No handler registered for type: {step.step_type}",
                    )
                )
                continue

            result = context.add_step_result(await self._run_step(handler, step, context, resilience))

            if breaker is not None:
                if result.status == StepStatus.FAILED:
                    self.breakers.record_failure(breaker_key, breaker)
                else:
                    self.breakers.record_success(breaker_key)

            if self._halts(result, resilience):
                logger.error(f"Step {step.display_name} failed, halting execution [{cid}]")
                return self._finish(context, StepStatus.FAILED, start)

        return self._finish(context, StepStatus.COMPLETED, start)

    async def _run_step(
        self,
        handler: StepHandler,
        step: OrchestratorStep,
        context: ExecutionContext,
        resilience: StepResilience,
    ) -> StepResult:
        cid = context.correlation_id
        config: Dict[str, Any] = step.config or {}
        timeout_ms = resilience.timeout
        step_start = time.monotonic()
        logger.info(f"Executing step {step.step_order}: {step.display_name} ({step.step_type}) [{cid}]")

        async def attempt() -> Any:
            if timeout_ms:
                return await asyncio.wait_for(handler.execute(context, config), timeout_ms / 1000)
            return await handler.execute(context, config)

        try:
            raw = await call_with_retry(attempt, resilience.retry, label=f"Step {step.display_name}")
        except asyncio.TimeoutError as e:
            message = f"Step timed out after {timeout_ms}ms" if timeout_ms else (str(e) or "Step timed out")
            logger.error(f"Step {step.display_name}: {message} [{cid}]")
            return self._result(step, StepStatus.FAILED, elapsed_ms(step_start), error=message)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Step {step.display_name} threw: {message} [{cid}]")
            return self._result(step, StepStatus.FAILED, elapsed_ms(step_start), error=message)

        outcome = coerce_handler_result(raw)
        if outcome.status == StepStatus.FAILED:
            logger.warning(f"Step {step.display_name} reported failure: {outcome.error} [{cid}]")
        return self._result(
            step,
            outcome.status,
            elapsed_ms(step_start),
            error=outcome.error,
            output=outcome.output,
        )

    @staticmethod
    def _skip_reason(step: OrchestratorStep, context: ExecutionContext) -> Optional[str]:
        skip_list = context.working.get(SKIP_STEPS_FIELD)
        if isinstance(skip_list, list) and (
            (step.id and step.id in skip_list) or (step.name and step.name in skip_list)
        ):
            return "skipped by rule"
        condition = step.effective_condition()
        if condition is not None and not evaluate_step_condition(condition, context.working):
            return "condition not met"
        return None

    @staticmethod
    def _halts(result: StepResult, resilience: StepResilience) -> bool:
        return result.status == StepStatus.FAILED and (resilience.on_failure or "stop") == "stop"

    @staticmethod
    def _result(
        step: OrchestratorStep,
        status: StepStatus,
        duration_ms: int,
        error: Optional[str] = None,
        output: Optional[Dict[str, Any]] = None,
    ) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_type=step.step_type,
            step_name=step.display_name,
            status=status,
            duration_ms=duration_ms,
            error=error,
            output=output,
        )

    @staticmethod
    def _finish(context: ExecutionContext, status: StepStatus, start: float) -> ExecutionResult:
        return ExecutionResult(
            correlation_id=context.correlation_id,
            status=status,
            step_results=list(context.step_results),
            response=context.response,
            total_duration_ms=elapsed_ms(start),
        )
