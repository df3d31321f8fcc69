"""``run_script`` step: user code against the context in the sandbox."""

import asyncio
import logging
import math
from typing import Any, Dict, List

from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.sandbox.runner import (
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    clamp_timeout,
    run_script,
    validate_script,
)
from rating_orchestrator.schemas.results import HandlerResult, ValidationResult
from rating_orchestrator.utils.conditions import to_number

logger = logging.getLogger(__name__)

# slack over the in-sandbox deadline before the step is abandoned
BACKSTOP_GRACE_SECONDS = 1.0


class RunScriptHandler:
    """Runs ``scriptSource`` in a worker thread and adopts its copies on success.

    Config:
        scriptSource: Function body receiving ``request``, ``working``,
            ``response`` and ``scope``.
        timeoutMs: Wall-clock limit, 100..30000 ms.

    A failed or timed-out script leaves the context untouched. If the worker
    thread has not returned shortly after the deadline (a long builtin call
    the trace deadline cannot interrupt) the step fails without waiting for it.
    """

    type = "run_script"

    def __init__(self, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.default_timeout_ms = default_timeout_ms

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        timeout_ms = to_number(config.get("timeoutMs"))
        if math.isnan(timeout_ms) or timeout_ms <= 0:
            timeout_ms = self.default_timeout_ms
        limit = clamp_timeout(timeout_ms)
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    run_script,
                    config.get("scriptSource"),
                    context.request,
                    context.working,
                    context.response,
                    context.scope.to_dict(),
                    limit,
                ),
                limit / 1000 + BACKSTOP_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(f"run_script abandoned after {limit}ms [{context.correlation_id}]")
            return HandlerResult.failed(f"Script timed out after {limit}ms", output={"durationMs": limit})
        if not result.success:
            logger.warning(f"run_script failed: {result.error} [{context.correlation_id}]")
            return HandlerResult.failed(
                result.error or "Script failed", output={"durationMs": result.duration_ms}
            )

        context.working = result.working
        context.response = result.response
        return HandlerResult.completed({"durationMs": result.duration_ms})

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        errors: List[str] = validate_script(config.get("scriptSource"))
        timeout_ms = config.get("timeoutMs")
        if timeout_ms is not None:
            num = to_number(timeout_ms)
            if not (MIN_TIMEOUT_MS <= num <= MAX_TIMEOUT_MS):
                errors.append(f"timeoutMs must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS}")
        return ValidationResult.from_errors(errors)
