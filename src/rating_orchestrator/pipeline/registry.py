"""Step handler registry.

Handlers are registered once at startup and looked up by step type for
every request. Registration after startup is supported (tests swap
handlers) but is not synchronized; register before serving requests.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult
from rating_orchestrator.schemas.steps import OrchestratorStep, StepCondition

logger = logging.getLogger(__name__)


@runtime_checkable
class StepHandler(Protocol):
    """Protocol for step handlers.

    Handlers read from and write to ``context.working``, ``context.response``
    and ``context.enrichments`` only. They report failures through the
    returned ``HandlerResult``; anything they raise is converted to a failed
    step by the executor. ``health_check`` is optional.
    """

    type: str

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        """Run the step against the context."""
        ...

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        """Check a step config without executing it."""
        ...


class StepHandlerRegistry:
    """Maps step-type names to handler instances."""

    def __init__(self) -> None:
        self._handlers: Dict[str, StepHandler] = {}
        self._registered_at: Dict[str, str] = {}

    def register(self, handler: StepHandler) -> None:
        """Register a handler; an existing handler for the type is replaced."""
        if handler.type in self._handlers:
            logger.warning(f"Overwriting existing handler for type: {handler.type}")
        self._handlers[handler.type] = handler
        self._registered_at[handler.type] = datetime.now(timezone.utc).isoformat()
        logger.debug(f"Registered step handler: {handler.type}")

    def get(self, step_type: str) -> Optional[StepHandler]:
        return self._handlers.get(step_type)

    def has(self, step_type: str) -> bool:
        return step_type in self._handlers

    def list(self) -> List[Dict[str, str]]:
        """List registered handler types with their registration time."""
        return [
            {"type": step_type, "registeredAt": self._registered_at.get(step_type, "")}
            for step_type in self._handlers
        ]

    async def health_check_all(self) -> Dict[str, HealthStatus]:
        """Probe every handler; a missing probe counts as healthy."""
        results: Dict[str, HealthStatus] = {}
        for step_type, handler in self._handlers.items():
            probe = getattr(handler, "health_check", None)
            if probe is None:
                results[step_type] = HealthStatus(
                    healthy=True, details={"note": "No health check defined"}
                )
                continue
            try:
                results[step_type] = await probe()
            except Exception as e:
                logger.warning(f"Health check for '{step_type}' raised: {e}")
                results[step_type] = HealthStatus(healthy=False, details={"error": str(e)})
        return results

    def validate_step(self, step: OrchestratorStep) -> ValidationResult:
        """Validate one step's config against its handler."""
        handler = self.get(step.step_type)
        if handler is None:
            return ValidationResult.from_errors(
                [f"No handler registered for type: {step.step_type}"]
            )
        errors: List[str] = []
        condition: Any = step.effective_condition()
        if condition is not None:
            try:
                StepCondition.model_validate(condition)
            except ValueError as e:
                errors.append(f"Invalid condition: {e}")
        result = handler.validate(step.config or {})
        if not result.valid:
            errors.extend(result.errors or ["Invalid configuration"])
        return ValidationResult.from_errors(errors)
