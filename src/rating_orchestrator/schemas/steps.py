"""Pydantic models for orchestrator flows and per-step policies.

Steps are supplied read-only by the flow provider. ``condition`` and
``resilience`` may sit at the top level of a step or inside its
``config``; the top-level value wins.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError

from rating_orchestrator.schemas.base import CamelModel

logger = logging.getLogger(__name__)


class StepCondition(CamelModel):
    """Gate evaluated against ``working`` before a step runs."""

    field: str = Field(description="Dot-path into the working payload")
    operator: str = Field(default="eq", description="eq, neq, gt, gte, lt, lte, in, not_in, exists")
    value: Any = Field(default=None, description="Expected value (list for in/not_in)")


class RetryPolicy(CamelModel):
    """Retry a raising handler with exponential backoff."""

    max_attempts: int = Field(default=1, ge=1)
    backoff_ms: int = Field(default=1000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)


class CircuitBreakerPolicy(CamelModel):
    """Short-circuit a step after repeated failures."""

    failure_threshold: int = Field(default=5, ge=1)
    reset_after_ms: int = Field(default=30000, ge=0)


class StepResilience(CamelModel):
    """Failure policy for one step."""

    timeout: Optional[int] = Field(default=None, description="Per-step timeout in ms")
    retry: Optional[RetryPolicy] = None
    circuit_breaker: Optional[CircuitBreakerPolicy] = None
    on_failure: str = Field(default="stop", description="stop halts the pipeline; anything else continues")


class OrchestratorStep(CamelModel):
    """One configured unit of work in a flow."""

    id: str = ""
    step_order: float = 0
    step_type: str
    name: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    condition: Optional[Any] = None
    resilience: Optional[Dict[str, Any]] = None

    @property
    def display_name(self) -> str:
        return self.name or self.step_type

    def effective_condition(self) -> Optional[Any]:
        """Return the step's condition, preferring the top-level field."""
        if self.condition is not None:
            return self.condition
        return (self.config or {}).get("condition")

    def effective_resilience(self) -> StepResilience:
        """Parse the step's resilience policy, defaulting on bad input."""
        raw = self.resilience
        if raw is None:
            raw = (self.config or {}).get("resilience")
        if not raw:
            return StepResilience()
        try:
            return StepResilience.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Invalid resilience config on step '{self.display_name}', using defaults: {e}")
            return StepResilience()


class CustomFlow(CamelModel):
    """A named, reusable sub-flow run by ``run_custom_flow`` steps."""

    id: str
    name: str = ""
    steps: List[OrchestratorStep] = Field(default_factory=list)


def order_active_steps(steps: List[OrchestratorStep]) -> List[OrchestratorStep]:
    """Drop inactive steps and stable-sort the rest by ``step_order``."""
    return sorted((s for s in steps if s.is_active), key=lambda s: s.step_order)
