"""Pydantic models for step results and the rating audit trail."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from rating_orchestrator.schemas.base import CamelModel


class StepStatus(str, Enum):
    """Outcome of one attempted step."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class HandlerResult(CamelModel):
    """What a step handler reports back to the executor."""

    status: StepStatus = StepStatus.COMPLETED
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def completed(cls, output: Optional[Dict[str, Any]] = None) -> "HandlerResult":
        return cls(status=StepStatus.COMPLETED, output=output)

    @classmethod
    def failed(cls, error: str, output: Optional[Dict[str, Any]] = None) -> "HandlerResult":
        return cls(status=StepStatus.FAILED, error=error, output=output)

    @classmethod
    def skipped(cls, error: Optional[str] = None, output: Optional[Dict[str, Any]] = None) -> "HandlerResult":
        return cls(status=StepStatus.SKIPPED, error=error, output=output)


class ValidationResult(CamelModel):
    """Configuration-time check of a step config."""

    valid: bool = True
    errors: Optional[List[str]] = None

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ValidationResult":
        if errors:
            return cls(valid=False, errors=errors)
        return cls(valid=True)


class HealthStatus(CamelModel):
    healthy: bool = True
    details: Optional[Dict[str, Any]] = None


class StepResult(CamelModel):
    """Audit record for one active step."""

    step_id: str
    step_type: str
    step_name: str
    status: StepStatus
    duration_ms: int = 0
    error: Optional[str] = None
    output: Optional[Dict[str, Any]] = None


class ExecutionResult(CamelModel):
    """Aggregate outcome of one pipeline run."""

    correlation_id: str
    status: StepStatus = Field(description="completed or failed")
    step_results: List[StepResult] = Field(default_factory=list)
    response: Dict[str, Any] = Field(default_factory=dict)
    total_duration_ms: int = 0


class RateResponse(CamelModel):
    """What ``rate()`` returns to its caller."""

    transaction_id: str
    correlation_id: str
    product_line_code: str
    status: StepStatus
    response: Dict[str, Any] = Field(default_factory=dict)
    step_results: List[StepResult] = Field(default_factory=list)
    total_duration_ms: int = 0
