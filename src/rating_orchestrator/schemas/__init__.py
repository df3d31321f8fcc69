"""Pydantic models shared across the orchestrator."""

from rating_orchestrator.schemas.base import CamelModel
from rating_orchestrator.schemas.mappings import FieldMapping, MappingDefinition, SystemRegistration
from rating_orchestrator.schemas.results import (
    ExecutionResult,
    HandlerResult,
    HealthStatus,
    RateResponse,
    StepResult,
    StepStatus,
    ValidationResult,
)
from rating_orchestrator.schemas.rules import (
    Rule,
    RuleAction,
    RuleCondition,
    RuleDryRun,
    RuleEvaluation,
    ScopeTag,
)
from rating_orchestrator.schemas.steps import (
    CircuitBreakerPolicy,
    CustomFlow,
    OrchestratorStep,
    RetryPolicy,
    StepCondition,
    StepResilience,
    order_active_steps,
)

__all__ = [
    "CamelModel",
    "CircuitBreakerPolicy",
    "CustomFlow",
    "ExecutionResult",
    "FieldMapping",
    "HandlerResult",
    "HealthStatus",
    "MappingDefinition",
    "OrchestratorStep",
    "RateResponse",
    "RetryPolicy",
    "Rule",
    "RuleAction",
    "RuleCondition",
    "RuleDryRun",
    "RuleEvaluation",
    "ScopeTag",
    "StepCondition",
    "StepResilience",
    "StepResult",
    "StepStatus",
    "SystemRegistration",
    "ValidationResult",
    "order_active_steps",
]
