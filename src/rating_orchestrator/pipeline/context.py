"""Per-request execution context threaded through every pipeline step.

The context is created once per rating request, owned by the pipeline
executor, and mutated only through ``working``, ``response`` and
``enrichments`` by the handlers it invokes. ``request`` is a private deep
copy of the caller payload and is never written to.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rating_orchestrator.schemas.results import StepResult


@dataclass
class ExecutionScope:
    """Scope dimensions used for step conditions and rule matching."""

    state: Optional[str] = None
    coverage: Optional[str] = None
    transaction_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExecutionScope":
        """Build a scope from a camelCase or snake_case dict."""
        data = data or {}
        return cls(
            state=data.get("state"),
            coverage=data.get("coverage"),
            transaction_type=data.get("transactionType", data.get("transaction_type")),
        )

    def get(self, scope_type: str) -> Optional[str]:
        """Look up a dimension by scope-tag type (``transaction_type`` or camelCase)."""
        if scope_type in ("transaction_type", "transactionType"):
            return self.transaction_type
        if scope_type == "state":
            return self.state
        if scope_type == "coverage":
            return self.coverage
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "state": self.state,
            "coverage": self.coverage,
            "transactionType": self.transaction_type,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class ExecutionContext:
    """Mutable state for one rating request."""

    correlation_id: str
    product_line_code: str
    request: Dict[str, Any]
    scope: ExecutionScope = field(default_factory=ExecutionScope)
    transaction_id: Optional[str] = None
    working: Dict[str, Any] = field(default_factory=dict)
    enrichments: Dict[str, Any] = field(default_factory=dict)
    response: Dict[str, Any] = field(default_factory=dict)
    step_results: List[StepResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    current_step: Optional[float] = None

    def __post_init__(self) -> None:
        if self.transaction_id is None:
            self.transaction_id = self.correlation_id

    @classmethod
    def create(
        cls,
        product_line_code: str,
        payload: Dict[str, Any],
        scope: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> "ExecutionContext":
        """Start a context: snapshot the payload and seed ``working`` from it."""
        snapshot = copy.deepcopy(payload or {})
        return cls(
            correlation_id=correlation_id or str(uuid.uuid4()),
            product_line_code=product_line_code,
            request=snapshot,
            scope=ExecutionScope.from_dict(scope),
            working=copy.deepcopy(snapshot),
        )

    def add_step_result(self, result: StepResult) -> StepResult:
        """Append a step result; results are never reordered or edited."""
        self.step_results.append(result)
        return result

