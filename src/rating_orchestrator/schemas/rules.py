"""Pydantic models for rule definitions and evaluation results."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from rating_orchestrator.schemas.base import CamelModel

REJECTED_FIELD = "_rejected"
REJECT_REASON_FIELD = "_rejectReason"
FLAGS_FIELD = "_flags"
SKIP_STEPS_FIELD = "_skipSteps"


class ScopeTag(CamelModel):
    """Associates a rule with one scope dimension value."""

    scope_type: str = Field(description="state, coverage or transaction_type")
    scope_value: str


class RuleCondition(CamelModel):
    """One predicate; conditions sharing a logical group are ANDed."""

    field: str
    operator: str = "equals"
    value: Any = None
    logical_group: int = 0


class RuleAction(CamelModel):
    """One field mutation applied when a rule matches."""

    action_type: str
    target_field: str = ""
    value: Any = None
    sort_order: int = 0


class Rule(CamelModel):
    """A prioritized condition -> action definition for a product line."""

    id: str
    name: str
    product_line_code: str = ""
    priority: int = 0
    is_active: bool = True
    phase: Optional[str] = Field(
        default=None,
        description="pre_rating / post_rating; None applies to every phase",
    )
    created_at: Optional[datetime] = None
    conditions: List[RuleCondition] = Field(default_factory=list)
    actions: List[RuleAction] = Field(default_factory=list)
    scope_tags: List[ScopeTag] = Field(default_factory=list)


class RuleEvaluation(CamelModel):
    """Outcome of one engine evaluation."""

    rules_evaluated: int = 0
    rules_applied: int = 0
    applied_rule_names: List[str] = Field(default_factory=list)
    modified_fields: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = 0

    @property
    def is_rejected(self) -> bool:
        return self.modified_fields.get(REJECTED_FIELD) is True

    @property
    def reject_reason(self) -> Optional[Any]:
        return self.modified_fields.get(REJECT_REASON_FIELD)


class ConditionDetail(CamelModel):
    field: str
    operator: str
    value: Any = None
    actual: Any = None
    result: bool


class ActionDetail(CamelModel):
    action_type: str
    target_field: str
    value: Any = None
    before: Any = None
    after: Any = None


class AppliedRuleDetail(CamelModel):
    rule_id: str
    rule_name: str
    conditions_met: bool = True
    conditions_detail: List[ConditionDetail] = Field(default_factory=list)
    actions_applied: List[ActionDetail] = Field(default_factory=list)


class SkippedRule(CamelModel):
    rule_id: str
    rule_name: str
    reason: str


class RuleDryRun(RuleEvaluation):
    """Evaluation plus a per-rule trace, for previewing rule changes."""

    applied_rules: List[AppliedRuleDetail] = Field(default_factory=list)
    skipped_rules: List[SkippedRule] = Field(default_factory=list)
    before_state: Dict[str, Any] = Field(default_factory=dict)
    after_state: Dict[str, Any] = Field(default_factory=dict)
