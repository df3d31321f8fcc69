"""Rule evaluation engine.

Evaluation order:
1. Load rules for the product line from the rule provider
2. Keep active rules for the requested phase
3. Order by priority (desc), then creation time (asc); ties keep provider order
4. Keep rules whose scope tags match the request scope
5. For each rule: evaluate condition groups, apply actions on match

Conditions always read the context as supplied. Actions read and write a
shared accumulator so later actions and rules see earlier effects on the
same field. Rejection is recorded as data (``_rejected``/``_rejectReason``)
and never raised.
"""

import copy
import logging
import math
import time
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from rating_orchestrator.pipeline.context import ExecutionScope
from rating_orchestrator.rules.actions import Accumulator, apply_action
from rating_orchestrator.rules.operators import check
from rating_orchestrator.schemas.rules import (
    ActionDetail,
    AppliedRuleDetail,
    ConditionDetail,
    Rule,
    RuleCondition,
    RuleDryRun,
    RuleEvaluation,
    SkippedRule,
)
from rating_orchestrator.utils.conditions import field_operand
from rating_orchestrator.utils.paths import get_path, set_path
from rating_orchestrator.utils.timing import elapsed_ms

logger = logging.getLogger(__name__)

ScopeLike = Union[ExecutionScope, Mapping[str, Any], None]


def _as_scope(scope: ScopeLike) -> ExecutionScope:
    if isinstance(scope, ExecutionScope):
        return scope
    return ExecutionScope.from_dict(dict(scope or {}))


def _created_key(rule: Rule) -> float:
    if rule.created_at is None:
        return math.inf
    return rule.created_at.timestamp()


def order_rules(rules: Iterable[Rule], phase: Optional[str] = None) -> List[Rule]:
    """Active rules for ``phase``, highest priority first, oldest first on ties."""
    selected = [
        r for r in rules
        if r.is_active and (phase is None or r.phase is None or r.phase == phase)
    ]
    return sorted(selected, key=lambda r: (-r.priority, _created_key(r)))


def scope_matches(rule: Rule, scope: ExecutionScope) -> bool:
    """OR within a scope type, AND across types; untagged rules match everything."""
    if not rule.scope_tags:
        return True
    by_type: Dict[str, List[str]] = OrderedDict()
    for tag in rule.scope_tags:
        by_type.setdefault(tag.scope_type, []).append(tag.scope_value)
    for scope_type, values in by_type.items():
        requested = scope.get(scope_type)
        if not requested or requested not in values:
            return False
    return True


def evaluate_condition(condition: RuleCondition, context: Mapping[str, Any]) -> bool:
    actual = field_operand(context, condition.field, condition.operator)
    return check(condition.operator, actual, condition.value)


def conditions_match(conditions: List[RuleCondition], context: Mapping[str, Any]) -> bool:
    """AND within a logical group, OR across groups; no conditions always match."""
    if not conditions:
        return True
    groups: Dict[int, List[RuleCondition]] = OrderedDict()
    for condition in conditions:
        groups.setdefault(condition.logical_group or 0, []).append(condition)
    return any(
        all(evaluate_condition(c, context) for c in group)
        for group in groups.values()
    )


def ordered_actions(rule: Rule):
    return sorted(rule.actions, key=lambda a: a.sort_order)


def merged_state(context: Mapping[str, Any], modified: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep copy of ``context`` with every accumulated field written at its path."""
    state = copy.deepcopy(dict(context))
    for path, value in modified.items():
        set_path(state, path, copy.deepcopy(value))
    return state


class RuleEngine:
    """Evaluates a product line's rules against a request context."""

    def __init__(self, rule_provider):
        """Initialize the engine.

        Args:
            rule_provider: Object with ``async get_rules(product_line_code, correlation_id)``
                returning a list of :class:`Rule`.
        """
        self.rule_provider = rule_provider

    async def load(self, product_line_code: str, correlation_id: Optional[str] = None) -> List[Rule]:
        rules = await self.rule_provider.get_rules(product_line_code, correlation_id)
        return [r if isinstance(r, Rule) else Rule.model_validate(r) for r in rules or []]

    async def evaluate(
        self,
        product_line_code: str,
        scope: ScopeLike,
        phase: Optional[str],
        context: Mapping[str, Any],
        correlation_id: Optional[str] = None,
    ) -> RuleEvaluation:
        """Evaluate every applicable rule and return the accumulated field deltas.

        Raises:
            ProviderUnavailableError: If the rule provider cannot be reached.
        """
        start = time.monotonic()
        logger.info(f"Evaluating rules for {product_line_code} (phase={phase}) [{correlation_id}]")
        candidates = order_rules(await self.load(product_line_code, correlation_id), phase)
        request_scope = _as_scope(scope)
        matching = [r for r in candidates if scope_matches(r, request_scope)]

        modified: Accumulator = {}
        applied: List[str] = []
        for rule in matching:
            try:
                if not conditions_match(rule.conditions, context):
                    continue
                staged = dict(modified)
                for action in ordered_actions(rule):
                    apply_action(action, staged, context)
            except Exception as e:
                logger.error(f"Error executing rule '{rule.name}': {e}")
                continue
            modified = staged
            applied.append(rule.name)
            logger.debug(f"Rule '{rule.name}' matched and applied")

        logger.info(f"Evaluated {len(matching)} rules, {len(applied)} applied")
        return RuleEvaluation(
            rules_evaluated=len(matching),
            rules_applied=len(applied),
            applied_rule_names=applied,
            modified_fields=modified,
            duration_ms=elapsed_ms(start),
        )

    async def dry_run(
        self,
        product_line_code: str,
        scope: ScopeLike,
        phase: Optional[str],
        context: Mapping[str, Any],
        correlation_id: Optional[str] = None,
    ) -> RuleDryRun:
        """Evaluate like :meth:`evaluate` and also trace every rule's outcome."""
        start = time.monotonic()
        candidates = order_rules(await self.load(product_line_code, correlation_id), phase)
        request_scope = _as_scope(scope)

        result = RuleDryRun(before_state=copy.deepcopy(dict(context)))
        modified: Accumulator = {}
        matching: List[Rule] = []
        for rule in candidates:
            if scope_matches(rule, request_scope):
                matching.append(rule)
            else:
                result.skipped_rules.append(
                    SkippedRule(rule_id=rule.id, rule_name=rule.name, reason="Scope mismatch")
                )

        for rule in matching:
            try:
                detail, modified = self._trace_rule(rule, context, modified)
            except Exception as e:
                logger.error(f"Error in dry-run for rule '{rule.name}': {e}")
                continue
            if detail is None:
                result.skipped_rules.append(
                    SkippedRule(rule_id=rule.id, rule_name=rule.name, reason="Conditions not met")
                )
                continue
            result.applied_rules.append(detail)

        result.rules_evaluated = len(matching)
        result.rules_applied = len(result.applied_rules)
        result.applied_rule_names = [d.rule_name for d in result.applied_rules]
        result.modified_fields = modified
        result.after_state = merged_state(context, modified)
        result.duration_ms = elapsed_ms(start)
        return result

    def test_rule(self, rule: Rule, context: Mapping[str, Any]) -> RuleDryRun:
        """Trace a single rule against ``context``, ignoring scope and phase."""
        start = time.monotonic()
        result = RuleDryRun(before_state=copy.deepcopy(dict(context)), rules_evaluated=1)
        detail, modified = self._trace_rule(rule, context, {})
        if detail is None:
            result.skipped_rules.append(
                SkippedRule(rule_id=rule.id, rule_name=rule.name, reason="Conditions not met")
            )
        else:
            result.applied_rules.append(detail)
            result.applied_rule_names = [rule.name]
            result.rules_applied = 1
        result.modified_fields = modified
        result.after_state = merged_state(context, modified)
        result.duration_ms = elapsed_ms(start)
        return result

    @staticmethod
    def _trace_rule(
        rule: Rule, context: Mapping[str, Any], modified: Accumulator
    ) -> Tuple[Optional[AppliedRuleDetail], Accumulator]:
        conditions_detail = [
            ConditionDetail(
                field=c.field,
                operator=c.operator,
                value=c.value,
                actual=get_path(context, c.field),
                result=evaluate_condition(c, context),
            )
            for c in rule.conditions
        ]
        if not conditions_match(rule.conditions, context):
            return None, modified

        staged = dict(modified)
        actions_applied: List[ActionDetail] = []
        for action in ordered_actions(rule):
            before = staged.get(action.target_field)
            if before is None:
                before = get_path(context, action.target_field)
            apply_action(action, staged, context)
            actions_applied.append(
                ActionDetail(
                    action_type=action.action_type,
                    target_field=action.target_field,
                    value=action.value,
                    before=before,
                    after=staged.get(action.target_field),
                )
            )
        detail = AppliedRuleDetail(
            rule_id=rule.id,
            rule_name=rule.name,
            conditions_met=True,
            conditions_detail=conditions_detail,
            actions_applied=actions_applied,
        )
        return detail, staged
