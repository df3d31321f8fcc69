"""Rule evaluation: scoped, prioritized condition -> action definitions."""

from rating_orchestrator.rules.actions import apply_action
from rating_orchestrator.rules.engine import RuleEngine, conditions_match, scope_matches
from rating_orchestrator.rules.operators import RULE_OPERATORS

__all__ = [
    "RULE_OPERATORS",
    "RuleEngine",
    "apply_action",
    "conditions_match",
    "scope_matches",
]
