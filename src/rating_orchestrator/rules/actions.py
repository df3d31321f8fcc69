"""Rule actions: field mutations applied to an evaluation accumulator.

Actions never touch the context directly. They read the current value of
their target from the accumulator (earlier actions in the same evaluation),
then from the context, then fall back to ``0``, and write the new value
into the accumulator under the target's dot-path.
"""

import logging
import math
from typing import Any, Callable, Dict, Mapping

from rating_orchestrator.rules.operators import as_text
from rating_orchestrator.schemas.rules import (
    FLAGS_FIELD,
    REJECT_REASON_FIELD,
    REJECTED_FIELD,
    SKIP_STEPS_FIELD,
    RuleAction,
)
from rating_orchestrator.utils.conditions import normalize_number, to_number
from rating_orchestrator.utils.paths import get_path

logger = logging.getLogger(__name__)

Accumulator = Dict[str, Any]


def current_value(target: str, modified: Accumulator, context: Mapping[str, Any]) -> Any:
    """Accumulator value, else context value, else 0."""
    value = modified.get(target)
    if value is None:
        value = get_path(context, target)
    return 0 if value is None else value


def _arithmetic(name: str, op: Callable[[float, float], float]):
    def apply(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
        current = to_number(current_value(action.target_field, modified, context))
        operand = to_number(action.value)
        if math.isnan(current) or math.isnan(operand):
            logger.warning(f"Non-numeric value in {name} action for {action.target_field}")
            return
        modified[action.target_field] = normalize_number(op(current, operand))

    return apply


def _divide(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    current = to_number(current_value(action.target_field, modified, context))
    divisor = to_number(action.value)
    if math.isnan(current) or math.isnan(divisor):
        logger.warning(f"Non-numeric value in divide action for {action.target_field}")
        return
    if divisor == 0:
        logger.warning(f"Division by zero in divide action for {action.target_field}")
        return
    modified[action.target_field] = normalize_number(current / divisor)


def _set(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    modified[action.target_field] = action.value


def _set_premium(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    modified["premium"] = action.value


def _reject(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    modified[REJECTED_FIELD] = True
    modified[REJECT_REASON_FIELD] = action.value


def _appender(field: str):
    def apply(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
        existing = modified.get(field)
        items = list(existing) if isinstance(existing, list) else []
        items.append(as_text(action.value))
        modified[field] = items

    return apply


def _copy_field(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    source = get_path(context, as_text(action.value))
    if source is not None:
        modified[action.target_field] = source


def _append(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    existing = modified.get(action.target_field)
    if existing is None:
        existing = get_path(context, action.target_field)
    if isinstance(existing, list):
        items = list(existing)
    else:
        items = [existing] if existing is not None else []
    items.append(action.value)
    modified[action.target_field] = items


_add = _arithmetic("add", lambda a, b: a + b)
_subtract = _arithmetic("subtract", lambda a, b: a - b)
_multiply = _arithmetic("multiply", lambda a, b: a * b)

ACTIONS: Dict[str, Callable[[RuleAction, Accumulator, Mapping[str, Any]], None]] = {
    "set": _set,
    "set_value": _set,
    "set_field": _set,
    "add": _add,
    "increment": _add,
    "add_to_field": _add,
    "subtract": _subtract,
    "decrement": _subtract,
    "multiply": _multiply,
    "multiply_field": _multiply,
    "apply_factor": _multiply,
    "divide": _divide,
    # value=0.20 is a 20% surcharge / discount
    "surcharge": _arithmetic("surcharge", lambda a, b: a * (1 + b)),
    "discount": _arithmetic("discount", lambda a, b: a * (1 - b)),
    "set_premium": _set_premium,
    "reject": _reject,
    "flag": _appender(FLAGS_FIELD),
    "skip_step": _appender(SKIP_STEPS_FIELD),
    "copy_field": _copy_field,
    "append": _append,
}


def apply_action(action: RuleAction, modified: Accumulator, context: Mapping[str, Any]) -> None:
    """Apply one action to ``modified``; unknown action types are ignored."""
    func = ACTIONS.get(action.action_type)
    if func is None:
        logger.warning(f"Unknown action type: {action.action_type}")
        return
    func(action, modified, context)
