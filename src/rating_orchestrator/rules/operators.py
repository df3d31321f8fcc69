"""Condition operators for rule definitions.

Rules are authored in the rules workspace with a wider operator vocabulary
than step conditions. Equality is loose (``"5"`` equals ``5``), numeric
operators coerce with :func:`to_number`, and ``in``/``not_in`` accept a
list or a comma-separated string and compare by text.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List

from rating_orchestrator.utils.conditions import (
    LOOSE_OPERATORS,
    loose_equals,
    normalize_number,
    to_number,
)

logger = logging.getLogger(__name__)


def as_text(value: Any) -> str:
    """Render a value the way rule authors write it (``true``, ``5``, ``a,b``)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(normalize_number(value))
    if isinstance(value, (list, tuple)):
        return ",".join(as_text(v) for v in value)
    return str(value)


def _candidates(expected: Any) -> List[str]:
    if isinstance(expected, (list, tuple)):
        return [as_text(v) for v in expected]
    return [part.strip() for part in as_text(expected).split(",")]


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)):
        return any(loose_equals(item, expected) for item in actual)
    return as_text(expected) in as_text(actual)


def _is_empty(actual: Any) -> bool:
    return actual is None or actual == "" or (isinstance(actual, (list, tuple, dict)) and len(actual) == 0)


def _between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) < 2:
        return False
    num = to_number(actual)
    low, high = to_number(expected[0]), to_number(expected[1])
    if math.isnan(num) or math.isnan(low) or math.isnan(high):
        return False
    return low <= num <= high


def _regex(actual: Any, expected: Any) -> bool:
    try:
        return re.search(as_text(expected), as_text(actual)) is not None
    except re.error:
        logger.warning(f"Invalid regex in rule condition: {expected!r}")
        return False


RULE_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    **LOOSE_OPERATORS,
    "greater_than": LOOSE_OPERATORS["gt"],
    "greater_than_or_equal": LOOSE_OPERATORS["gte"],
    "less_than": LOOSE_OPERATORS["lt"],
    "less_than_or_equal": LOOSE_OPERATORS["lte"],
    "contains": _contains,
    "not_contains": lambda a, b: not _contains(a, b),
    "starts_with": lambda a, b: as_text(a).startswith(as_text(b)),
    "ends_with": lambda a, b: as_text(a).endswith(as_text(b)),
    "in": lambda a, b: as_text(a) in _candidates(b),
    "not_in": lambda a, b: as_text(a) not in _candidates(b),
    "is_null": lambda a, _b: a is None,
    "is_not_null": lambda a, _b: a is not None,
    "is_empty": lambda a, _b: _is_empty(a),
    "is_not_empty": lambda a, _b: not _is_empty(a),
    "between": _between,
    "regex": _regex,
}


def check(operator: str, actual: Any, expected: Any) -> bool:
    """Apply ``operator``; unknown operators never match."""
    func = RULE_OPERATORS.get(operator)
    if func is None:
        logger.warning(f"Unknown rule operator: {operator}")
        return False
    return func(actual, expected)
