"""Single-field condition evaluation shared by steps and transforms.

A condition is ``{field, operator, value}``. Step conditions use strict
equality; the ``conditional`` transform uses the looser comparison that
mapping authors expect (``"5"`` equals ``5``). Numeric operators coerce
both sides with :func:`to_number`, so a non-numeric side never matches.
An explicit ``None`` coerces to 0, but a field that is absent from the
payload reads as :data:`MISSING` for numeric operators and never matches.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, Mapping, Optional

from rating_orchestrator.utils.paths import get_path

logger = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")

# an absent key or path, as opposed to an explicit None
MISSING = object()

NUMERIC_OPERATORS = frozenset(
    {
        "gt", "gte", "lt", "lte", ">", ">=", "<", "<=",
        "greater_than", "greater_than_or_equal", "less_than", "less_than_or_equal",
        "between",
    }
)


def to_number(value: Any) -> float:
    """Coerce a value to a float, returning NaN when it is not numeric.

    Booleans map to 0/1. ``None`` (a JSON null) and blank strings map to 0.
    Numeric strings, including ``Infinity`` and hex literals, are parsed.
    :data:`MISSING` and anything else yield NaN.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        if _NUMERIC_RE.match(text):
            return float(text)
        if _HEX_RE.match(text):
            return float(int(text, 16))
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
    return math.nan


def normalize_number(num: float) -> Any:
    """Return an int for integral finite floats so results stay tidy."""
    if math.isfinite(num) and num == int(num):
        return int(num)
    return num


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (``True`` is not ``1``)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def loose_equals(left: Any, right: Any) -> bool:
    """Equality with number/string/bool coercion."""
    if left is None or right is None:
        return left is None and right is None
    if type(left) is type(right):
        return left == right
    scalar = (int, float, str, bool)
    if isinstance(left, scalar) and isinstance(right, scalar):
        lnum, rnum = to_number(left), to_number(right)
        if not (math.isnan(lnum) or math.isnan(rnum)):
            return lnum == rnum
        return str(left) == str(right)
    return False


def field_operand(source: Any, field: str, operator: Optional[str]) -> Any:
    """Value at ``field`` as seen by ``operator``.

    An absent field is None for every operator except the numeric ones,
    which get :data:`MISSING` so that it never compares as 0.
    """
    actual = get_path(source, field, MISSING)
    if actual is MISSING and operator not in NUMERIC_OPERATORS:
        return None
    return actual


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        a, b = to_number(actual), to_number(expected)
        if math.isnan(a) or math.isnan(b):
            return False
        return op(a, b)

    return check


def _in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and any(
        strict_equals(actual, item) for item in expected
    )


def _loose_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple)) and any(
        loose_equals(actual, item) for item in expected
    )


STRICT_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": strict_equals,
    "neq": lambda a, b: not strict_equals(a, b),
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "in": _in,
    "not_in": lambda a, b: not _in(a, b),
    "exists": lambda a, _b: a is not None,
}

LOOSE_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": loose_equals,
    "==": loose_equals,
    "equals": loose_equals,
    "neq": lambda a, b: not loose_equals(a, b),
    "!=": lambda a, b: not loose_equals(a, b),
    "not_equals": lambda a, b: not loose_equals(a, b),
    "gt": STRICT_OPERATORS["gt"],
    ">": STRICT_OPERATORS["gt"],
    "gte": STRICT_OPERATORS["gte"],
    ">=": STRICT_OPERATORS["gte"],
    "lt": STRICT_OPERATORS["lt"],
    "<": STRICT_OPERATORS["lt"],
    "lte": STRICT_OPERATORS["lte"],
    "<=": STRICT_OPERATORS["lte"],
    "in": _loose_in,
    "exists": STRICT_OPERATORS["exists"],
}


def evaluate_step_condition(condition: Any, working: Mapping[str, Any]) -> bool:
    """Evaluate a step condition against the working payload.

    Unknown operators pass (the step runs). A malformed condition, one that
    is not a mapping or has no ``field``, is treated as not met.
    """
    if not isinstance(condition, Mapping) or not condition.get("field"):
        logger.warning(f"Malformed step condition ignored as not met: {condition!r}")
        return False
    operator = condition.get("operator", "eq")
    check = STRICT_OPERATORS.get(operator)
    if check is None:
        logger.warning(f"Unknown step condition operator '{operator}', treating as met")
        return True
    actual = field_operand(working, str(condition["field"]), operator)
    return check(actual, condition.get("value"))


def evaluate_loose_condition(
    condition: Mapping[str, Any], source: Optional[Mapping[str, Any]]
) -> bool:
    """Evaluate a condition with loose comparison; unknown operators fail."""
    operator = condition.get("operator", "eq")
    check = LOOSE_OPERATORS.get(operator)
    if check is None:
        return False
    actual = field_operand(source or {}, str(condition.get("field", "")), operator)
    return check(actual, condition.get("value"))
