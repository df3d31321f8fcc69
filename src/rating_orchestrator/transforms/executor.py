"""Field-level transformations applied during field mapping.

Error policy: a transform never raises. On any failure the original value
is returned with ``applied=False`` and a readable error; the field mapping
handler decides whether to record it and move on.
"""

import copy
import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from rating_orchestrator.errors import SandboxError
from rating_orchestrator.sandbox.restricted import call_function_body, evaluate_expression
from rating_orchestrator.transforms.dates import format_date, parse_date
from rating_orchestrator.utils.conditions import (
    MISSING,
    evaluate_loose_condition,
    normalize_number,
    to_number,
)
from rating_orchestrator.utils.paths import get_path

logger = logging.getLogger(__name__)

DEFAULT_EXPRESSION_TIMEOUT_MS = 100
DEFAULT_TRUE_VALUES = ("true", "yes", "1", "on")

# (group separator, decimal separator)
LOCALE_SEPARATORS: Dict[str, tuple] = {
    "en-US": (",", "."),
    "en-GB": (",", "."),
    "en-IN": (",", "."),
    "de-DE": (".", ","),
    "fr-FR": ("\u202f", ","),
}


@dataclass
class TransformResult:
    """Outcome of one transform."""

    value: Any
    applied: bool = True
    error: Optional[str] = None


class TransformError(ValueError):
    """Raised inside a transform; converted to a TransformResult error."""


def _number(value: Any, kind: str, what: str = "source value") -> float:
    num = to_number(value)
    if math.isnan(num):
        raise TransformError(f"{kind}: {what} is not numeric")
    return num


def _round_half_up(num: float, decimals: int) -> float:
    factor = 10 ** decimals
    return math.floor(num * factor + 0.5) / factor


def format_number(num: float, locale: str = "en-US", precision: Optional[int] = None) -> str:
    """Locale-style number rendering with grouping and optional fixed precision."""
    if math.isinf(num):
        return "-∞" if num < 0 else "∞"
    group, point = LOCALE_SEPARATORS.get(locale, LOCALE_SEPARATORS["en-US"])
    places = 3 if precision is None else max(0, int(precision))
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(repr(num)).quantize(quantum, rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    text = f"{abs(rounded):f}"
    whole, _, fraction = text.partition(".")
    if precision is None:
        fraction = fraction.rstrip("0")

    digits = []
    for i, ch in enumerate(reversed(whole)):
        if i and i % 3 == 0:
            digits.append(group)
        digits.append(ch)
    grouped = "".join(reversed(digits))
    return f"{sign}{grouped}{point}{fraction}" if fraction else f"{sign}{grouped}"


def _direct(value, config, context):
    return value


def _constant(value, config, context):
    constant = config.get("constantValue")
    return value if constant is None else constant


def _multiply(value, config, context):
    factor = _number(config.get("factor", MISSING), "multiply", "factor")
    return normalize_number(_number(value, "multiply") * factor)


def _divide(value, config, context):
    divisor = _number(config.get("divisor", MISSING), "divide", "divisor")
    if divisor == 0:
        raise TransformError("divide: division by zero")
    return normalize_number(_number(value, "divide") / divisor)


def _round(value, config, context):
    decimals = config.get("decimals")
    places = 0 if decimals is None else int(_number(decimals, "round", "decimals"))
    return normalize_number(_round_half_up(_number(value, "round"), places))


def _per_unit(value, config, context):
    unit_size = to_number(config.get("unitSize", MISSING))
    if math.isnan(unit_size) or unit_size == 0:
        raise TransformError("per_unit: unitSize is invalid")
    return normalize_number(_number(value, "per_unit") / unit_size)


def _number_format(value, config, context):
    num = _number(value, "number_format")
    precision = config.get("precision")
    if precision is not None:
        precision = int(_number(precision, "number_format", "precision"))
    return format_number(num, config.get("locale") or "en-US", precision)


def _date(value, config, context):
    raw = "" if value is None else str(value)
    if not raw:
        raise TransformError("date: empty value")
    parsed = parse_date(raw, config.get("inputFormat"))
    if parsed is None:
        raise TransformError(f'date: cannot parse "{raw}"')
    return format_date(parsed, config.get("format") or "YYYY-MM-DD")


def _boolean(value, config, context):
    if isinstance(value, bool):
        return value
    true_values = config.get("trueValues") or DEFAULT_TRUE_VALUES
    text = ("" if value is None else str(value)).strip().lower()
    return text in {str(v).lower() for v in true_values}


def _concatenate(value, config, context):
    fields: List[str] = config.get("fields") or []
    if not fields:
        raise TransformError("concatenate: no fields defined")
    separator = config.get("separator") or ""
    parts = []
    for path in fields:
        part = get_path(context, path)
        parts.append("" if part is None else str(part))
    return separator.join(parts)


def _split(value, config, context):
    delimiter = config.get("delimiter")
    if delimiter is None:
        delimiter = ","
    text = "" if value is None else str(value)
    # an empty delimiter splits into characters
    parts = text.split(str(delimiter)) if delimiter != "" else list(text)
    index = config.get("index")
    if index is None:
        return parts
    position = int(_number(index, "split", "index"))
    if 0 <= position < len(parts):
        return parts[position]
    return ""


def _expression(value, config, context):
    expression = config.get("expression")
    if not expression:
        raise TransformError("expression: no expression provided")
    scoped = copy.deepcopy(context)
    names = {"value": copy.deepcopy(value), "working": scoped, "request": scoped}
    timeout_ms = int(config.get("timeoutMs") or DEFAULT_EXPRESSION_TIMEOUT_MS)
    return evaluate_expression(str(expression), names, timeout_ms)


def _custom(value, config, context):
    body = config.get("functionBody")
    if not body:
        raise TransformError("custom: no functionBody provided")
    scoped = copy.deepcopy(context)
    timeout_ms = int(config.get("timeoutMs") or DEFAULT_EXPRESSION_TIMEOUT_MS)
    return call_function_body(
        str(body),
        ["value", "working", "request"],
        [copy.deepcopy(value), scoped, scoped],
        timeout_ms,
    )


def _conditional(value, config, context):
    condition = config.get("condition")
    if not isinstance(condition, Mapping) or not condition.get("field"):
        raise TransformError("conditional: no condition defined")
    met = evaluate_loose_condition(condition, context)
    return config.get("thenValue") if met else config.get("elseValue")


def _aggregate(value, config, context):
    array_path = config.get("arrayPath")
    if not array_path:
        raise TransformError("aggregate: no arrayPath defined")
    items = get_path(context, array_path)
    if not isinstance(items, list):
        raise TransformError("aggregate: arrayPath does not resolve to array")
    field_path = config.get("fieldPath")
    numbers = [
        to_number(get_path(item, field_path, MISSING) if field_path else item) for item in items
    ]
    numbers = [n for n in numbers if not math.isnan(n)]
    if not numbers:
        return 0
    operation = config.get("operation") or "sum"
    if operation == "avg":
        result = sum(numbers) / len(numbers)
    elif operation == "min":
        result = min(numbers)
    elif operation == "max":
        result = max(numbers)
    else:
        result = sum(numbers)
    return normalize_number(result)


TRANSFORMS: Dict[str, Callable[[Any, Dict[str, Any], Dict[str, Any]], Any]] = {
    "direct": _direct,
    "constant": _constant,
    "multiply": _multiply,
    "divide": _divide,
    "round": _round,
    "per_unit": _per_unit,
    "number_format": _number_format,
    "date": _date,
    "boolean": _boolean,
    "concatenate": _concatenate,
    "split": _split,
    "expression": _expression,
    "custom": _custom,
    "conditional": _conditional,
    "aggregate": _aggregate,
}


def apply_transform(
    value: Any,
    transformation_type: Optional[str],
    config: Optional[Dict[str, Any]] = None,
    full_context: Optional[Dict[str, Any]] = None,
) -> TransformResult:
    """Apply one transformation to ``value``.

    Args:
        value: Source field value.
        transformation_type: One of :data:`TRANSFORMS`; empty means ``direct``.
        config: The mapping row's ``transformConfig``.
        full_context: The whole source document, for path-based kinds
            (``concatenate``, ``conditional``, ``aggregate``) and scripts.

    Returns:
        TransformResult with the new value, or the original value and an
        error string when the transform could not be applied.
    """
    kind = transformation_type or "direct"
    func = TRANSFORMS.get(kind)
    if func is None:
        return TransformResult(value, applied=False, error=f'Unknown transformationType: "{kind}"')
    try:
        return TransformResult(func(value, config or {}, full_context or {}))
    except TransformError as e:
        return TransformResult(value, applied=False, error=str(e))
    except SandboxError as e:
        return TransformResult(value, applied=False, error=f"{kind}: {e.message}")
    except (TypeError, ValueError, ArithmeticError) as e:
        return TransformResult(value, applied=False, error=f"{kind}: {e}")
