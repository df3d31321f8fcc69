"""Restricted execution of user-supplied Python snippets.

User code is parsed with ``ast`` and checked against a policy before it is
compiled: no imports, no dunder names, no private, ``format`` or frame and
code introspection attribute access, no class/async/with/yield constructs
and no bare ``except``. It then runs with a curated builtins table and a
wall-clock deadline enforced by a trace function on every line and opcode
of sandbox frames.

The deadline only fires in sandbox bytecode, so operations that could spend
a long time inside a single builtin are bounded up front: ``range`` is
capped, and ``+``, ``*``, ``**``, ``<<`` and ``%`` are rewritten to guarded
calls that refuse oversized integers, sequences and format widths.
"""

import ast
import copy
import logging
import operator
import re
import sys
import textwrap
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from rating_orchestrator.errors import SandboxError, SandboxPolicyError, SandboxTimeout

logger = logging.getLogger(__name__)

SANDBOX_FILENAME = "<sandbox>"
ENTRYPOINT = "sandbox_main"

MAX_INT_BITS = 100_000
MAX_SEQUENCE_LENGTH = 1_000_000
MAX_FORMAT_WIDTH = 1_000

_SEQUENCES = (str, bytes, list, tuple)
_FORMAT_NUMBERS = re.compile(r"\d+")
_PERCENT_SPEC = re.compile(r"%(?:\([^)]*\))?[-#0 +]*(\*|\d*)(?:\.(\*|\d*))?")


class SandboxLimitError(ValueError):
    """An operation would produce a value larger than the sandbox allows."""


def _bounded_range(*args: int) -> range:
    result = range(*args)
    if len(result) > MAX_SEQUENCE_LENGTH:
        raise SandboxLimitError(f"range of {len(result)} items exceeds {MAX_SEQUENCE_LENGTH}")
    return result


SAFE_BUILTINS: Dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "range": _bounded_range,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "ValueError": ValueError,
    "TypeError": TypeError,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "ZeroDivisionError": ZeroDivisionError,
}

_FORBIDDEN_NODES = (
    ast.Import,
    ast.ImportFrom,
    ast.Global,
    ast.Nonlocal,
    ast.ClassDef,
    ast.AsyncFunctionDef,
    ast.AsyncFor,
    ast.AsyncWith,
    ast.Await,
    ast.With,
    ast.Yield,
    ast.YieldFrom,
)

_FORBIDDEN_ATTRIBUTES = {
    "format",
    "format_map",
    "mro",
    "center",
    "expandtabs",
    "ljust",
    "rjust",
    "zfill",
}

# generator, coroutine, frame, traceback and code object internals
_FORBIDDEN_ATTRIBUTE_PREFIXES = ("gi_", "cr_", "ag_", "f_", "tb_", "co_")


def _check_format_spec(spec: str) -> None:
    for number in _FORMAT_NUMBERS.findall(spec):
        if int(number) > MAX_FORMAT_WIDTH:
            raise SandboxLimitError(f"format width {number} exceeds {MAX_FORMAT_WIDTH}")


def _check_percent(template: Any) -> None:
    text = template.decode("latin-1") if isinstance(template, bytes) else template
    for width, precision in _PERCENT_SPEC.findall(text):
        for number in (width, precision):
            if number == "*":
                raise SandboxLimitError("'*' width is not allowed in % formatting")
            if number and int(number) > MAX_FORMAT_WIDTH:
                raise SandboxLimitError(f"format width {number} exceeds {MAX_FORMAT_WIDTH}")


def _check_bits(bits: int) -> None:
    if bits > MAX_INT_BITS:
        raise SandboxLimitError(f"integer result exceeds {MAX_INT_BITS} bits")


def _check_length(length: int) -> None:
    if length > MAX_SEQUENCE_LENGTH:
        raise SandboxLimitError(f"sequence of {length} items exceeds {MAX_SEQUENCE_LENGTH}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int)


def _check_add(left: Any, right: Any) -> None:
    if isinstance(left, _SEQUENCES) and isinstance(right, _SEQUENCES):
        _check_length(len(left) + len(right))


def _check_mul(left: Any, right: Any) -> None:
    if _is_int(left) and _is_int(right):
        _check_bits(left.bit_length() + right.bit_length())
    elif isinstance(left, _SEQUENCES) and _is_int(right):
        _check_length(len(left) * right)
    elif _is_int(left) and isinstance(right, _SEQUENCES):
        _check_length(left * len(right))


def _check_pow(left: Any, right: Any) -> None:
    if _is_int(left) and _is_int(right) and right > 0 and abs(left) > 1:
        # bit_length * exponent bounds the result size without computing it
        _check_bits(left.bit_length() * right)


def _check_lshift(left: Any, right: Any) -> None:
    if _is_int(left) and _is_int(right) and left and right > 0:
        _check_bits(left.bit_length() + right)


def _check_mod(left: Any, right: Any) -> None:
    if isinstance(left, (str, bytes)):
        _check_percent(left)


_GUARDED_OPS: Dict[type, str] = {
    ast.Add: "add",
    ast.Mult: "mul",
    ast.Pow: "pow",
    ast.LShift: "lshift",
    ast.Mod: "mod",
}

_CHECKS: Dict[str, Callable[[Any, Any], None]] = {
    "add": _check_add,
    "mul": _check_mul,
    "pow": _check_pow,
    "lshift": _check_lshift,
    "mod": _check_mod,
}

_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "add": operator.add,
    "mul": operator.mul,
    "pow": operator.pow,
    "lshift": operator.lshift,
    "mod": operator.mod,
}

_CONVERSIONS: Dict[int, Callable[[Any], str]] = {115: str, 114: repr, 97: ascii}


def _guarded_binop(name: str, left: Any, right: Any) -> Any:
    _CHECKS[name](left, right)
    return _OPERATORS[name](left, right)


def _guarded_operand(name: str, current: Any, value: Any) -> Any:
    _CHECKS[name](current, value)
    return value


def _guarded_format(value: Any, conversion: int, spec: str) -> str:
    _check_format_spec(spec)
    if conversion in _CONVERSIONS:
        value = _CONVERSIONS[conversion](value)
    return format(value, spec)


GUARD_NAMES: Dict[str, Callable[..., Any]] = {
    "__sandbox_binop__": _guarded_binop,
    "__sandbox_operand__": _guarded_operand,
    "__sandbox_format__": _guarded_format,
}


class _PolicyChecker(ast.NodeVisitor):
    """Collects policy violations instead of stopping at the first."""

    def __init__(self) -> None:
        self.violations: List[str] = []

    def _flag(self, node: ast.AST, message: str) -> None:
        line = getattr(node, "lineno", "?")
        self.violations.append(f"line {line}: {message}")

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, _FORBIDDEN_NODES):
            self._flag(node, f"{type(node).__name__} is not allowed")
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._flag(node, f"name '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        attr = node.attr
        if (
            attr.startswith("_")
            or attr in _FORBIDDEN_ATTRIBUTES
            or attr.startswith(_FORBIDDEN_ATTRIBUTE_PREFIXES)
        ):
            self._flag(node, f"attribute '{attr}' is not allowed")
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._flag(node, "bare except is not allowed")
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("_"):
            self._flag(node, f"function name '{node.name}' is not allowed")
        if node.decorator_list:
            self._flag(node, "decorators are not allowed")
        self.generic_visit(node)


class _SizeGuard(ast.NodeTransformer):
    """Routes size-amplifying operators and format specs through guard calls.

    Runs after the policy check, so user code cannot name the guards itself.
    """

    @staticmethod
    def _call(name: str, *args: ast.expr) -> ast.Call:
        return ast.Call(func=ast.Name(id=name, ctx=ast.Load()), args=list(args), keywords=[])

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        name = _GUARDED_OPS.get(type(node.op))
        if name is None:
            return node
        call = self._call("__sandbox_binop__", ast.Constant(value=name), node.left, node.right)
        return ast.copy_location(call, node)

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST:
        self.generic_visit(node)
        name = _GUARDED_OPS.get(type(node.op))
        if name is None:
            return node
        current = copy.deepcopy(node.target)
        current.ctx = ast.Load()
        node.value = ast.copy_location(
            self._call("__sandbox_operand__", ast.Constant(value=name), current, node.value),
            node.value,
        )
        return node

    def visit_FormattedValue(self, node: ast.FormattedValue) -> ast.AST:
        self.generic_visit(node)
        if node.format_spec is None:
            return node
        call = self._call(
            "__sandbox_format__", node.value, ast.Constant(value=node.conversion), node.format_spec
        )
        return ast.copy_location(
            ast.FormattedValue(value=ast.copy_location(call, node), conversion=-1, format_spec=None),
            node,
        )


def check_policy(tree: ast.AST) -> None:
    """Raise SandboxPolicyError listing every disallowed construct."""
    checker = _PolicyChecker()
    checker.visit(tree)
    if checker.violations:
        raise SandboxPolicyError("; ".join(checker.violations))


def _compile(tree: ast.AST, mode: str) -> Any:
    check_policy(tree)
    guarded = ast.fix_missing_locations(_SizeGuard().visit(tree))
    return compile(guarded, SANDBOX_FILENAME, mode)


def _parse(source: str, mode: str) -> ast.AST:
    try:
        return ast.parse(source, filename=SANDBOX_FILENAME, mode=mode)
    except SyntaxError as e:
        raise SandboxError(f"Syntax error at line {e.lineno}: {e.msg}") from e


def _function_source(body: str, params: List[str]) -> str:
    body = textwrap.dedent(body).strip("\n") or "pass"
    return f"def {ENTRYPOINT}({', '.join(params)}):\n" + textwrap.indent(body, "    ")


def validate_source(body: str, params: Optional[List[str]] = None) -> List[str]:
    """Return syntax/policy errors for a function-body snippet, empty if valid."""
    try:
        tree = _parse(_function_source(body, params or []), "exec")
        check_policy(tree)
    except SandboxError as e:
        return [e.message]
    return []


@contextmanager
def deadline(timeout_ms: int) -> Iterator[None]:
    """Raise SandboxTimeout inside sandbox frames once ``timeout_ms`` elapses.

    Only frames compiled from sandbox source are traced, so host code called
    from the sandbox (builtins, dict methods) runs untraced.
    """
    expires = time.monotonic() + timeout_ms / 1000
    previous = sys.gettrace()

    def local_trace(frame, event, arg):
        if time.monotonic() > expires:
            raise SandboxTimeout(f"Script timed out after {timeout_ms}ms")
        return local_trace

    def global_trace(frame, event, arg):
        if frame.f_code.co_filename != SANDBOX_FILENAME:
            return None
        frame.f_trace_opcodes = True
        return local_trace(frame, event, arg)

    sys.settrace(global_trace)
    try:
        yield
    finally:
        sys.settrace(previous)


def _globals() -> Dict[str, Any]:
    namespace: Dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS)}
    namespace.update(GUARD_NAMES)
    return namespace


def _describe(exc: BaseException) -> str:
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def evaluate_expression(expression: str, names: Dict[str, Any], timeout_ms: int) -> Any:
    """Evaluate a single expression with ``names`` in scope.

    Raises:
        SandboxPolicyError: If the expression uses a disallowed construct.
        SandboxError: On syntax errors, runtime errors or timeout.
    """
    code = _compile(_parse(expression.strip(), "eval"), "eval")
    # names live in globals so comprehensions can see them
    namespace = _globals()
    namespace.update(names)
    try:
        with deadline(timeout_ms):
            return eval(code, namespace)  # noqa: S307 - policy-checked AST
    except SandboxTimeout as e:
        raise SandboxError(str(e)) from None
    except Exception as e:
        raise SandboxError(_describe(e)) from e


def call_function_body(
    body: str, params: List[str], args: List[Any], timeout_ms: int
) -> Any:
    """Run ``body`` as the body of a function taking ``params`` and return its result.

    Raises:
        SandboxPolicyError: If the body uses a disallowed construct.
        SandboxError: On syntax errors, runtime errors or timeout.
    """
    code = _compile(_parse(_function_source(body, params), "exec"), "exec")
    namespace = _globals()
    try:
        with deadline(timeout_ms):
            exec(code, namespace)  # noqa: S102 - policy-checked AST
            return namespace[ENTRYPOINT](*args)
    except SandboxTimeout as e:
        raise SandboxError(str(e)) from None
    except Exception as e:
        raise SandboxError(_describe(e)) from e
