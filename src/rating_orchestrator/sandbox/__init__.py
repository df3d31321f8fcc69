"""Restricted execution of user-supplied Python."""

from rating_orchestrator.sandbox.restricted import call_function_body, evaluate_expression
from rating_orchestrator.sandbox.runner import ScriptResult, run_script, validate_script

__all__ = [
    "ScriptResult",
    "call_function_body",
    "evaluate_expression",
    "run_script",
    "validate_script",
]
