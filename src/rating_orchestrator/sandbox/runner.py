"""Run user scripts against private copies of the execution context.

The script is the body of a function called as
``sandbox_main(request, working, response, scope)``. It mutates ``working``
and ``response`` in place; any return value is ignored. The caller's
objects are never handed to the script, so a failed run leaves them
exactly as they were.
"""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rating_orchestrator.errors import SandboxError
from rating_orchestrator.sandbox.restricted import call_function_body, validate_source
from rating_orchestrator.utils.timing import elapsed_ms

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000
MAX_TIMEOUT_MS = 30000
MIN_TIMEOUT_MS = 100

SCRIPT_PARAMS = ["request", "working", "response", "scope"]


@dataclass
class ScriptResult:
    """Outcome of one script run."""

    success: bool
    duration_ms: int
    working: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def clamp_timeout(timeout_ms: Optional[float]) -> int:
    """Default 5s, never above 30s or below 100ms."""
    if timeout_ms is None:
        return DEFAULT_TIMEOUT_MS
    return int(min(MAX_TIMEOUT_MS, max(MIN_TIMEOUT_MS, timeout_ms)))


def validate_script(script_source: Optional[str]) -> List[str]:
    """Syntax and policy problems in ``script_source``, without running it."""
    if not script_source or not str(script_source).strip():
        return ["scriptSource is required"]
    return validate_source(str(script_source), SCRIPT_PARAMS)


def run_script(
    script_source: Optional[str],
    request: Optional[Dict[str, Any]],
    working: Optional[Dict[str, Any]] = None,
    response: Optional[Dict[str, Any]] = None,
    scope: Optional[Dict[str, Any]] = None,
    timeout_ms: Optional[float] = None,
) -> ScriptResult:
    """Execute ``script_source`` in the restricted sandbox.

    Args:
        script_source: Function body with access to ``request``, ``working``,
            ``response`` and ``scope``.
        request: Original request payload (read by the script).
        working: Working payload; defaults to ``request``.
        response: Response being assembled.
        scope: Scope dimensions of the request.
        timeout_ms: Wall-clock limit, clamped to 100..30000 ms.

    Returns:
        ScriptResult; on success ``working``/``response`` hold the mutated
        copies, on failure ``error`` holds the message.
    """
    start = time.monotonic()
    source = (script_source or "").strip()
    if not source:
        return ScriptResult(success=False, error="scriptSource is required", duration_ms=elapsed_ms(start))

    views = [
        copy.deepcopy(request or {}),
        copy.deepcopy(working if working is not None else (request or {})),
        copy.deepcopy(response or {}),
        copy.deepcopy(scope or {}),
    ]
    limit = clamp_timeout(timeout_ms)
    try:
        call_function_body(source, SCRIPT_PARAMS, views, limit)
    except SandboxError as e:
        logger.warning(f"Script failed: {e.message}")
        return ScriptResult(success=False, error=e.message, duration_ms=elapsed_ms(start))

    return ScriptResult(
        success=True,
        working=views[1],
        response=views[2],
        duration_ms=elapsed_ms(start),
    )
