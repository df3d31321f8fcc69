"""Error taxonomy for rating requests.

Configuration errors surface to the caller of ``rate()``. Step-local and
collaborator errors are converted to step results by the pipeline and
never escape it. Sandbox errors stay inside the sandbox runner.
"""

from typing import Any, Dict, Optional


class RatingError(Exception):
    """Base class for orchestrator errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FlowNotFoundError(RatingError):
    """No step list exists for a product line, or the list is empty."""

    def __init__(self, product_line_code: str, reason: Optional[str] = None):
        message = reason or f"No orchestrator found for product line '{product_line_code}'"
        super().__init__(message, {"productLineCode": product_line_code})
        self.product_line_code = product_line_code


class ProviderUnavailableError(RatingError):
    """A configuration collaborator (rules, mappings, lookups, ...) is unreachable."""

    def __init__(self, provider: str, cause: str, status_code: Optional[int] = None):
        super().__init__(
            f"{provider} unavailable: {cause}",
            {"provider": provider, "statusCode": status_code},
        )
        self.provider = provider
        self.status_code = status_code


class SandboxError(RatingError):
    """User-supplied code failed to compile or raised while running."""


class SandboxPolicyError(SandboxError):
    """User-supplied code uses a construct the sandbox does not allow."""


class SandboxTimeout(BaseException):
    """Deadline exceeded inside the sandbox.

    Derives from BaseException so ``except Exception`` in user code cannot
    swallow it.
    """
