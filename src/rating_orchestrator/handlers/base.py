"""Helpers shared by the built-in step handlers."""

import logging
from typing import Any, List

from rating_orchestrator.schemas.results import HealthStatus

logger = logging.getLogger(__name__)


def as_list(value: Any) -> List[str]:
    """Accept a list or a comma-separated string; blanks are dropped."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def as_bool(value: Any) -> bool:
    """``True`` or the string ``"true"`` (any case)."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


async def probe_provider(provider: Any, name: str) -> HealthStatus:
    """Health of a collaborator that may expose ``async health_check() -> bool``."""
    probe = getattr(provider, "health_check", None)
    if probe is None:
        return HealthStatus(healthy=True, details={"note": f"{name} has no health probe"})
    healthy = await probe()
    return HealthStatus(healthy=bool(healthy), details={"provider": name})
