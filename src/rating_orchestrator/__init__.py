"""Rating orchestrator: configurable step pipelines for rating insurance submissions."""

from rating_orchestrator.errors import FlowNotFoundError, ProviderUnavailableError, RatingError
from rating_orchestrator.rating import RatingService, normalize_body

__version__ = "0.1.0"

__all__ = [
    "FlowNotFoundError",
    "ProviderUnavailableError",
    "RatingError",
    "RatingService",
    "normalize_body",
]
