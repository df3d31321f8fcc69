"""Rating entry point: fetch a product line's flow and run it.

``RatingService.rate`` is the only operation exposed to callers. It raises
``FlowNotFoundError`` when the product line has no flow, and otherwise
always returns a structured response with the full step trail, even when
a step failed.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from rating_orchestrator.config import Settings
from rating_orchestrator.errors import FlowNotFoundError
from rating_orchestrator.handlers import build_default_registry
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.pipeline.executor import PipelineExecutor
from rating_orchestrator.pipeline.registry import StepHandlerRegistry
from rating_orchestrator.providers.protocol import Providers
from rating_orchestrator.schemas.results import RateResponse

logger = logging.getLogger(__name__)


def normalize_body(body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Split a request body into ``{payload, scope}``.

    Accepts ``{"payload": {...}, "scope": {...}}`` or a flat body, in which
    case every top-level field except ``scope`` becomes the payload.
    """
    body = body or {}
    scope = body.get("scope")
    if isinstance(body.get("payload"), dict):
        payload = body["payload"]
    else:
        payload = {k: v for k, v in body.items() if k not in ("scope", "payload")}
    return {"payload": payload, "scope": scope if isinstance(scope, dict) else None}


class RatingService:
    """Runs rating requests against a set of collaborators."""

    def __init__(
        self,
        providers: Providers,
        registry: Optional[StepHandlerRegistry] = None,
        executor: Optional[PipelineExecutor] = None,
        settings: Optional[Settings] = None,
    ):
        self.providers = providers
        self.registry = registry or build_default_registry(providers, settings)
        self.executor = executor or PipelineExecutor(self.registry)

    async def rate(
        self,
        product_line_code: str,
        payload: Optional[Dict[str, Any]] = None,
        scope: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> RateResponse:
        """Rate one request.

        Args:
            product_line_code: Product line whose flow is run.
            payload: Request payload; deep-copied before any step sees it.
            scope: ``{state, coverage, transactionType}``.
            correlation_id: Reused when given, otherwise a new uuid4.

        Returns:
            RateResponse with overall status, final response and step trail.

        Raises:
            FlowNotFoundError: If the product line has no flow or no steps.
            ProviderUnavailableError: If the flow provider cannot be reached.
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        logger.info(f"Rating request for {product_line_code} [{correlation_id}]")

        steps = await self.providers.flows.get_steps(product_line_code, correlation_id)
        if steps is None:
            raise FlowNotFoundError(product_line_code)
        if not steps:
            raise FlowNotFoundError(
                product_line_code, f"No steps configured for product line '{product_line_code}'"
            )

        context = ExecutionContext.create(product_line_code, payload or {}, scope, correlation_id)
        result = await self.executor.execute(steps, context)
        logger.info(
            f"Rating {result.status.value} for {product_line_code} in {result.total_duration_ms}ms "
            f"[{correlation_id}]"
        )
        return RateResponse(
            transaction_id=context.transaction_id,
            correlation_id=correlation_id,
            product_line_code=product_line_code,
            status=result.status,
            response=result.response,
            step_results=result.step_results,
            total_duration_ms=result.total_duration_ms,
        )
