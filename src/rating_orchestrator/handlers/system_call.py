"""``call_rating_engine`` and ``call_external_api`` steps.

Both resolve a system registration by code and send a request through the
system gateway. They differ only in where the request body comes from and
where the response body lands.
"""

import logging
from typing import Any, Dict, List, Optional

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.providers.protocol import SystemGateway, SystemRegistry, SystemResponse
from rating_orchestrator.schemas.mappings import SystemRegistration
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult

logger = logging.getLogger(__name__)

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")


class SystemCallHandler:
    """Shared resolve-and-call flow for external system steps."""

    type = ""
    default_endpoint: Optional[str] = None
    default_method = "POST"

    def __init__(self, systems: SystemRegistry, gateway: SystemGateway):
        self.systems = systems
        self.gateway = gateway

    def request_body(self, context: ExecutionContext, method: str) -> Optional[Dict[str, Any]]:
        return context.working

    def store_response(self, context: ExecutionContext, body: Any) -> None:
        raise NotImplementedError

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        cid = context.correlation_id
        system_code = config.get("systemCode")
        if not system_code:
            return HandlerResult.failed("systemCode is required")
        endpoint = config.get("endpoint") or self.default_endpoint
        if not endpoint:
            return HandlerResult.failed("endpoint is required")
        method = str(config.get("method") or self.default_method).upper()

        try:
            system = await self.systems.get_system(str(system_code), cid)
        except ProviderUnavailableError as e:
            logger.error(f"{self.type}: {e.message} [{cid}]")
            return HandlerResult.failed(e.message, output={"systemCode": system_code})
        if system is None:
            return HandlerResult.failed(f'System "{system_code}" not found in registry')

        body = self.request_body(context, method)
        try:
            response = await self.gateway.call(system, endpoint, method, body, cid)
        except ProviderUnavailableError as e:
            logger.error(f"{self.type}: call to {system.code} failed: {e.message} [{cid}]")
            return HandlerResult.failed(
                e.message,
                output=self._output(system, endpoint, method, body, None),
            )

        output = self._output(system, endpoint, method, body, response)
        if not response.ok:
            logger.warning(f"{self.type}: {system.code} returned HTTP {response.status_code} [{cid}]")
            return HandlerResult.failed(
                f"{system.name or system.code} returned HTTP {response.status_code}", output=output
            )

        self.store_response(context, response.body)
        return HandlerResult.completed(output)

    @staticmethod
    def _output(
        system: SystemRegistration,
        endpoint: str,
        method: str,
        body: Any,
        response: Optional[SystemResponse],
    ) -> Dict[str, Any]:
        return {
            "systemCode": system.code,
            "serviceRequest": {"endpoint": endpoint, "method": method, "body": body},
            "serviceResponse": response.body if response is not None else None,
            "httpStatus": response.status_code if response is not None else None,
            "url": response.url if response is not None else None,
            "isMock": response.is_mock if response is not None else system.routes_to_mock,
        }

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        errors: List[str] = []
        if not config.get("systemCode"):
            errors.append("systemCode is required")
        if not self.default_endpoint and not config.get("endpoint"):
            errors.append("endpoint is required")
        method = config.get("method")
        if method is not None and str(method).upper() not in METHODS:
            errors.append(f"method must be one of {', '.join(METHODS)}")
        return ValidationResult.from_errors(errors)

    async def health_check(self) -> HealthStatus:
        return await probe_provider(self.systems, "systems")


class CallRatingEngineHandler(SystemCallHandler):
    """Sends ``working`` to a rating engine; the reply becomes ``response``.

    Config:
        systemCode: Registered system code (required).
        endpoint: Path on the system, default ``/rate``.
        method: HTTP method, default ``POST``.
    """

    type = "call_rating_engine"
    default_endpoint = "/rate"

    def store_response(self, context: ExecutionContext, body: Any) -> None:
        context.response = body if isinstance(body, dict) else {"data": body}


class CallExternalApiHandler(SystemCallHandler):
    """Calls an external API; the reply replaces ``working``.

    ``working`` is sent as the body for POST and PUT only.
    """

    type = "call_external_api"

    def request_body(self, context: ExecutionContext, method: str) -> Optional[Dict[str, Any]]:
        return context.working if method in ("POST", "PUT") else None

    def store_response(self, context: ExecutionContext, body: Any) -> None:
        if isinstance(body, dict):
            context.working = body
        elif body is not None:
            context.working = {"data": body}
