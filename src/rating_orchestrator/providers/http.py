"""httpx clients for the configuration services and external systems.

Every outbound call carries the ``x-correlation-id`` header and a timeout.
Transport failures and unexpected status codes raise
``ProviderUnavailableError``; a 404 is "not found" and returns None.
"""

import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from rating_orchestrator.config import Settings
from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.providers.protocol import Providers, SystemResponse
from rating_orchestrator.schemas.mappings import FieldMapping, MappingDefinition, SystemRegistration
from rating_orchestrator.schemas.rules import Rule, ScopeTag
from rating_orchestrator.schemas.steps import CustomFlow, OrchestratorStep

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "x-correlation-id"


def correlation_headers(correlation_id: Optional[str]) -> Dict[str, str]:
    return {CORRELATION_HEADER: correlation_id} if correlation_id else {}


class ServiceClient:
    """Base for JSON-over-HTTP collaborators."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _request(
        self,
        method: str,
        path: str,
        correlation_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> Optional[Any]:
        """Send a request and return the decoded JSON body, or None on 404."""
        url = f"{self.base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=correlation_headers(correlation_id),
                    timeout=timeout or self.timeout,
                )
        except httpx.TimeoutException:
            logger.error(f"{self.service_name} timeout: {method} {url}")
            raise ProviderUnavailableError(self.service_name, "timeout")
        except httpx.RequestError as e:
            logger.error(f"{self.service_name} request error: {method} {url}: {e}")
            raise ProviderUnavailableError(self.service_name, str(e) or type(e).__name__)

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(f"{self.service_name} returned {response.status_code} for {method} {url}")
            raise ProviderUnavailableError(
                self.service_name, f"HTTP {response.status_code}", status_code=response.status_code
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(self.service_name, f"invalid JSON: {e}", response.status_code)

    async def _get(self, path: str, correlation_id: Optional[str] = None, **kwargs) -> Optional[Any]:
        return await self._request("GET", path, correlation_id, **kwargs)

    async def health_check(self) -> bool:
        """True if ``/health`` answers 200."""
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False


class HttpFlowProvider(ServiceClient):
    """Flows and custom flows from the line-rating service."""

    service_name = "Line rating service"

    async def get_steps(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> Optional[List[OrchestratorStep]]:
        data = await self._get(f"/api/v1/orchestrators/{product_line_code}", correlation_id)
        if data is None:
            return None
        return [OrchestratorStep.model_validate(s) for s in data.get("steps") or []]

    async def get_custom_flow(
        self, flow_id: str, correlation_id: Optional[str] = None
    ) -> Optional[CustomFlow]:
        data = await self._get(f"/api/v1/custom-flows/{flow_id}", correlation_id)
        return CustomFlow.model_validate(data) if data is not None else None


class HttpProductConfigProvider(ServiceClient):
    """Mappings, lookup tables and the systems registry from product-config."""

    service_name = "Product config service"

    def __init__(self, base_url: str, timeout: float = 30.0, lookup_timeout: float = 10.0, transport=None):
        super().__init__(base_url, timeout, transport)
        self.lookup_timeout = lookup_timeout

    async def get_mapping(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> Optional[MappingDefinition]:
        data = await self._get(f"/api/v1/mappings/{mapping_id}", correlation_id)
        return MappingDefinition.model_validate(data) if data else None

    async def list_mappings(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[MappingDefinition]:
        data = await self._get(
            "/api/v1/mappings", correlation_id, params={"productLineCode": product_line_code}
        )
        return [MappingDefinition.model_validate(m) for m in data or []]

    async def get_fields(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> List[FieldMapping]:
        data = await self._get(f"/api/v1/mappings/{mapping_id}/fields", correlation_id)
        return [FieldMapping.model_validate(f) for f in data or []]

    async def lookup(
        self,
        table: str,
        key: str,
        product_line_code: str,
        correlation_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        path = f"/api/v1/lookup-tables/by-name/{quote(table, safe='')}/lookup/{quote(str(key), safe='')}"
        data = await self._get(
            path,
            correlation_id,
            params={"productLineCode": product_line_code},
            timeout=self.lookup_timeout,
        )
        if not data or not data.get("found") or not data.get("value"):
            return None
        return data["value"]

    async def get_system(
        self, code: str, correlation_id: Optional[str] = None
    ) -> Optional[SystemRegistration]:
        systems = await self._get("/api/v1/systems", correlation_id) or []
        for raw in systems:
            if raw.get("code") in (code, code.lower()):
                return SystemRegistration.model_validate(raw)
        return None


class HttpRuleProvider(ServiceClient):
    """Rule definitions from the rules service."""

    service_name = "Rules service"

    async def get_rules(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[Rule]:
        data = await self._get("/api/v1/rules", correlation_id, params={"productLineCode": product_line_code})
        rules = []
        for raw in data or []:
            if "scopeTags" not in raw and raw.get("id"):
                tags = await self._get(f"/api/v1/rules/{raw['id']}/scope-tags", correlation_id) or []
                raw = {**raw, "scopeTags": [ScopeTag.model_validate(t).to_wire() for t in tags]}
            rules.append(Rule.model_validate(raw))
        return rules


class HttpEventSink(ServiceClient):
    """Publishes events to the event sink's ``/publish`` endpoint."""

    service_name = "Event sink"

    async def publish(
        self,
        topic: str,
        key: str,
        message: Any,
        correlation_id: Optional[str] = None,
    ) -> None:
        await self._request(
            "POST",
            "/publish",
            correlation_id,
            json={"topic": topic, "key": key, "message": message},
        )


class HttpSystemGateway:
    """Calls registered external systems, routing mock systems to the mock endpoint."""

    def __init__(
        self,
        mock_base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.mock_base_url = mock_base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def resolve_url(self, system: SystemRegistration, endpoint: str) -> str:
        if system.routes_to_mock:
            return f"{self.mock_base_url}/api/v1/mock/{system.code}/{endpoint.lstrip('/')}"
        return f"{system.base_url.rstrip('/')}{endpoint}"

    @staticmethod
    def build_headers(system: SystemRegistration, correlation_id: Optional[str]) -> Dict[str, str]:
        content_type = "application/xml" if system.format == "xml" else "application/json"
        headers = {"Content-Type": content_type, "Accept": content_type}
        headers.update(correlation_headers(correlation_id))
        auth = (system.config or {}).get("auth") or {}
        if not system.routes_to_mock and system.auth_method == "basic":
            username, password = auth.get("username"), auth.get("password")
            if username and password:
                token = base64.b64encode(f"{username}:{password}".encode()).decode()
                headers["Authorization"] = f"Basic {token}"
        return headers

    async def call(
        self,
        system: SystemRegistration,
        endpoint: str,
        method: str,
        body: Optional[Dict[str, Any]],
        correlation_id: Optional[str] = None,
    ) -> SystemResponse:
        url = self.resolve_url(system, endpoint)
        method = method.upper()
        logger.info(f"{method} {url}" + (" (mock)" if system.routes_to_mock else ""))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    json=body if method in ("POST", "PUT") else None,
                    headers=self.build_headers(system, correlation_id),
                )
        except httpx.TimeoutException:
            raise ProviderUnavailableError(f"System {system.code}", "timeout")
        except httpx.RequestError as e:
            raise ProviderUnavailableError(f"System {system.code}", str(e) or type(e).__name__)

        try:
            payload = response.json() if response.content else None
        except ValueError:
            payload = response.text
        return SystemResponse(
            status_code=response.status_code,
            body=payload,
            url=url,
            is_mock=system.routes_to_mock,
            headers=dict(response.headers),
        )


def build_http_providers(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Providers:
    """Wire every collaborator to its HTTP service from ``settings``."""
    flows = HttpFlowProvider(settings.line_rating_url, settings.http_timeout_seconds, transport)
    product_config = HttpProductConfigProvider(
        settings.product_config_url,
        settings.http_timeout_seconds,
        settings.lookup_timeout_seconds,
        transport,
    )
    events = None
    if settings.event_sink_url:
        events = HttpEventSink(settings.event_sink_url, settings.http_timeout_seconds, transport)
    return Providers(
        flows=flows,
        custom_flows=flows,
        mappings=product_config,
        rules=HttpRuleProvider(settings.rules_service_url, settings.http_timeout_seconds, transport),
        lookups=product_config,
        systems=product_config,
        gateway=HttpSystemGateway(settings.core_rating_url, settings.http_timeout_seconds, transport),
        events=events,
    )
