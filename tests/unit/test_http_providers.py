"""Tests for the httpx-backed collaborators, using httpx.MockTransport."""

import base64
import json

import httpx
import pytest

from rating_orchestrator.config import Settings
from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.providers.http import (
    HttpEventSink,
    HttpFlowProvider,
    HttpProductConfigProvider,
    HttpRuleProvider,
    HttpSystemGateway,
    build_http_providers,
)
from rating_orchestrator.rules.engine import RuleEngine
from rating_orchestrator.schemas.mappings import SystemRegistration


def transport_for(routes, seen=None):
    """MockTransport answering ``{path: (status, json_body)}``; records requests in ``seen``."""

    def handler(request):
        if seen is not None:
            seen.append(request)
        status, body = routes.get(request.url.path, (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


class TestFlowProvider:
    @pytest.mark.asyncio
    async def test_get_steps_sends_correlation_header(self):
        seen = []
        routes = {"/api/v1/orchestrators/HO3": (200, {"steps": [{"id": "s1", "stepOrder": 1, "stepType": "enrich"}]})}
        provider = HttpFlowProvider("http://flows/", transport=transport_for(routes, seen))

        steps = await provider.get_steps("HO3", "cid-1")

        assert [s.step_type for s in steps] == ["enrich"]
        assert seen[0].headers["x-correlation-id"] == "cid-1"
        assert str(seen[0].url) == "http://flows/api/v1/orchestrators/HO3"

    @pytest.mark.asyncio
    async def test_not_found_is_none(self):
        provider = HttpFlowProvider("http://flows", transport=transport_for({}))
        assert await provider.get_steps("NOPE") is None
        assert await provider.get_custom_flow("cf-1") is None

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        routes = {"/api/v1/orchestrators/HO3": (500, {"error": "boom"})}
        provider = HttpFlowProvider("http://flows", transport=transport_for(routes))

        with pytest.raises(ProviderUnavailableError) as exc_info:
            await provider.get_steps("HO3")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Line rating service unavailable: HTTP 500"

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = HttpFlowProvider("http://flows", transport=httpx.MockTransport(refuse))
        with pytest.raises(ProviderUnavailableError, match="connection refused"):
            await provider.get_steps("HO3")


class TestProductConfigProvider:
    @pytest.mark.asyncio
    async def test_lookup_hit_and_miss(self):
        routes = {
            "/api/v1/lookup-tables/by-name/territories/lookup/75001": (200, {"found": True, "value": {"zone": "north"}}),
            "/api/v1/lookup-tables/by-name/territories/lookup/99999": (200, {"found": False}),
        }
        seen = []
        provider = HttpProductConfigProvider("http://config", transport=transport_for(routes, seen))

        assert await provider.lookup("territories", "75001", "HO3") == {"zone": "north"}
        assert await provider.lookup("territories", "99999", "HO3") is None
        assert seen[0].url.params["productLineCode"] == "HO3"

    @pytest.mark.asyncio
    async def test_list_mappings_and_fields(self):
        routes = {
            "/api/v1/mappings": (200, [{"id": "m1", "direction": "request", "status": "active"}]),
            "/api/v1/mappings/m1/fields": (200, [{"sourcePath": "a", "targetPath": "b"}]),
        }
        provider = HttpProductConfigProvider("http://config", transport=transport_for(routes))

        mappings = await provider.list_mappings("HO3")
        assert mappings[0].fields is None
        fields = await provider.get_fields("m1")
        assert fields[0].target_path == "b"

    @pytest.mark.asyncio
    async def test_get_system_matches_lowercase_code(self):
        routes = {"/api/v1/systems": (200, [{"code": "ratabase", "baseUrl": "http://rb"}])}
        provider = HttpProductConfigProvider("http://config", transport=transport_for(routes))

        system = await provider.get_system("RATABASE")
        assert system.base_url == "http://rb"
        assert await provider.get_system("other") is None


class TestRuleProvider:
    @pytest.mark.asyncio
    async def test_fetches_scope_tags_when_absent(self):
        routes = {
            "/api/v1/rules": (200, [{"id": "r1", "name": "Wind", "actions": []}]),
            "/api/v1/rules/r1/scope-tags": (200, [{"scopeType": "state", "scopeValue": "TX"}]),
        }
        rules = await HttpRuleProvider("http://rules", transport=transport_for(routes)).get_rules("HO3")

        assert rules[0].scope_tags[0].scope_value == "TX"

    @pytest.mark.asyncio
    async def test_engine_forwards_correlation_header(self):
        seen = []
        routes = {
            "/api/v1/rules": (200, [{"id": "r1", "name": "Wind", "actions": []}]),
            "/api/v1/rules/r1/scope-tags": (200, []),
        }
        provider = HttpRuleProvider("http://rules", transport=transport_for(routes, seen))

        await RuleEngine(provider).evaluate("HO3", None, None, {}, correlation_id="cid-9")

        assert [r.url.path for r in seen] == ["/api/v1/rules", "/api/v1/rules/r1/scope-tags"]
        assert [r.headers.get("x-correlation-id") for r in seen] == ["cid-9", "cid-9"]


class TestEventSink:
    @pytest.mark.asyncio
    async def test_publish_posts_envelope(self):
        seen = []
        sink = HttpEventSink("http://events", transport=transport_for({"/publish": (202, {})}, seen))

        await sink.publish("quotes", "k1", {"premium": 1}, "cid")

        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"topic": "quotes", "key": "k1", "message": {"premium": 1}}


class TestSystemGateway:
    @pytest.mark.asyncio
    async def test_mock_system_routes_to_mock_endpoint(self):
        seen = []
        routes = {"/api/v1/mock/ratabase/rate": (200, {"premium": 10})}
        gateway = HttpSystemGateway("http://core", transport=transport_for(routes, seen))
        system = SystemRegistration(code="ratabase", is_mock=True, base_url="http://real")

        response = await gateway.call(system, "/rate", "post", {"a": 1}, "cid")

        assert response.ok
        assert response.body == {"premium": 10}
        assert response.is_mock is True
        assert seen[0].method == "POST"
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_real_system_with_basic_auth(self):
        seen = []
        routes = {"/v2/rate": (200, {"premium": 10})}
        gateway = HttpSystemGateway("http://core", transport=transport_for(routes, seen))
        system = SystemRegistration(
            code="ratabase",
            base_url="http://real/",
            auth_method="basic",
            config={"auth": {"username": "svc", "password": "pw"}},
        )

        response = await gateway.call(system, "/v2/rate", "GET", {"ignored": True})

        assert response.url == "http://real/v2/rate"
        assert seen[0].content == b""
        expected = base64.b64encode(b"svc:pw").decode()
        assert seen[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_non_json_body_is_text(self):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        gateway = HttpSystemGateway("http://core", transport=httpx.MockTransport(handler))
        response = await gateway.call(SystemRegistration(code="x"), "/rate", "POST", {})

        assert not response.ok
        assert response.body == "<html>bad gateway</html>"

    def test_xml_system_headers(self):
        headers = HttpSystemGateway.build_headers(SystemRegistration(code="x", format="xml"), "cid")
        assert headers["Content-Type"] == "application/xml"
        assert headers["x-correlation-id"] == "cid"


def test_build_http_providers_without_event_sink():
    providers = build_http_providers(Settings())
    assert providers.events is None
    assert providers.mappings is providers.lookups
    assert providers.flows is providers.custom_flows


def test_build_http_providers_with_event_sink():
    providers = build_http_providers(Settings(event_sink_url="http://events/"))
    assert providers.events.base_url == "http://events"
