"""Tests for the built-in step handlers against a workspace store."""

import time
import uuid

import pytest

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.apply_rules import ApplyRulesHandler
from rating_orchestrator.handlers.enrich import EnrichHandler
from rating_orchestrator.handlers.field_mapping import FieldMappingHandler
from rating_orchestrator.handlers.generate_value import GenerateValueHandler
from rating_orchestrator.handlers.publish_event import PublishEventHandler
from rating_orchestrator.handlers.run_custom_flow import RunCustomFlowHandler
from rating_orchestrator.handlers.run_script import RunScriptHandler
from rating_orchestrator.handlers import run_script as run_script_module
from rating_orchestrator.handlers.system_call import CallExternalApiHandler, CallRatingEngineHandler
from rating_orchestrator.handlers.validate_request import ValidateRequestHandler
from rating_orchestrator.handlers import build_default_registry
from rating_orchestrator.providers.workspace import WorkspaceStore
from rating_orchestrator.rules.engine import RuleEngine
from rating_orchestrator.sandbox.runner import ScriptResult
from rating_orchestrator.schemas.results import StepStatus


class Unavailable:
    """Collaborator whose every call fails as unreachable."""

    def __getattr__(self, name):
        async def call(*args, **kwargs):
            raise ProviderUnavailableError("Test service", "connection refused")

        return call


class BrokenSink:
    async def publish(self, topic, key, message, correlation_id=None):
        raise RuntimeError("broker down")


class TestApplyRules:
    @pytest.mark.asyncio
    async def test_merges_modified_fields(self, store, make_context):
        context = make_context({"state": "TX", "premium": 1000}, {"state": "TX"})
        result = await ApplyRulesHandler(RuleEngine(store)).execute(context, {"scope": "pre_rating"})

        assert result.status == StepStatus.COMPLETED
        assert result.output["appliedRules"] == ["Coastal surcharge"]
        assert context.working["premium"] == pytest.approx(1100)
        assert context.request["premium"] == 1000

    @pytest.mark.asyncio
    async def test_nested_target_is_written_by_path(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"rules": [{"id": "r", "name": "r", "actions": [
                {"actionType": "set", "targetField": "rating.tier", "value": "preferred"}]}]}}
        )
        context = make_context({"rating": {"base": 1}})
        await ApplyRulesHandler(RuleEngine(store)).execute(context, {})
        assert context.working["rating"] == {"base": 1, "tier": "preferred"}

    @pytest.mark.asyncio
    async def test_unavailable_rules_service_skips(self, make_context):
        result = await ApplyRulesHandler(RuleEngine(Unavailable())).execute(make_context({}), {})
        assert result.status == StepStatus.SKIPPED
        assert result.error == "Rules service unavailable"

    @pytest.mark.asyncio
    async def test_rejection_is_reported(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"rules": [{"id": "r", "name": "decline", "actions": [
                {"actionType": "reject", "value": "Out of appetite"}]}]}}
        )
        result = await ApplyRulesHandler(RuleEngine(store)).execute(make_context({}), {})
        assert result.output["rejected"] is True
        assert result.output["rejectReason"] == "Out of appetite"

    def test_validate_phase(self, store):
        handler = ApplyRulesHandler(RuleEngine(store))
        assert handler.validate({"scope": "post_rating"}).valid
        assert not handler.validate({"scope": "mid_rating"}).valid


class TestFieldMapping:
    @pytest.mark.asyncio
    async def test_applies_fields_in_sort_order(self, store, make_context):
        context = make_context({"state": "TX", "dwelling": {"coverageA": 250000}})
        result = await FieldMappingHandler(store).execute(context, {"direction": "request"})

        assert result.status == StepStatus.COMPLETED
        assert context.working["rating"] == {"state": "TX", "coverageAmount": 250}
        assert [d["target"] for d in result.output["fieldDetails"]] == ["rating.state", "rating.coverageAmount"]
        assert result.output["mappingId"] == "map-ho3-req"
        assert result.output["fieldsApplied"] == 2
        assert result.output["totalFields"] == 2

    @pytest.mark.asyncio
    async def test_missing_required_field_is_diagnostic(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"mappings": [{"id": "m", "direction": "request", "status": "active", "fields": [
                {"sourcePath": "applicant.dob", "targetPath": "dob", "isRequired": True},
                {"sourcePath": "state", "targetPath": "st"},
            ]}]}}
        )
        context = make_context({"state": "CA"})
        result = await FieldMappingHandler(store).execute(context, {})

        assert result.status == StepStatus.COMPLETED
        assert [e["sourcePath"] for e in result.output["requiredFieldErrors"]] == ["applicant.dob"]
        assert context.working["st"] == "CA"
        assert "dob" not in context.working

    @pytest.mark.asyncio
    async def test_defaults_skip_and_transform_errors(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"mappings": [{"id": "m", "direction": "request", "status": "draft", "fields": [
                {"sourcePath": "deductible", "targetPath": "ded", "defaultValue": 500},
                {"sourcePath": "legacy", "targetPath": "legacy",
                 "transformConfig": {"skipMapping": True, "skipBehavior": "use_default"}, "defaultValue": "n/a"},
                {"sourcePath": "ignored", "targetPath": "ignored", "transformConfig": {"skipMapping": True}},
                {"sourcePath": "limit", "targetPath": "limit", "transformationType": "divide",
                 "transformConfig": {"divisor": 0}},
            ]}]}}
        )
        context = make_context({"limit": 300000, "ignored": "x"})
        result = await FieldMappingHandler(store).execute(context, {})

        assert context.working["ded"] == 500
        assert context.working["legacy"] == "n/a"
        assert context.working["ignored"] == "x"
        assert context.working["limit"] == 300000
        assert result.output["transformErrors"][0]["error"] == "divide: division by zero"

    @pytest.mark.asyncio
    async def test_unknown_mapping_id_falls_back_to_direction(self, store, make_context):
        context = make_context({"state": "TX"})
        result = await FieldMappingHandler(store).execute(context, {"mappingId": "nope"})
        assert result.output["mappingId"] == "map-ho3-req"

    @pytest.mark.asyncio
    async def test_no_mapping_is_passthrough(self, store, make_context):
        context = make_context({"a": 1})
        result = await FieldMappingHandler(store).execute(context, {"direction": "response"})

        assert result.status == StepStatus.COMPLETED
        assert result.output["fieldsApplied"] == 0
        assert context.working == {"a": 1}

    @pytest.mark.asyncio
    async def test_inactive_mapping_is_ignored(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"mappings": [{"id": "m", "status": "archived", "fields": [
                {"sourcePath": "a", "targetPath": "b"}]}]}}
        )
        result = await FieldMappingHandler(store).execute(make_context({"a": 1}), {})
        assert result.output["fieldsApplied"] == 0

    @pytest.mark.asyncio
    async def test_response_direction_rewrites_response(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"mappings": [{"id": "m", "direction": "response", "status": "active", "fields": [
                {"sourcePath": "premium", "targetPath": "quote.totalPremium", "transformationType": "round"}]}]}}
        )
        context = make_context({})
        context.response = {"premium": 1234.56}
        await FieldMappingHandler(store).execute(context, {"direction": "response"})
        assert context.response == {"premium": 1234.56, "quote": {"totalPremium": 1235}}

    @pytest.mark.asyncio
    async def test_unavailable_mapping_service_is_passthrough(self, make_context):
        context = make_context({"a": 1})
        result = await FieldMappingHandler(Unavailable()).execute(context, {})

        assert result.status == StepStatus.COMPLETED
        assert "passthrough" in result.output["message"]
        assert context.working == {"a": 1}

    def test_validate_direction(self, store):
        assert not FieldMappingHandler(store).validate({"direction": "sideways"}).valid


class TestSystemCalls:
    @pytest.mark.asyncio
    async def test_rating_engine_response_becomes_response(self, store, make_context):
        context = make_context({"state": "TX"})
        result = await CallRatingEngineHandler(store, store).execute(context, {"systemCode": "cgi-ratabase"})

        assert result.status == StepStatus.COMPLETED
        assert context.response == {"premium": 1250.0, "currency": "USD"}
        assert result.output["httpStatus"] == 200
        assert result.output["isMock"] is True
        assert context.working == {"state": "TX"}

    @pytest.mark.asyncio
    async def test_unknown_system_fails(self, store, make_context):
        result = await CallRatingEngineHandler(store, store).execute(make_context({}), {"systemCode": "nope"})
        assert result.status == StepStatus.FAILED
        assert result.error == 'System "nope" not found in registry'

    @pytest.mark.asyncio
    async def test_non_2xx_fails_with_status(self, store, make_context):
        result = await CallExternalApiHandler(store, store).execute(
            make_context({}), {"systemCode": "cgi-ratabase", "endpoint": "/missing"}
        )
        assert result.status == StepStatus.FAILED
        assert result.output["httpStatus"] == 404

    @pytest.mark.asyncio
    async def test_external_api_replaces_working(self, store, make_context):
        store.systems["cgi-ratabase"].mock_responses["/credit"] = {"score": 780}
        context = make_context({"ssn": "xxx"})
        result = await CallExternalApiHandler(store, store).execute(
            context, {"systemCode": "cgi-ratabase", "endpoint": "/credit"}
        )
        assert result.status == StepStatus.COMPLETED
        assert context.working == {"score": 780}

    def test_validate(self, store):
        assert CallRatingEngineHandler(store, store).validate({"systemCode": "x"}).valid
        errors = CallExternalApiHandler(store, store).validate({"method": "FETCH"}).errors
        assert "systemCode is required" in errors
        assert "endpoint is required" in errors
        assert len(errors) == 3


class TestEnrich:
    @pytest.mark.asyncio
    async def test_hit_merges_into_target(self, store, make_context):
        context = make_context({"zip": "75001", "territory": {"source": "manual"}})
        config = {"lookups": [{"sourceField": "zip", "tableKey": "territories", "targetField": "territory"}]}
        result = await EnrichHandler(store).execute(context, config)

        assert result.status == StepStatus.COMPLETED
        assert context.working["territory"] == {"source": "manual", "territory": "T12", "zone": "north"}
        assert context.enrichments["territories"] == {"territory": "T12", "zone": "north"}
        assert result.output["lookups"][0]["found"] is True

    @pytest.mark.asyncio
    async def test_miss_and_empty_key_are_not_found(self, store, make_context):
        context = make_context({"zip": "99999", "county": ""})
        config = {"lookups": [
            {"sourceField": "zip", "tableKey": "territories", "targetField": "territory"},
            {"sourceField": "county", "tableKey": "counties", "targetField": "countyInfo"},
        ]}
        result = await EnrichHandler(store).execute(context, config)

        assert result.status == StepStatus.COMPLETED
        assert [entry["found"] for entry in result.output["lookups"]] == [False, False]
        assert "territory" not in context.working

    @pytest.mark.asyncio
    async def test_lookup_failure_is_recorded(self, make_context):
        config = {"lookups": [{"sourceField": "zip", "tableKey": "territories", "targetField": "t"}]}
        result = await EnrichHandler(Unavailable()).execute(make_context({"zip": "1"}), config)
        assert result.status == StepStatus.COMPLETED
        assert "unavailable" in result.output["lookups"][0]["error"]

    def test_validate(self, store):
        assert not EnrichHandler(store).validate({}).valid
        assert EnrichHandler(store).validate(
            {"lookups": [{"sourceField": "zip", "tableKey": "territories"}]}
        ).valid


class TestValidateRequest:
    @pytest.mark.asyncio
    async def test_collects_every_violation(self, make_context):
        context = make_context({"state": "", "extra": 1, "other": 2})
        config = {"requiredFields": "state, dwelling.coverageA", "strictMode": "true", "allowedFields": ["state"]}
        result = await ValidateRequestHandler().execute(context, config)

        assert result.status == StepStatus.FAILED
        assert result.output["errors"] == [
            "Missing required field: state",
            "Missing required field: dwelling.coverageA",
            "Unexpected field: extra",
            "Unexpected field: other",
        ]

    @pytest.mark.asyncio
    async def test_empty_payload_fails(self, make_context):
        result = await ValidateRequestHandler().execute(make_context({}), {})
        assert result.output["errors"] == ["Request payload is empty"]

    @pytest.mark.asyncio
    async def test_valid_payload(self, make_context):
        result = await ValidateRequestHandler().execute(
            make_context({"state": "TX", "dwelling": {"coverageA": 0}}),
            {"requiredFields": ["state", "dwelling.coverageA"]},
        )
        assert result.status == StepStatus.COMPLETED


class TestGenerateValue:
    @pytest.mark.asyncio
    async def test_uuid(self, make_context):
        context = make_context({})
        await GenerateValueHandler().execute(context, {"targetPath": "meta.quoteId"})
        uuid.UUID(context.working["meta"]["quoteId"])

    @pytest.mark.asyncio
    async def test_timestamp(self, make_context):
        context = make_context({})
        await GenerateValueHandler().execute(context, {"targetPath": "ts", "generator": "timestamp"})
        assert context.working["ts"].endswith("Z")
        assert "T" in context.working["ts"]

    @pytest.mark.asyncio
    async def test_unknown_generator_defaults_to_uuid(self, make_context):
        context = make_context({})
        result = await GenerateValueHandler().execute(context, {"targetPath": "id", "generator": "snowflake"})
        assert result.status == StepStatus.COMPLETED
        assert result.output["generator"] == "uuid"

    @pytest.mark.asyncio
    async def test_missing_target_path_fails(self, make_context):
        result = await GenerateValueHandler().execute(make_context({}), {})
        assert result.status == StepStatus.FAILED


class TestPublishEvent:
    @pytest.mark.asyncio
    async def test_publishes_payload_path(self, store, make_context):
        context = make_context({"quote": {"premium": 100}})
        result = await PublishEventHandler(store).execute(context, {"payloadPath": "quote"})

        assert result.output == {"topic": "rating.event", "published": True}
        assert store.published == [{"topic": "rating.event", "key": "test-cid", "message": {"premium": 100}}]

    @pytest.mark.asyncio
    async def test_sink_error_degrades_to_log_only(self, make_context):
        result = await PublishEventHandler(BrokenSink()).execute(make_context({}), {"topic": "quotes"})

        assert result.status == StepStatus.COMPLETED
        assert result.output["published"] is False
        assert result.output["fallback"] == "log-only"

    @pytest.mark.asyncio
    async def test_no_sink_is_log_only(self, make_context):
        result = await PublishEventHandler(None).execute(make_context({}), {})
        assert result.output["fallback"] == "log-only"


class TestRunCustomFlow:
    @pytest.mark.asyncio
    async def test_runs_sub_flow_steps(self, providers, make_context):
        registry = build_default_registry(providers)
        context = make_context({"state": "TX"})
        result = await registry.get("run_custom_flow").execute(context, {"customFlowId": "cf-stamp"})

        assert result.status == StepStatus.COMPLETED
        assert result.output["stepsExecuted"] == 1
        uuid.UUID(context.working["quoteId"])

    @pytest.mark.asyncio
    async def test_missing_flow(self, providers, make_context):
        registry = build_default_registry(providers)
        result = await registry.get("run_custom_flow").execute(make_context({}), {"customFlowId": "nope"})
        assert result.status == StepStatus.FAILED
        assert result.error == "Custom flow nope not found"

    @pytest.mark.asyncio
    async def test_failing_sub_step_aborts(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"customFlows": [{"id": "cf", "steps": [
                {"stepOrder": 1, "stepType": "generate_value", "name": "Broken", "config": {}},
                {"stepOrder": 2, "stepType": "generate_value", "name": "Never", "config": {"targetPath": "x"}},
            ]}]}}
        )
        registry = build_default_registry(store.providers())
        context = make_context({})
        result = await RunCustomFlowHandler(registry, store).execute(context, {"customFlowId": "cf"})

        assert result.status == StepStatus.FAILED
        assert result.output["stepName"] == "Broken"
        assert "x" not in context.working

    @pytest.mark.asyncio
    async def test_missing_sub_handler_aborts(self, make_context):
        store = WorkspaceStore.from_dict(
            {"HO3": {"customFlows": [{"id": "cf", "steps": [{"stepOrder": 1, "stepType": "mystery"}]}]}}
        )
        registry = build_default_registry(store.providers())
        result = await registry.get("run_custom_flow").execute(make_context({}), {"customFlowId": "cf"})
        assert result.error == "No handler registered for type: mystery"


class TestRunScript:
    @pytest.mark.asyncio
    async def test_success_adopts_copies(self, make_context):
        context = make_context({"premium": 100}, {"state": "TX"})
        result = await RunScriptHandler().execute(
            context,
            {"scriptSource": "working['premium'] += 10\nresponse['state'] = scope['state']"},
        )

        assert result.status == StepStatus.COMPLETED
        assert context.working == {"premium": 110}
        assert context.response == {"state": "TX"}
        assert context.request == {"premium": 100}

    @pytest.mark.asyncio
    async def test_failure_leaves_context(self, make_context):
        context = make_context({"premium": 100})
        result = await RunScriptHandler().execute(
            context, {"scriptSource": "working['premium'] = 0\nreturn working['missing']"}
        )

        assert result.status == StepStatus.FAILED
        assert result.error.startswith("KeyError")
        assert context.working == {"premium": 100}

    @pytest.mark.asyncio
    async def test_oversized_builtin_call_fails(self, make_context):
        context = make_context({"premium": 100})
        result = await RunScriptHandler().execute(
            context, {"scriptSource": "working['x'] = sum(range(10**9))", "timeoutMs": 100}
        )

        assert result.status == StepStatus.FAILED
        assert "exceeds" in result.error
        assert context.working == {"premium": 100}

    @pytest.mark.asyncio
    async def test_unresponsive_worker_is_abandoned(self, make_context, monkeypatch):
        def stuck(*args, **kwargs):
            time.sleep(0.5)
            return ScriptResult(success=True, duration_ms=500, working={"late": True}, response={})

        monkeypatch.setattr(run_script_module, "run_script", stuck)
        monkeypatch.setattr(run_script_module, "BACKSTOP_GRACE_SECONDS", 0.05)
        context = make_context({"premium": 100})

        start = time.monotonic()
        result = await RunScriptHandler().execute(context, {"scriptSource": "pass", "timeoutMs": 100})

        assert time.monotonic() - start < 0.45
        assert result.status == StepStatus.FAILED
        assert result.error == "Script timed out after 100ms"
        assert context.working == {"premium": 100}

    def test_validate(self):
        handler = RunScriptHandler()
        assert handler.validate({"scriptSource": "working['a'] = 1", "timeoutMs": 500}).valid
        assert not handler.validate({"scriptSource": "working['a'] = 1", "timeoutMs": 50}).valid
        assert not handler.validate({}).valid
