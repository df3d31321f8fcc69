"""Tests for the pipeline executor: ordering, conditions, failure policy and resilience."""

import asyncio

import pytest

from rating_orchestrator.errors import ProviderUnavailableError, RatingError
from rating_orchestrator.handlers.apply_rules import ApplyRulesHandler
from rating_orchestrator.pipeline.executor import PipelineExecutor, coerce_handler_result
from rating_orchestrator.pipeline.registry import StepHandlerRegistry
from rating_orchestrator.providers.workspace import WorkspaceStore
from rating_orchestrator.rules.engine import RuleEngine
from rating_orchestrator.schemas.results import HandlerResult, StepStatus, ValidationResult
from rating_orchestrator.schemas.steps import OrchestratorStep


class RecordingHandler:
    """Appends its step name to ``working.trail`` and returns a configured status."""

    def __init__(self, type_="record", status="completed"):
        self.type = type_
        self.status = status
        self.calls = 0

    async def execute(self, context, config):
        self.calls += 1
        context.working.setdefault("trail", []).append(config.get("label"))
        if self.status == "failed":
            return HandlerResult.failed(f"{config.get('label')} failed")
        return HandlerResult.completed({"label": config.get("label")})

    def validate(self, config):
        return ValidationResult.from_errors([])


class FlakyHandler:
    type = "flaky"

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def execute(self, context, config):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return {"status": "completed", "output": {"attempts": self.calls}}

    def validate(self, config):
        return ValidationResult.from_errors([])


class SlowHandler:
    type = "slow"

    async def execute(self, context, config):
        await asyncio.sleep(0.5)
        return HandlerResult.completed()

    def validate(self, config):
        return ValidationResult.from_errors([])


def _step(order, label, step_type="record", **extra):
    return OrchestratorStep.model_validate(
        {"id": f"step-{label}", "stepOrder": order, "stepType": step_type, "name": label,
         "config": {"label": label, **extra.pop("config", {})}, **extra}
    )


@pytest.fixture
def registry():
    reg = StepHandlerRegistry()
    reg.register(RecordingHandler())
    reg.register(RecordingHandler("fail", status="failed"))
    return reg


class TestOrdering:
    @pytest.mark.asyncio
    async def test_steps_run_in_step_order(self, registry, make_context):
        steps = [_step(3, "c"), _step(1, "a"), _step(2, "b")]
        context = make_context({})
        result = await PipelineExecutor(registry).execute(steps, context)

        assert result.status == StepStatus.COMPLETED
        assert context.working["trail"] == ["a", "b", "c"]
        assert [r.step_name for r in result.step_results] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_inactive_steps_produce_no_result(self, registry, make_context):
        steps = [_step(1, "a"), _step(2, "b", isActive=False)]
        result = await PipelineExecutor(registry).execute(steps, make_context({}))
        assert [r.step_name for r in result.step_results] == ["a"]

    @pytest.mark.asyncio
    async def test_equal_orders_keep_input_order(self, registry, make_context):
        steps = [_step(1, "first"), _step(1, "second")]
        context = make_context({})
        await PipelineExecutor(registry).execute(steps, context)
        assert context.working["trail"] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_request_snapshot_is_untouched(self, registry, make_context):
        context = make_context({"state": "TX"})
        await PipelineExecutor(registry).execute([_step(1, "a")], context)
        assert context.request == {"state": "TX"}
        assert "trail" in context.working


class TestConditions:
    @pytest.fixture
    def rules_registry(self):
        reg = StepHandlerRegistry()
        reg.register(ApplyRulesHandler(RuleEngine(WorkspaceStore.from_dict({"HO3": {"steps": []}}))))
        return reg

    @pytest.fixture
    def texas_steps(self):
        return [
            OrchestratorStep.model_validate(
                {"id": "1", "stepOrder": 1, "stepType": "apply_rules", "config": {"scope": "pre_rating"}}
            ),
            OrchestratorStep.model_validate(
                {
                    "id": "2",
                    "stepOrder": 2,
                    "stepType": "apply_rules",
                    "name": "Texas-Only",
                    "config": {
                        "scope": "pre_rating",
                        "condition": {"field": "state", "operator": "eq", "value": "TX"},
                    },
                }
            ),
        ]

    @pytest.mark.asyncio
    async def test_false_condition_skips_with_zero_duration(self, rules_registry, texas_steps, make_context):
        result = await PipelineExecutor(rules_registry).execute(texas_steps, make_context({"state": "CA"}))

        texas = result.step_results[1]
        assert texas.step_name == "Texas-Only"
        assert texas.status == StepStatus.SKIPPED
        assert texas.duration_ms == 0
        assert result.status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_true_condition_runs_step(self, rules_registry, texas_steps, make_context):
        result = await PipelineExecutor(rules_registry).execute(texas_steps, make_context({"state": "TX"}))
        assert result.step_results[1].status != StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_top_level_condition_wins_over_config(self, registry, make_context):
        step = _step(
            1, "a",
            condition={"field": "state", "operator": "eq", "value": "TX"},
            config={"condition": {"field": "state", "operator": "eq", "value": "CA"}},
        )
        result = await PipelineExecutor(registry).execute([step], make_context({"state": "TX"}))
        assert result.step_results[0].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rule_requested_skip(self, registry, make_context):
        context = make_context({"_skipSteps": ["b"]})
        result = await PipelineExecutor(registry).execute([_step(1, "a"), _step(2, "b")], context)
        assert result.step_results[1].status == StepStatus.SKIPPED
        assert result.step_results[1].output == {"reason": "skipped by rule"}


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_raised_rating_error_becomes_failed_step(self, registry, make_context):
        class RaisingHandler:
            type = "raising"

            async def execute(self, context, config):
                raise ProviderUnavailableError("Rules service", "timeout")

            def validate(self, config):
                return ValidationResult.from_errors([])

        registry.register(RaisingHandler())
        result = await PipelineExecutor(registry).execute([_step(1, "r", "raising")], make_context({}))

        assert result.status == StepStatus.FAILED
        assert result.step_results[0].error == "Rules service unavailable: timeout"

    def test_error_hierarchy(self):
        assert {cls.__name__ for cls in RatingError.__subclasses__()} == {
            "FlowNotFoundError",
            "ProviderUnavailableError",
            "SandboxError",
        }

    @pytest.mark.asyncio
    async def test_failure_stops_by_default(self, registry, make_context):
        steps = [_step(1, "a"), _step(2, "boom", "fail"), _step(3, "c")]
        context = make_context({})
        result = await PipelineExecutor(registry).execute(steps, context)

        assert result.status == StepStatus.FAILED
        assert [r.step_name for r in result.step_results] == ["a", "boom"]
        assert result.step_results[1].error == "boom failed"
        assert context.working["trail"] == ["a", "boom"]

    @pytest.mark.asyncio
    async def test_non_stop_policy_continues(self, registry, make_context):
        steps = [
            _step(1, "boom", "fail", resilience={"onFailure": "skip"}),
            _step(2, "c"),
        ]
        result = await PipelineExecutor(registry).execute(steps, make_context({}))

        assert result.status == StepStatus.COMPLETED
        assert [r.status for r in result.step_results] == [StepStatus.FAILED, StepStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_resilience_inside_config(self, registry, make_context):
        steps = [
            _step(1, "boom", "fail", config={"resilience": {"onFailure": "use_default"}}),
            _step(2, "c"),
        ]
        result = await PipelineExecutor(registry).execute(steps, make_context({}))
        assert len(result.step_results) == 2

    @pytest.mark.asyncio
    async def test_missing_handler_is_skipped_and_pipeline_continues(self, registry, make_context):
        steps = [_step(1, "ghost", "no_such_type"), _step(2, "c")]
        result = await PipelineExecutor(registry).execute(steps, make_context({}))

        ghost = result.step_results[0]
        assert ghost.status == StepStatus.SKIPPED
        assert ghost.error == "No handler registered for type: no_such_type"
        assert result.step_results[1].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_raising_handler_becomes_failed_result(self, make_context):
        reg = StepHandlerRegistry()
        reg.register(FlakyHandler(failures=5))
        step = OrchestratorStep.model_validate({"id": "f", "stepOrder": 1, "stepType": "flaky"})
        result = await PipelineExecutor(reg).execute([step], make_context({}))

        assert result.status == StepStatus.FAILED
        assert result.step_results[0].error == "attempt 1 failed"


class TestResilience:
    @pytest.mark.asyncio
    async def test_timeout(self, make_context):
        reg = StepHandlerRegistry()
        reg.register(SlowHandler())
        step = OrchestratorStep.model_validate(
            {"id": "s", "stepOrder": 1, "stepType": "slow", "resilience": {"timeout": 20}}
        )
        result = await PipelineExecutor(reg).execute([step], make_context({}))

        assert result.step_results[0].status == StepStatus.FAILED
        assert result.step_results[0].error == "Step timed out after 20ms"

    @pytest.mark.asyncio
    async def test_retry_until_success(self, make_context):
        handler = FlakyHandler(failures=2)
        reg = StepHandlerRegistry()
        reg.register(handler)
        step = OrchestratorStep.model_validate(
            {"id": "f", "stepOrder": 1, "stepType": "flaky",
             "resilience": {"retry": {"maxAttempts": 3, "backoffMs": 0}}}
        )
        result = await PipelineExecutor(reg).execute([step], make_context({}))

        assert result.status == StepStatus.COMPLETED
        assert handler.calls == 3
        assert result.step_results[0].output == {"attempts": 3}

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens_after_threshold(self, make_context):
        handler = FlakyHandler(failures=10)
        reg = StepHandlerRegistry()
        reg.register(handler)
        step = OrchestratorStep.model_validate(
            {"id": "f", "stepOrder": 1, "stepType": "flaky",
             "resilience": {"circuitBreaker": {"failureThreshold": 1, "resetAfterMs": 60000}}}
        )
        executor = PipelineExecutor(reg)

        first = await executor.execute([step], make_context({}))
        second = await executor.execute([step], make_context({}))

        assert first.step_results[0].error == "attempt 1 failed"
        assert second.step_results[0].error == "Circuit breaker open"
        assert second.step_results[0].duration_ms == 0
        assert handler.calls == 1


class TestCoerceHandlerResult:
    def test_none_is_completed(self):
        assert coerce_handler_result(None).status == StepStatus.COMPLETED

    def test_dict_is_validated(self):
        result = coerce_handler_result({"status": "skipped", "error": "nope"})
        assert result.status == StepStatus.SKIPPED
        assert result.error == "nope"

    def test_unsupported_type_fails(self):
        assert coerce_handler_result(42).status == StepStatus.FAILED
