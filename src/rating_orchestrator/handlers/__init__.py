"""Built-in step handlers, one module per step type."""

from typing import Optional

from rating_orchestrator.config import Settings
from rating_orchestrator.handlers.apply_rules import ApplyRulesHandler
from rating_orchestrator.handlers.enrich import EnrichHandler
from rating_orchestrator.handlers.field_mapping import FieldMappingHandler
from rating_orchestrator.handlers.generate_value import GenerateValueHandler
from rating_orchestrator.handlers.publish_event import PublishEventHandler
from rating_orchestrator.handlers.run_custom_flow import RunCustomFlowHandler
from rating_orchestrator.handlers.run_script import RunScriptHandler
from rating_orchestrator.handlers.system_call import CallExternalApiHandler, CallRatingEngineHandler
from rating_orchestrator.handlers.validate_request import ValidateRequestHandler
from rating_orchestrator.pipeline.registry import StepHandlerRegistry
from rating_orchestrator.providers.protocol import Providers
from rating_orchestrator.rules.engine import RuleEngine


def build_default_registry(
    providers: Providers, settings: Optional[Settings] = None
) -> StepHandlerRegistry:
    """Construct every built-in handler and register it once."""
    settings = settings or Settings()
    registry = StepHandlerRegistry()
    for handler in (
        ValidateRequestHandler(),
        GenerateValueHandler(),
        FieldMappingHandler(providers.mappings, settings.expression_timeout_ms),
        EnrichHandler(providers.lookups),
        ApplyRulesHandler(RuleEngine(providers.rules)),
        CallRatingEngineHandler(providers.systems, providers.gateway),
        CallExternalApiHandler(providers.systems, providers.gateway),
        PublishEventHandler(providers.events),
        RunScriptHandler(settings.script_timeout_ms),
        RunCustomFlowHandler(registry, providers.custom_flows),
    ):
        registry.register(handler)
    return registry


__all__ = [
    "ApplyRulesHandler",
    "CallExternalApiHandler",
    "CallRatingEngineHandler",
    "EnrichHandler",
    "FieldMappingHandler",
    "GenerateValueHandler",
    "PublishEventHandler",
    "RunCustomFlowHandler",
    "RunScriptHandler",
    "ValidateRequestHandler",
    "build_default_registry",
]
