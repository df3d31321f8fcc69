"""Collaborators that supply configuration and reach external systems."""

from rating_orchestrator.providers.http import build_http_providers
from rating_orchestrator.providers.protocol import (
    CustomFlowProvider,
    EventSink,
    FlowProvider,
    LookupProvider,
    MappingProvider,
    Providers,
    RuleProvider,
    SystemGateway,
    SystemRegistry,
    SystemResponse,
)
from rating_orchestrator.providers.workspace import WorkspaceStore

__all__ = [
    "CustomFlowProvider",
    "EventSink",
    "FlowProvider",
    "LookupProvider",
    "MappingProvider",
    "Providers",
    "RuleProvider",
    "SystemGateway",
    "SystemRegistry",
    "SystemResponse",
    "WorkspaceStore",
    "build_http_providers",
]
