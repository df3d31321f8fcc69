"""Collaborator interfaces consumed by the orchestrator.

Configuration (flows, mappings, rules, lookup tables, systems) lives in
other services. The orchestrator only reads it through these protocols,
so the HTTP clients and the YAML workspace store are interchangeable.

Conventions shared by every implementation:
- "not found" is ``None`` (or an empty list), never an exception
- an unreachable collaborator raises ``ProviderUnavailableError``
- ``correlation_id`` is forwarded on outbound calls when given
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from rating_orchestrator.schemas.mappings import FieldMapping, MappingDefinition, SystemRegistration
from rating_orchestrator.schemas.rules import Rule
from rating_orchestrator.schemas.steps import CustomFlow, OrchestratorStep


@runtime_checkable
class FlowProvider(Protocol):
    """Supplies the step list for a product line."""

    async def get_steps(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> Optional[List[OrchestratorStep]]:
        """Return the product line's steps, or None if it has no flow.

        Raises:
            ProviderUnavailableError: If the flow service cannot be reached.
        """
        ...


@runtime_checkable
class CustomFlowProvider(Protocol):
    """Supplies reusable sub-flows by id."""

    async def get_custom_flow(
        self, flow_id: str, correlation_id: Optional[str] = None
    ) -> Optional[CustomFlow]:
        ...


@runtime_checkable
class MappingProvider(Protocol):
    """Supplies mapping definitions and their field rows."""

    async def get_mapping(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> Optional[MappingDefinition]:
        ...

    async def list_mappings(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[MappingDefinition]:
        ...

    async def get_fields(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> List[FieldMapping]:
        ...


@runtime_checkable
class RuleProvider(Protocol):
    """Supplies rule definitions (conditions, actions, scope tags) for a product line."""

    async def get_rules(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[Rule]:
        ...


@runtime_checkable
class LookupProvider(Protocol):
    """Keyed lookups against named tables."""

    async def lookup(
        self,
        table: str,
        key: str,
        product_line_code: str,
        correlation_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Return the value object for ``key``, or None on a miss."""
        ...


@runtime_checkable
class SystemRegistry(Protocol):
    """Resolves external system registrations by code."""

    async def get_system(
        self, code: str, correlation_id: Optional[str] = None
    ) -> Optional[SystemRegistration]:
        ...


@dataclass
class SystemResponse:
    """What an external system returned."""

    status_code: int
    body: Any
    url: str
    is_mock: bool = False
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class SystemGateway(Protocol):
    """Sends a request to a registered external system."""

    async def call(
        self,
        system: SystemRegistration,
        endpoint: str,
        method: str,
        body: Optional[Dict[str, Any]],
        correlation_id: Optional[str] = None,
    ) -> SystemResponse:
        """Send one request.

        Returns:
            The response, whatever its status code.

        Raises:
            ProviderUnavailableError: On transport failure or timeout.
        """
        ...


@runtime_checkable
class EventSink(Protocol):
    """Best-effort event publishing."""

    async def publish(
        self,
        topic: str,
        key: str,
        message: Any,
        correlation_id: Optional[str] = None,
    ) -> None:
        ...


@dataclass
class Providers:
    """The full set of collaborators a registry is built from."""

    flows: FlowProvider
    custom_flows: CustomFlowProvider
    mappings: MappingProvider
    rules: RuleProvider
    lookups: LookupProvider
    systems: SystemRegistry
    gateway: SystemGateway
    events: Optional[EventSink] = None
