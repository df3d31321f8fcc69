"""YAML-backed collaborator store.

A workspace directory holds one file per product line::

    <workspace>/product_lines/<code>.yaml

Each file declares the product line's steps, mappings (with their field
rows), rules, lookup tables, and any systems and custom flows it uses.
Systems and custom flows are indexed across all files. A system may carry
``mockResponses`` keyed by endpoint, which the workspace gateway serves
instead of calling out.

The store implements every provider protocol, so a :class:`Providers`
set can be built from it for offline runs and tests.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field

from rating_orchestrator.providers.protocol import Providers, SystemGateway, SystemResponse
from rating_orchestrator.schemas.base import CamelModel
from rating_orchestrator.schemas.mappings import FieldMapping, MappingDefinition, SystemRegistration
from rating_orchestrator.schemas.rules import Rule
from rating_orchestrator.schemas.steps import CustomFlow, OrchestratorStep

logger = logging.getLogger(__name__)

PRODUCT_LINES_DIR = "product_lines"


class WorkspaceSystem(SystemRegistration):
    """A system registration with canned responses for offline runs."""

    mock_responses: Dict[str, Any] = Field(default_factory=dict)
    mock_status: int = 200


class ProductLineConfig(CamelModel):
    """Everything a workspace file declares for one product line."""

    code: str
    name: str = ""
    steps: Optional[List[OrchestratorStep]] = None
    mappings: List[MappingDefinition] = Field(default_factory=list)
    rules: List[Rule] = Field(default_factory=list)
    lookup_tables: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    systems: List[WorkspaceSystem] = Field(default_factory=list)
    custom_flows: List[CustomFlow] = Field(default_factory=list)


def load_product_line(path: Path) -> ProductLineConfig:
    """Load one product-line file.

    Raises:
        ValueError: If the file is not valid YAML or does not match the schema.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in product line file {path}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Product line file {path} must contain a mapping")
    data.setdefault("code", path.stem)
    return ProductLineConfig.model_validate(data)


class WorkspaceStore:
    """In-memory configuration store implementing every provider protocol."""

    def __init__(
        self,
        product_lines: Optional[List[ProductLineConfig]] = None,
        fallback_gateway: Optional[SystemGateway] = None,
    ):
        self.product_lines: Dict[str, ProductLineConfig] = {}
        self.systems: Dict[str, WorkspaceSystem] = {}
        self.custom_flows: Dict[str, CustomFlow] = {}
        self.fallback_gateway = fallback_gateway
        self.published: List[Dict[str, Any]] = []
        for config in product_lines or []:
            self.add(config)

    @classmethod
    def from_workspace(cls, path: Union[str, Path], **kwargs) -> "WorkspaceStore":
        """Load every ``product_lines/*.yaml`` file under ``path``."""
        root = Path(path)
        directory = root / PRODUCT_LINES_DIR
        if not directory.is_dir():
            raise ValueError(f"Workspace {root} has no {PRODUCT_LINES_DIR}/ directory")
        files = sorted(directory.glob("*.yaml")) + sorted(directory.glob("*.yml"))
        configs = [load_product_line(f) for f in files]
        logger.info(f"Loaded {len(configs)} product line(s) from {directory}")
        return cls(configs, **kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]], **kwargs) -> "WorkspaceStore":
        """Build a store from ``{code: product_line_dict}``."""
        configs = [
            ProductLineConfig.model_validate({"code": code, **(body or {})})
            for code, body in data.items()
        ]
        return cls(configs, **kwargs)

    def add(self, config: ProductLineConfig) -> None:
        self.product_lines[config.code] = config
        for system in config.systems:
            self.systems[system.code] = system
        for flow in config.custom_flows:
            self.custom_flows[flow.id] = flow

    def providers(self) -> Providers:
        return Providers(
            flows=self,
            custom_flows=self,
            mappings=self,
            rules=self,
            lookups=self,
            systems=self,
            gateway=self,
            events=self,
        )

    # FlowProvider / CustomFlowProvider

    async def get_steps(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> Optional[List[OrchestratorStep]]:
        config = self.product_lines.get(product_line_code)
        if config is None or config.steps is None:
            return None
        return list(config.steps)

    async def get_custom_flow(
        self, flow_id: str, correlation_id: Optional[str] = None
    ) -> Optional[CustomFlow]:
        return self.custom_flows.get(flow_id)

    # MappingProvider

    async def get_mapping(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> Optional[MappingDefinition]:
        for config in self.product_lines.values():
            for mapping in config.mappings:
                if mapping.id == mapping_id:
                    return mapping
        return None

    async def list_mappings(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[MappingDefinition]:
        config = self.product_lines.get(product_line_code)
        return list(config.mappings) if config else []

    async def get_fields(
        self, mapping_id: str, correlation_id: Optional[str] = None
    ) -> List[FieldMapping]:
        mapping = await self.get_mapping(mapping_id)
        if mapping is None:
            return []
        return list(mapping.fields or [])

    # RuleProvider

    async def get_rules(
        self, product_line_code: str, correlation_id: Optional[str] = None
    ) -> List[Rule]:
        config = self.product_lines.get(product_line_code)
        return list(config.rules) if config else []

    # LookupProvider

    async def lookup(
        self,
        table: str,
        key: str,
        product_line_code: str,
        correlation_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        config = self.product_lines.get(product_line_code)
        if config is None:
            return None
        return (config.lookup_tables.get(table) or {}).get(str(key)) or None

    # SystemRegistry / SystemGateway

    async def get_system(
        self, code: str, correlation_id: Optional[str] = None
    ) -> Optional[SystemRegistration]:
        return self.systems.get(code) or self.systems.get(code.lower())

    async def call(
        self,
        system: SystemRegistration,
        endpoint: str,
        method: str,
        body: Optional[Dict[str, Any]],
        correlation_id: Optional[str] = None,
    ) -> SystemResponse:
        known = self.systems.get(system.code)
        url = f"workspace://{system.code}/{endpoint.lstrip('/')}"
        if known is not None:
            for candidate in (endpoint, "/" + endpoint.lstrip("/"), endpoint.lstrip("/")):
                if candidate in known.mock_responses:
                    return SystemResponse(
                        status_code=known.mock_status,
                        body=known.mock_responses[candidate],
                        url=url,
                        is_mock=True,
                    )
        if self.fallback_gateway is not None:
            return await self.fallback_gateway.call(system, endpoint, method, body, correlation_id)
        return SystemResponse(
            status_code=404,
            body={"error": f"No mock response for {system.code} {endpoint}"},
            url=url,
            is_mock=True,
        )

    # EventSink

    async def publish(
        self,
        topic: str,
        key: str,
        message: Any,
        correlation_id: Optional[str] = None,
    ) -> None:
        logger.info(f"Workspace event on {topic} [{key}]")
        self.published.append({"topic": topic, "key": key, "message": message})
