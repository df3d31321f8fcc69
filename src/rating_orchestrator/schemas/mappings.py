"""Pydantic models for field mappings and external system registrations."""

from typing import Any, Dict, List, Optional

from pydantic import Field

from rating_orchestrator.schemas.base import CamelModel

MAPPABLE_STATUSES = ("active", "draft")


class FieldMapping(CamelModel):
    """One source-path -> target-path field transformation."""

    id: Optional[str] = None
    source_path: str = ""
    target_path: str
    transformation_type: Optional[str] = "direct"
    transform_config: Dict[str, Any] = Field(default_factory=dict)
    is_required: bool = False
    default_value: Optional[Any] = None
    description: Optional[str] = None
    sort_order: int = 0

    @property
    def skip_mapping(self) -> bool:
        return bool(self.transform_config.get("skipMapping"))

    @property
    def skip_uses_default(self) -> bool:
        return self.transform_config.get("skipBehavior") == "use_default"


class MappingDefinition(CamelModel):
    """A named set of field mappings for one direction of a product line."""

    id: str
    name: str = ""
    product_line_code: str = ""
    direction: str = "request"
    status: str = "draft"
    fields: Optional[List[FieldMapping]] = None

    @property
    def is_usable(self) -> bool:
        return self.status in MAPPABLE_STATUSES


class SystemRegistration(CamelModel):
    """An external rating or enrichment system reachable over HTTP."""

    id: Optional[str] = None
    code: str
    name: str = ""
    type: str = "rating_engine"
    format: str = "json"
    protocol: str = "rest"
    base_url: Optional[str] = None
    is_mock: bool = False
    is_active: bool = True
    auth_method: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    @property
    def routes_to_mock(self) -> bool:
        return self.is_mock or not self.base_url
