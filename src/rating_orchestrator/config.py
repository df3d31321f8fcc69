"""Runtime settings for the rating orchestrator.

Collaborator base URLs, outbound timeouts and sandbox limits. Values come
from environment variables (after ``startup.ensure_initialized()`` loads
``.env``), or are passed directly in tests.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_LINE_RATING_URL = "http://localhost:4001"
DEFAULT_PRODUCT_CONFIG_URL = "http://localhost:4010"
DEFAULT_RULES_SERVICE_URL = "http://localhost:4012"
DEFAULT_CORE_RATING_URL = "http://localhost:4000"


class Settings(BaseModel):
    """Orchestrator configuration.

    Attributes:
        line_rating_url: Flow and custom-flow service.
        product_config_url: Mappings, lookup tables and systems registry.
        rules_service_url: Rule definitions.
        core_rating_url: Base URL that mock systems are routed under.
        event_sink_url: Event publisher; None means log-only publishing.
        http_timeout_seconds: Timeout for configuration and system calls.
        lookup_timeout_seconds: Timeout for enrichment lookups.
        script_timeout_ms: Default run_script limit.
        expression_timeout_ms: Default expression/custom transform limit.
        workspace: Optional YAML workspace used instead of the services.
    """

    line_rating_url: str = DEFAULT_LINE_RATING_URL
    product_config_url: str = DEFAULT_PRODUCT_CONFIG_URL
    rules_service_url: str = DEFAULT_RULES_SERVICE_URL
    core_rating_url: str = DEFAULT_CORE_RATING_URL
    event_sink_url: Optional[str] = None
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    lookup_timeout_seconds: float = Field(default=10.0, gt=0)
    script_timeout_ms: int = Field(default=5000, ge=100, le=30000)
    expression_timeout_ms: int = Field(default=100, ge=1)
    workspace: Optional[Path] = None

    model_config = {"extra": "forbid"}

    @field_validator(
        "line_rating_url", "product_config_url", "rules_service_url", "core_rating_url", "event_sink_url"
    )
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URLs so paths can be appended with a leading slash."""
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("workspace", mode="before")
    @classmethod
    def convert_workspace(cls, v):
        """Convert string paths to Path objects; empty means unset."""
        if v == "":
            return None
        if isinstance(v, str):
            return Path(v)
        return v

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Environment variables:
            LINE_RATING_URL, PRODUCT_CONFIG_URL, RULES_SERVICE_URL,
            CORE_RATING_URL, EVENT_SINK_URL, HTTP_TIMEOUT_SECONDS,
            LOOKUP_TIMEOUT_SECONDS, SCRIPT_TIMEOUT_MS,
            EXPRESSION_TIMEOUT_MS, RATING_WORKSPACE

        Returns:
            Settings with unset variables left at their defaults.
        """
        env_map = {
            "line_rating_url": "LINE_RATING_URL",
            "product_config_url": "PRODUCT_CONFIG_URL",
            "rules_service_url": "RULES_SERVICE_URL",
            "core_rating_url": "CORE_RATING_URL",
            "event_sink_url": "EVENT_SINK_URL",
            "http_timeout_seconds": "HTTP_TIMEOUT_SECONDS",
            "lookup_timeout_seconds": "LOOKUP_TIMEOUT_SECONDS",
            "script_timeout_ms": "SCRIPT_TIMEOUT_MS",
            "expression_timeout_ms": "EXPRESSION_TIMEOUT_MS",
            "workspace": "RATING_WORKSPACE",
        }
        kwargs = {}
        for field_name, var in env_map.items():
            value = os.getenv(var)
            if value:
                kwargs[field_name] = value
        return cls(**kwargs)
