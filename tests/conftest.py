"""
Pytest fixtures shared by the rating orchestrator tests.
Provides a small in-memory product line and helpers for building contexts.
"""

import copy
from pathlib import Path

import pytest

from rating_orchestrator.config import Settings
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.providers.workspace import WorkspaceStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


HO3_PRODUCT_LINE = {
    "name": "Homeowners HO-3",
    "steps": [
        {"id": "s1", "stepOrder": 1, "stepType": "validate_request", "name": "Validate",
         "config": {"requiredFields": ["state", "dwelling.coverageA"]}},
        {"id": "s2", "stepOrder": 2, "stepType": "field_mapping", "name": "Map Request",
         "config": {"direction": "request"}},
        {"id": "s3", "stepOrder": 3, "stepType": "apply_rules", "name": "Pre-rating Rules",
         "config": {"scope": "pre_rating"}},
        {"id": "s4", "stepOrder": 4, "stepType": "call_rating_engine", "name": "Rate",
         "config": {"systemCode": "cgi-ratabase"}},
    ],
    "mappings": [
        {
            "id": "map-ho3-req",
            "name": "HO3 request",
            "direction": "request",
            "status": "active",
            "fields": [
                {"sourcePath": "dwelling.coverageA", "targetPath": "rating.coverageAmount",
                 "transformationType": "divide", "transformConfig": {"divisor": 1000}, "sortOrder": 2},
                {"sourcePath": "$.state", "targetPath": "rating.state", "sortOrder": 1},
            ],
        },
    ],
    "rules": [
        {
            "id": "r1",
            "name": "Coastal surcharge",
            "priority": 10,
            "conditions": [{"field": "state", "operator": "in", "value": ["FL", "TX"]}],
            "actions": [{"actionType": "surcharge", "targetField": "premium", "value": 0.1}],
            "scopeTags": [{"scopeType": "state", "scopeValue": "TX"}],
        },
    ],
    "lookupTables": {
        "territories": {"75001": {"territory": "T12", "zone": "north"}},
    },
    "systems": [
        {
            "code": "cgi-ratabase",
            "name": "CGI Ratabase",
            "isMock": True,
            "mockResponses": {"/rate": {"premium": 1250.0, "currency": "USD"}},
        },
    ],
    "customFlows": [
        {
            "id": "cf-stamp",
            "name": "Stamp request",
            "steps": [
                {"stepOrder": 1, "stepType": "generate_value", "name": "Quote id",
                 "config": {"targetPath": "quoteId", "generator": "uuid"}},
            ],
        },
    ],
}


@pytest.fixture
def ho3_data():
    """A fresh copy of the HO3 product line definition."""
    return copy.deepcopy(HO3_PRODUCT_LINE)


@pytest.fixture
def store(ho3_data):
    """Workspace store holding the HO3 product line."""
    return WorkspaceStore.from_dict({"HO3": ho3_data})


@pytest.fixture
def providers(store):
    return store.providers()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def workspace_dir():
    """Path of the YAML fixture workspace."""
    return FIXTURES_DIR / "workspace"


@pytest.fixture
def make_context():
    """Factory for execution contexts."""

    def _make(payload=None, scope=None, product_line_code="HO3"):
        return ExecutionContext.create(product_line_code, payload or {}, scope, correlation_id="test-cid")

    return _make
