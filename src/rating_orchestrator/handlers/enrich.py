"""``enrich`` step: keyed lookups merged into ``working``."""

import copy
import logging
from typing import Any, Dict, List

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.providers.protocol import LookupProvider
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult
from rating_orchestrator.utils.paths import get_path, set_path

logger = logging.getLogger(__name__)


class EnrichHandler:
    """Looks up each configured key and merges the hit into ``working``.

    Config:
        lookups: ``[{sourceField, tableKey, targetField}]``. ``sourceField``
            is read from ``working``; the lookup result (an object) is
            merged into whatever already sits at ``targetField``.

    Misses, empty keys and per-lookup failures are reported in the output
    and never fail the step.
    """

    type = "enrich"

    def __init__(self, lookups: LookupProvider):
        self.lookups = lookups

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        cid = context.correlation_id
        configured = config.get("lookups") or []
        results: List[Dict[str, Any]] = []

        for item in configured:
            table = item.get("tableKey")
            source_field = item.get("sourceField")
            target_field = item.get("targetField") or table
            key = get_path(context.working, source_field)
            entry: Dict[str, Any] = {
                "tableKey": table,
                "key": key,
                "found": False,
                "targetField": target_field,
            }
            if key is None or key == "" or not table:
                results.append(entry)
                continue

            try:
                value = await self.lookups.lookup(
                    table, str(key), context.product_line_code, cid
                )
            except ProviderUnavailableError as e:
                logger.warning(f"enrich: lookup {table}[{key}] failed: {e.message} [{cid}]")
                entry["error"] = e.message
                results.append(entry)
                continue

            if value is None:
                results.append(entry)
                continue

            existing = get_path(context.working, target_field)
            if isinstance(existing, dict) and isinstance(value, dict):
                merged = {**existing, **copy.deepcopy(value)}
            else:
                merged = copy.deepcopy(value)
            set_path(context.working, target_field, merged)
            context.enrichments[table] = copy.deepcopy(value)
            entry["found"] = True
            results.append(entry)

        found = sum(1 for r in results if r["found"])
        logger.info(f"enrich: {found}/{len(results)} lookups found [{cid}]")
        return HandlerResult.completed({"lookups": results, "found": found})

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        configured = config.get("lookups")
        if not configured or not isinstance(configured, list):
            return ValidationResult.from_errors(["lookups must be a non-empty list"])
        errors: List[str] = []
        for i, item in enumerate(configured):
            if not isinstance(item, dict):
                errors.append(f"lookups[{i}] must be an object")
                continue
            for key in ("sourceField", "tableKey"):
                if not item.get(key):
                    errors.append(f"lookups[{i}].{key} is required")
        return ValidationResult.from_errors(errors)

    async def health_check(self) -> HealthStatus:
        return await probe_provider(self.lookups, "lookups")
