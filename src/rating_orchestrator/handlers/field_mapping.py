"""``field_mapping`` step: copy and transform fields according to a mapping definition."""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.providers.protocol import MappingProvider
from rating_orchestrator.schemas.mappings import FieldMapping, MappingDefinition
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult
from rating_orchestrator.transforms.executor import DEFAULT_EXPRESSION_TIMEOUT_MS, apply_transform
from rating_orchestrator.utils.paths import get_path, set_path

logger = logging.getLogger(__name__)

DIRECTIONS = ("request", "response")


class FieldMappingHandler:
    """Applies a mapping's field rows from a source document into a target.

    Direction ``request`` reads the original request and writes into
    ``working``; direction ``response`` reads and writes ``response``. All
    writes go to a deep copy of the target, which replaces it only after
    every row has been processed.

    Config:
        direction: ``request`` (default) or ``response``.
        mappingId: Optional explicit mapping; falls back to the product
            line's active/draft mapping for the direction.

    A missing mapping, or an unreachable mapping service, passes the
    payload through unchanged with a ``completed`` result. Missing required
    fields and transform errors are reported in the output and never fail
    the step.
    """

    type = "field_mapping"

    def __init__(
        self, mappings: MappingProvider, expression_timeout_ms: int = DEFAULT_EXPRESSION_TIMEOUT_MS
    ):
        self.mappings = mappings
        self.expression_timeout_ms = expression_timeout_ms

    async def _resolve(
        self, context: ExecutionContext, config: Dict[str, Any], direction: str
    ) -> Optional[MappingDefinition]:
        cid = context.correlation_id
        mapping_id = config.get("mappingId")
        if mapping_id:
            try:
                mapping = await self.mappings.get_mapping(str(mapping_id), cid)
            except ProviderUnavailableError as e:
                logger.warning(f"Mapping {mapping_id} could not be fetched ({e.message}), falling back to direction lookup [{cid}]")
                mapping = None
            if mapping is not None:
                return mapping
            logger.warning(f"Mapping {mapping_id} not found, falling back to direction lookup [{cid}]")

        candidates = await self.mappings.list_mappings(context.product_line_code, cid)
        for mapping in candidates:
            if mapping.direction == direction and mapping.is_usable:
                return mapping
        return None

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        direction = config.get("direction") or "request"
        cid = context.correlation_id
        source = context.request if direction == "request" else context.response

        try:
            mapping = await self._resolve(context, config, direction)
            if mapping is None:
                logger.info(f"No {direction} mapping found for {context.product_line_code} [{cid}]")
                return HandlerResult.completed(
                    {
                        "direction": direction,
                        "message": f"No {direction} mapping configured, passthrough",
                        "fieldsApplied": 0,
                    }
                )
            fields = mapping.fields
            if fields is None:
                fields = await self.mappings.get_fields(mapping.id, cid)
        except ProviderUnavailableError as e:
            logger.error(f"field_mapping: {e.message} [{cid}]")
            return HandlerResult.completed(
                {
                    "direction": direction,
                    "error": e.message,
                    "message": "Mapping service unavailable, passthrough",
                    "fieldsApplied": 0,
                }
            )

        target = copy.deepcopy(context.working if direction == "request" else context.response)
        # transforms may evaluate user expressions, keep them off the event loop
        report = await asyncio.to_thread(
            self._apply_fields, sorted(fields, key=lambda f: f.sort_order), source, target
        )

        if direction == "request":
            context.working = target
        else:
            context.response = target

        if report["requiredFieldErrors"]:
            logger.warning(
                f"field_mapping: {len(report['requiredFieldErrors'])} required field(s) missing "
                f"in mapping {mapping.name or mapping.id} [{cid}]"
            )
        return HandlerResult.completed(
            {
                "direction": direction,
                "mappingId": mapping.id,
                "mappingName": mapping.name,
                "totalFields": len(fields),
                **report,
            }
        )

    def _apply_fields(
        self, fields: List[FieldMapping], source: Dict[str, Any], target: Dict[str, Any]
    ) -> Dict[str, Any]:
        applied = 0
        details: List[Dict[str, Any]] = []
        required_errors: List[Dict[str, Any]] = []
        transform_errors: List[Dict[str, Any]] = []

        for field in fields:
            if field.skip_mapping:
                if field.skip_uses_default and field.default_value is not None:
                    set_path(target, field.target_path, copy.deepcopy(field.default_value))
                    applied += 1
                    details.append(
                        {"source": field.source_path, "target": field.target_path,
                         "value": field.default_value, "skipped": True}
                    )
                continue

            value = get_path(source, field.source_path)
            if value is None:
                if field.default_value is not None:
                    set_path(target, field.target_path, copy.deepcopy(field.default_value))
                    applied += 1
                    details.append(
                        {"source": field.source_path, "target": field.target_path,
                         "value": field.default_value, "defaulted": True}
                    )
                elif field.is_required:
                    required_errors.append(
                        {
                            "sourcePath": field.source_path,
                            "targetPath": field.target_path,
                            "error": f"Required field missing: {field.source_path}",
                        }
                    )
                continue

            config = {"timeoutMs": self.expression_timeout_ms, **field.transform_config}
            result = apply_transform(value, field.transformation_type, config, source)
            if result.error:
                transform_errors.append(
                    {
                        "sourcePath": field.source_path,
                        "targetPath": field.target_path,
                        "transformationType": field.transformation_type,
                        "error": result.error,
                    }
                )
            set_path(target, field.target_path, copy.deepcopy(result.value))
            applied += 1
            details.append(
                {"source": field.source_path, "target": field.target_path, "value": result.value}
            )

        return {
            "fieldsApplied": applied,
            "fieldDetails": details,
            "requiredFieldErrors": required_errors,
            "transformErrors": transform_errors,
        }

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        direction = config.get("direction")
        if direction is not None and direction not in DIRECTIONS:
            return ValidationResult.from_errors(["direction must be 'request' or 'response'"])
        return ValidationResult.from_errors([])

    async def health_check(self) -> HealthStatus:
        return await probe_provider(self.mappings, "mappings")
