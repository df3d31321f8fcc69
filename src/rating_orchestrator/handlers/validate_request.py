"""``validate_request`` step: payload shape checks before rating."""

import logging
from typing import Any, Dict, List

from rating_orchestrator.handlers.base import as_bool, as_list
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.schemas.results import HandlerResult, ValidationResult
from rating_orchestrator.utils.paths import get_path

logger = logging.getLogger(__name__)


class ValidateRequestHandler:
    """Checks ``working`` for required fields and, in strict mode, unknown keys.

    All violations are collected into one failed result.
    """

    type = "validate_request"

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        payload = context.working
        errors: List[str] = []

        if not payload:
            errors.append("Request payload is empty")

        required = as_list(config.get("requiredFields"))
        for path in required:
            value = get_path(payload, path)
            if value is None or value == "":
                errors.append(f"Missing required field: {path}")

        strict = as_bool(config.get("strictMode"))
        allowed = as_list(config.get("allowedFields"))
        if strict and allowed:
            for key in payload or {}:
                if key not in allowed:
                    errors.append(f"Unexpected field: {key}")

        output = {
            "schema": config.get("schema"),
            "requiredFields": required,
            "strictMode": strict,
            "errors": errors,
        }
        if errors:
            logger.info(f"validate_request: {len(errors)} violation(s) [{context.correlation_id}]")
            return HandlerResult.failed(
                f"Request validation failed: {'; '.join(errors)}", output=output
            )
        return HandlerResult.completed(output)

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        errors = []
        if as_bool(config.get("strictMode")) and not as_list(config.get("allowedFields")):
            errors.append("allowedFields is required when strictMode is enabled")
        return ValidationResult.from_errors(errors)
