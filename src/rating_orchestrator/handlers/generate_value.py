"""``generate_value`` step."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.schemas.results import HandlerResult, ValidationResult
from rating_orchestrator.transforms.dates import to_iso_utc
from rating_orchestrator.utils.paths import set_path

logger = logging.getLogger(__name__)

GENERATORS = ("uuid", "timestamp")


class GenerateValueHandler:
    """Writes a generated UUID or UTC timestamp at ``targetPath`` in ``working``."""

    type = "generate_value"

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        target_path = config.get("targetPath")
        if not target_path:
            return HandlerResult.failed("targetPath is required")

        generator = config.get("generator") or "uuid"
        if generator not in GENERATORS:
            logger.warning(f"Unknown generator '{generator}', using uuid [{context.correlation_id}]")
            generator = "uuid"

        if generator == "timestamp":
            value = to_iso_utc(datetime.now(timezone.utc))
        else:
            value = str(uuid.uuid4())
        set_path(context.working, target_path, value)
        return HandlerResult.completed(
            {"targetPath": target_path, "generator": generator, "value": value}
        )

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        errors = []
        if not config.get("targetPath"):
            errors.append("targetPath is required")
        return ValidationResult.from_errors(errors)
