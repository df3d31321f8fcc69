"""``apply_rules`` step: evaluate the product line's rules and merge the deltas."""

import copy
import logging
from typing import Any, Dict

from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.rules.engine import RuleEngine
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult
from rating_orchestrator.utils.paths import set_path

logger = logging.getLogger(__name__)

PHASES = ("pre_rating", "post_rating")


class ApplyRulesHandler:
    """Runs the rule engine for a phase and writes modified fields into ``working``.

    Config:
        scope / phase: ``pre_rating`` (default) or ``post_rating``.

    An unreachable rule provider makes the step ``skipped``: rating
    continues without rule adjustments. A rejecting rule is reported in the
    output (``rejected``/``rejectReason``); it does not fail the step.
    """

    type = "apply_rules"

    def __init__(self, engine: RuleEngine):
        self.engine = engine

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        phase = config.get("scope") or config.get("phase") or "pre_rating"
        cid = context.correlation_id
        try:
            evaluation = await self.engine.evaluate(
                context.product_line_code, context.scope, phase, context.working, cid
            )
        except ProviderUnavailableError as e:
            logger.warning(f"apply_rules: {e.message} [{cid}]")
            return HandlerResult.skipped(
                "Rules service unavailable", output={"phase": phase, "error": e.message}
            )

        for path, value in evaluation.modified_fields.items():
            set_path(context.working, path, copy.deepcopy(value))

        output: Dict[str, Any] = {
            "phase": phase,
            "rulesEvaluated": evaluation.rules_evaluated,
            "rulesApplied": evaluation.rules_applied,
            "appliedRules": evaluation.applied_rule_names,
            "modifiedFields": evaluation.modified_fields,
            "rejected": evaluation.is_rejected,
        }
        if evaluation.is_rejected:
            output["rejectReason"] = evaluation.reject_reason
            logger.info(f"apply_rules: request rejected ({evaluation.reject_reason}) [{cid}]")
        return HandlerResult.completed(output)

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        phase = config.get("scope") or config.get("phase")
        if phase is not None and phase not in PHASES:
            return ValidationResult.from_errors([f"scope must be one of {', '.join(PHASES)}"])
        return ValidationResult.from_errors([])

    async def health_check(self) -> HealthStatus:
        return await probe_provider(self.engine.rule_provider, "rules")
