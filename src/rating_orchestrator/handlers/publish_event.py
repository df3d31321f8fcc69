"""``publish_event`` step: best-effort event publishing."""

import logging
from typing import Any, Dict, Optional

from rating_orchestrator.handlers.base import probe_provider
from rating_orchestrator.pipeline.context import ExecutionContext
from rating_orchestrator.providers.protocol import EventSink
from rating_orchestrator.schemas.results import HandlerResult, HealthStatus, ValidationResult
from rating_orchestrator.utils.paths import get_path

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "rating.event"


class PublishEventHandler:
    """Publishes ``{topic, key, message}`` to the event sink.

    The message is ``working`` or the value at ``payloadPath``. Publishing
    never fails the step: without a sink, or when the sink errors, the
    event is logged and the result is ``completed`` with ``published:
    false``.
    """

    type = "publish_event"

    def __init__(self, events: Optional[EventSink] = None):
        self.events = events

    async def execute(self, context: ExecutionContext, config: Dict[str, Any]) -> HandlerResult:
        cid = context.correlation_id
        topic = config.get("topic") or DEFAULT_TOPIC
        payload_path = config.get("payloadPath")
        message = get_path(context.working, payload_path) if payload_path else context.working

        if self.events is None:
            logger.info(f"publish_event: no event sink configured, logging {topic} [{cid}]")
            return HandlerResult.completed(
                {"topic": topic, "published": False, "fallback": "log-only"}
            )

        try:
            await self.events.publish(topic, cid, message, cid)
        except Exception as e:
            logger.warning(f"publish_event: sink error on {topic}: {e} [{cid}]")
            return HandlerResult.completed(
                {"topic": topic, "published": False, "fallback": "log-only", "error": str(e)}
            )
        logger.info(f"publish_event: published to {topic} [{cid}]")
        return HandlerResult.completed({"topic": topic, "published": True})

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        topic = config.get("topic")
        if topic is not None and not isinstance(topic, str):
            return ValidationResult.from_errors(["topic must be a string"])
        return ValidationResult.from_errors([])

    async def health_check(self) -> HealthStatus:
        if self.events is None:
            return HealthStatus(healthy=True, details={"note": "No event sink configured"})
        return await probe_provider(self.events, "events")
