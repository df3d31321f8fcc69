"""Retry and circuit-breaker helpers for step execution."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from rating_orchestrator.schemas.steps import CircuitBreakerPolicy, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _BreakerState:
    failures: int = 0
    opened_at: Optional[float] = None


class CircuitBreakerBook:
    """In-memory breaker state keyed by step id.

    State lives as long as the executor that owns it, so breakers trip
    across requests served by the same executor.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._states: Dict[str, _BreakerState] = {}

    def is_open(self, key: str, policy: CircuitBreakerPolicy) -> bool:
        state = self._states.get(key)
        if state is None or state.opened_at is None:
            return False
        if (self._clock() - state.opened_at) * 1000 > policy.reset_after_ms:
            self._states[key] = _BreakerState()
            return False
        return True

    def record_success(self, key: str) -> None:
        self._states.pop(key, None)

    def record_failure(self, key: str, policy: CircuitBreakerPolicy) -> None:
        state = self._states.get(key) or _BreakerState()
        failures = state.failures + 1
        opened_at = state.opened_at
        if failures >= policy.failure_threshold:
            opened_at = self._clock()
        self._states[key] = _BreakerState(failures=failures, opened_at=opened_at)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy],
    label: str = "",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await ``func()``, retrying when it raises.

    Args:
        func: Zero-argument coroutine factory; called once per attempt.
        policy: Retry policy; ``None`` means a single attempt.
        label: Name used in log messages.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The first successful result.

    Raises:
        Whatever the last attempt raised.
    """
    policy = policy or RetryPolicy()
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func()
        except Exception as e:
            if attempt >= policy.max_attempts:
                raise
            delay_ms = policy.backoff_ms * (policy.multiplier ** (attempt - 1))
            logger.warning(
                f"{label} attempt {attempt}/{policy.max_attempts} failed ({e}), "
                f"retrying in {round(delay_ms)}ms"
            )
            await sleep(delay_ms / 1000)
    raise RuntimeError("unreachable")  # pragma: no cover
