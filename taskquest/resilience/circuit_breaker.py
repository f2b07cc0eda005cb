"""Circuit breaker for the calendar API

Implements the Circuit Breaker pattern so a Google Calendar outage fails
fast instead of slowing down every task update.

State Machine:
    CLOSED (normal) → OPEN (failing fast) → HALF_OPEN (testing) → CLOSED/OPEN
"""

import pybreaker
import logging
from typing import Any, Awaitable, Callable, TypeVar

from taskquest.observability.metrics import record_api_failure, record_circuit_breaker_state

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener to log circuit breaker state changes and emit metrics"""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        """Called when circuit breaker changes state"""
        old_name = old_state.name if old_state else "none"
        logger.warning(
            f"[CIRCUIT_BREAKER] {cb.name}: {old_name} → {new_state.name}"
        )
        record_circuit_breaker_state(cb.name, new_state.name.lower().replace("-", "_"))

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        """Called when circuit breaker records a failure"""
        logger.error(
            f"[CIRCUIT_BREAKER] {cb.name} recorded failure: {type(exc).__name__}: {exc}"
        )
        record_api_failure(cb.name, type(exc).__name__)

    def success(self, cb: pybreaker.CircuitBreaker) -> None:
        """Called when circuit breaker records a success"""
        logger.debug(f"[CIRCUIT_BREAKER] {cb.name} recorded success")


# Configuration: 5 failures triggers OPEN, 60s timeout before HALF_OPEN
CALENDAR_BREAKER = pybreaker.CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    name="google_calendar_api",
    listeners=[CircuitBreakerListener()]
)


async def call_through_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any
) -> T:
    """
    Await a coroutine function inside a circuit breaker.

    When the circuit is OPEN, the call fails immediately with
    CircuitBreakerError instead of attempting the underlying function.
    An exception raised by `func` counts as a failure and is re-raised,
    unless it trips the breaker, in which case CircuitBreakerError is raised.

    Args:
        breaker: The circuit breaker instance to use
        func: Coroutine function (e.g. an httpx.AsyncClient request)
        *args, **kwargs: Arguments to pass to func

    Example:
        event = await call_through_breaker(CALENDAR_BREAKER, client.post, url, json=body)
    """
    try:
        with breaker.calling():
            return await func(*args, **kwargs)
    except pybreaker.CircuitBreakerError:
        logger.warning(
            f"[CIRCUIT_BREAKER] {breaker.name} is OPEN - failing fast"
        )
        raise
