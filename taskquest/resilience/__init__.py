"""Resilience patterns for external calls and contended writes

This module provides the calendar circuit breaker and retry logic with
exponential backoff.
"""

from taskquest.resilience.circuit_breaker import CALENDAR_BREAKER, call_through_breaker
from taskquest.resilience.retry import retry_with_backoff, is_retryable_error

__all__ = [
    # Circuit Breakers
    "CALENDAR_BREAKER",
    "call_through_breaker",
    # Retry
    "retry_with_backoff",
    "is_retryable_error",
]
