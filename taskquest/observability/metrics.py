"""
Prometheus metrics definitions for taskquest.

Metrics are organized by category:
- HTTP/API metrics: Request counts and errors
- Progression metrics: Completions, reversions, achievements, conflicts
- Calendar sync metrics: Sync outcomes, circuit breaker state, retries

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
from prometheus_client import Counter, Enum, Gauge, Histogram

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_errors_total = Counter(
    "taskquest_http_errors_total",
    "Total API errors returned to clients",
    ["error_type", "status"],
)

# =============================================================================
# Progression Metrics
# =============================================================================

progression_operations_total = Counter(
    "taskquest_progression_operations_total",
    "Total progression operations",
    ["operation", "status"],  # operation: grant/revert, status: success/conflict/error
)

progression_duration_seconds = Histogram(
    "taskquest_progression_duration_seconds",
    "Progression read-modify-write duration in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

xp_awarded_total = Counter(
    "taskquest_xp_awarded_total",
    "Total XP granted for task completions",
    ["priority"],
)

xp_reverted_total = Counter(
    "taskquest_xp_reverted_total",
    "Total XP removed by task un-completions",
)

achievements_unlocked_total = Counter(
    "taskquest_achievements_unlocked_total",
    "Total achievements unlocked",
    ["category"],  # level/streak/daily/weekly
)

achievements_revoked_total = Counter(
    "taskquest_achievements_revoked_total",
    "Total level achievements revoked after a level drop",
)

progress_conflicts_total = Counter(
    "taskquest_progress_conflicts_total",
    "Total optimistic concurrency conflicts on UserProgress",
)

# =============================================================================
# Calendar Sync Metrics
# =============================================================================

calendar_sync_total = Counter(
    "taskquest_calendar_sync_total",
    "Total calendar sync attempts",
    ["status"],  # success/failure/skipped
)

circuit_breaker_state = Enum(
    "taskquest_circuit_breaker_state",
    "Current state of circuit breaker",
    ["api"],
    states=["closed", "open", "half_open"],
)

api_failures_total = Counter(
    "taskquest_api_failures_total",
    "Total number of external API failures",
    ["api", "error_type"],
)

api_retries_total = Counter(
    "taskquest_api_retries_total",
    "Total number of retry attempts",
    ["operation"],
)

progression_locks_active = Gauge(
    "taskquest_progression_locks_active",
    "Number of users with a progression update in flight",
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_progression(operation: str, status: str) -> None:
    """Record the outcome of a grant or revert"""
    progression_operations_total.labels(operation=operation, status=status).inc()


def record_achievements(categories: list[str]) -> None:
    """Record unlocked achievements by category"""
    for category in categories:
        achievements_unlocked_total.labels(category=category).inc()


def record_calendar_sync(status: str) -> None:
    """Record a calendar sync outcome"""
    calendar_sync_total.labels(status=status).inc()


def record_circuit_breaker_state(api: str, state: str) -> None:
    """Record circuit breaker state change"""
    circuit_breaker_state.labels(api=api).state(state)
    logger.debug(f"[METRICS] Circuit breaker state: {api} = {state}")


def record_api_failure(api: str, error_type: str) -> None:
    """Record external API failure"""
    api_failures_total.labels(api=api, error_type=error_type).inc()


def record_retry(operation: str) -> None:
    """Record retry attempt"""
    api_retries_total.labels(operation=operation).inc()
