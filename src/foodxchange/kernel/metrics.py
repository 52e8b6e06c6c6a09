"""
Prometheus metrics collection for FoodXchange.

Counters and histograms for lifecycle transitions, write conflicts and the
consistency synchronizer's sinks.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ============================================================================
# Lifecycle Metrics
# ============================================================================

transitions_total = Counter(
    "foodx_transitions_total",
    "Total number of status transitions applied",
    ["entity_type", "from_status", "to_status"],
)

conflicts_total = Counter(
    "foodx_conflicts_total",
    "Total number of conditional updates lost to a concurrent writer",
    ["entity_type"],
)

projects_expired_total = Counter(
    "foodx_projects_expired_total",
    "Total number of projects moved to expired by deadline enforcement",
)

# ============================================================================
# Operation Metrics
# ============================================================================

operation_duration_seconds = Histogram(
    "foodx_operation_duration_seconds",
    "Duration of exchange operations in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

operations_total = Counter(
    "foodx_operations_total",
    "Total number of exchange operations processed",
    ["operation", "status"],  # status: success, failure
)

# ============================================================================
# Synchronizer Metrics
# ============================================================================

sync_failures_total = Counter(
    "foodx_sync_failures_total",
    "Total number of failed search index or notification writes",
    ["sink"],
)

index_upserts_total = Counter(
    "foodx_index_upserts_total",
    "Total number of documents upserted into the search index",
    ["index"],
)

notifications_enqueued_total = Counter(
    "foodx_notifications_enqueued_total",
    "Total number of notifications enqueued",
    ["type"],
)

entities_total = Gauge(
    "foodx_entities_total",
    "Number of stored entities by collection",
    ["collection"],
)

# ============================================================================
# System Metrics
# ============================================================================

tick_duration_seconds = Histogram(
    "foodx_tick_duration_seconds",
    "Duration of maintenance tick execution in seconds",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track operation duration and outcome.

    Args:
        operation: Operation name used as the metric label

    Returns:
        Decorated function that records duration and success/failure
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )
                operations_total.labels(operation=operation, status=status).inc()

        return wrapper

    return decorator


def record_transition(entity_type: str, from_status: str, to_status: str) -> None:
    """Count one applied status transition."""
    transitions_total.labels(
        entity_type=entity_type, from_status=from_status, to_status=to_status
    ).inc()


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server."""
    start_http_server(port)
