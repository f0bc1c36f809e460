"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total reservation create attempts',
    ['kind', 'result']  # kind: booking, group; result: created, conflict, rejected
)

group_join_attempts = Counter(
    'group_join_attempts_total',
    'Group booking join attempts',
    ['result']  # joined, full, expired, already_joined, wrong_state
)

status_transitions = Counter(
    'reservation_status_transitions_total',
    'Lifecycle transitions applied',
    ['kind', 'to_status']
)

reservation_latency = Histogram(
    'reservation_operation_latency_seconds',
    'Latency of locked reservation operations',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Database metrics
db_retries = Counter(
    'db_retry_attempts_total',
    'Optimistic lock retries due to version conflicts',
    ['resource']  # equipment, group_booking
)

# Payment metrics
payment_events = Counter(
    'payment_events_total',
    'Payment results applied to reservations',
    ['target', 'result']  # target: booking, participant; result: applied, duplicate, unpaid
)

payment_gateway_errors = Counter(
    'payment_gateway_errors_total',
    'Payment gateway failures (timeouts, non-2xx responses)',
    ['operation']
)

# Notification metrics
notification_failures = Counter(
    'notification_failures_total',
    'Notifications dropped because the sink failed'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(kind: str, result: str):
    """Record reservation create attempt. Result: created, conflict, rejected"""
    booking_attempts.labels(kind=kind, result=result).inc()


def record_join_attempt(result: str):
    group_join_attempts.labels(result=result).inc()


def record_transition(kind: str, to_status: str):
    status_transitions.labels(kind=kind, to_status=to_status).inc()


def record_retry(resource: str):
    db_retries.labels(resource=resource).inc()


def record_payment_event(target: str, result: str):
    payment_events.labels(target=target, result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
