"""Prometheus metrics definitions for HoloHost.

- Docker operations (container lifecycle, inspection, stats)
- Port allocation
- Realtime broadcaster subscriptions and deliveries
"""

from prometheus_client import Counter, Gauge, Histogram

# Docker calls range from a fast ping to a 10s graceful stop
_BUCKETS_DOCKER = (
    0.01, 0.05, 0.1, 0.25, 0.5,
    1, 2.5, 5, 10, 20, 30,
)

# =============================================================================
# Docker Operation Metrics
# =============================================================================

DOCKER_DURATION = Histogram(
    "holohost_docker_duration_seconds",
    "Duration of Docker operations",
    ["operation"],
    buckets=_BUCKETS_DOCKER,
)

DOCKER_ERRORS = Counter(
    "holohost_docker_errors_total",
    "Total Docker operation errors",
    ["operation", "error_type"],  # error_type: api_error, transport, timeout
)

PORT_ALLOCATIONS = Counter(
    "holohost_port_allocations_total",
    "Host port allocation attempts",
    ["result"],  # allocated, exhausted
)

# =============================================================================
# Realtime Metrics
# =============================================================================

BROADCASTER_SUBSCRIPTIONS = Gauge(
    "holohost_broadcaster_subscriptions",
    "Instances with at least one subscriber",
    ["kind"],  # status, logs
)

BROADCASTER_EVENTS = Counter(
    "holohost_broadcaster_events_total",
    "Events delivered to subscribers",
    ["event_type"],
)

BROADCASTER_ERRORS = Counter(
    "holohost_broadcaster_errors_total",
    "Broadcaster polling and delivery errors",
    ["error_type"],  # poll, delivery, log_stream
)

WS_ACTIVE_CONNECTIONS = Gauge(
    "holohost_ws_active_connections",
    "Authenticated WebSocket connections",
)
