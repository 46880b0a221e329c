"""
Prometheus metrics for the console backend.

This module provides:
- HTTP request counter (method, path, status)
- Webhook request outcome counter (result)
- Webhook per-event outcome counter (result)
- Outbound message counter (type, result)
- Media relay counter (result)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: ok, missing_signature, invalid_signature, invalid_body
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook deliveries by outcome",
    labelnames=["result"]
)

# result: created, duplicate, ignored, skipped, relay_failed, error
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook events by processing outcome",
    labelnames=["result"]
)

outbound_messages_total = Counter(
    "outbound_messages_total",
    "Total operator sends by message type and outcome",
    labelnames=["type", "result"]
)

media_relay_total = Counter(
    "media_relay_total",
    "Attachment relays from LINE to object storage",
    labelnames=["result"]
)

# Default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]
    # /users/<id> would otherwise create one series per user
    if normalized_path.startswith("/users/"):
        normalized_path = "/users/{user_id}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    webhook_requests_total.labels(result=result).inc()


def record_webhook_event(result: str) -> None:
    webhook_events_total.labels(result=result).inc()


def record_outbound_message(message_type: str, result: str) -> None:
    outbound_messages_total.labels(type=message_type, result=result).inc()


def record_media_relay(result: str) -> None:
    media_relay_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
