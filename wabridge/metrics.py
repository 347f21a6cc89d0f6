"""
Prometheus metrics for the bridge.

This module provides:
- HTTP request counter (method, path, status) and latency histogram
- Ingestion, media download and outbound send outcome counters
- Push-channel subscriber gauge and session state gauge

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: stored, store_error
ingested_messages_total = Counter(
    "ingested_messages_total",
    "Inbound messages processed by the ingestion pipeline",
    labelnames=["result"]
)

# result: ok, failed
media_downloads_total = Counter(
    "media_downloads_total",
    "Media payload fetch attempts",
    labelnames=["result"]
)

# result: sent, not_ready, failed
sent_messages_total = Counter(
    "sent_messages_total",
    "Outbound send requests",
    labelnames=["result"]
)

ws_subscribers = Gauge(
    "ws_subscribers",
    "Currently connected push-channel subscribers"
)

# 1 for the current state, 0 for every other one
session_state = Gauge(
    "session_state",
    "Messaging session state",
    labelnames=["state"]
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

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_ingestion(result: str) -> None:
    ingested_messages_total.labels(result=result).inc()


def record_media_download(result: str) -> None:
    media_downloads_total.labels(result=result).inc()


def record_send(result: str) -> None:
    sent_messages_total.labels(result=result).inc()


def record_session_state(current: str, all_states) -> None:
    """Flip the session_state gauge so only the current state reads 1."""
    for state in all_states:
        session_state.labels(state=state).set(1 if state == current else 0)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
