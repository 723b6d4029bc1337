"""
Prometheus metrics for the relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Compliment submission outcome counter (result)
- Realtime connection gauge and push counter

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


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

# result: created, validation_error, persistence_error, error
compliment_submissions_total = Counter(
    "compliment_submissions_total",
    "Total compliment submission outcomes",
    labelnames=["result"]
)

realtime_connections = Gauge(
    "realtime_connections",
    "Currently open realtime connections"
)

realtime_pushes_total = Counter(
    "realtime_pushes_total",
    "Realtime events delivered to connections"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known, else the raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_submission_outcome(result: str) -> None:
    compliment_submissions_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
