"""
Prometheus metrics for the client layer.

Metrics are defined once at import time on the default registry so that
several clients in one process (and repeated construction in tests) share
them instead of colliding on registration.

Metrics
-------

* ``netlayer_http_requests_total{method,status}`` – completed HTTP requests.
* ``netlayer_http_request_seconds{method}`` – HTTP round-trip latency.
* ``netlayer_token_refresh_total{outcome}`` – refresh calls by outcome
  (``success``/``failure``).
* ``netlayer_socket_connected`` – 1 while the socket is connected, else 0.
* ``netlayer_socket_reconnects_total`` – scheduled reconnection attempts.
* ``netlayer_socket_pending_requests`` – correlated sends awaiting a reply.
"""

from __future__ import annotations

import logging
import os

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

HTTP_REQUESTS = Counter(
    "netlayer_http_requests_total",
    "Completed HTTP requests",
    labelnames=["method", "status"],
)
HTTP_LATENCY = Histogram(
    "netlayer_http_request_seconds",
    "HTTP request round-trip latency in seconds",
    labelnames=["method"],
)
TOKEN_REFRESHES = Counter(
    "netlayer_token_refresh_total",
    "Token refresh calls by outcome",
    labelnames=["outcome"],
)
SOCKET_CONNECTED = Gauge(
    "netlayer_socket_connected",
    "Socket connection status (1=connected,0=otherwise)",
)
SOCKET_RECONNECTS = Counter(
    "netlayer_socket_reconnects_total",
    "Scheduled socket reconnection attempts",
)
SOCKET_PENDING = Gauge(
    "netlayer_socket_pending_requests",
    "Correlated socket requests awaiting a response",
)


def start_metrics_server(port: int | None = None) -> bool:
    """Expose metrics over HTTP on ``port`` (default ``PROMETHEUS_PORT`` or 9108).

    Returns False if the server could not be started, e.g. because the
    port is already bound by another exporter in the same process.
    """
    port = port if port is not None else int(os.environ.get("PROMETHEUS_PORT", "9108"))
    try:
        start_http_server(port)
    except OSError as exc:
        logger.warning("Failed to start Prometheus server on port %d: %s", port, exc)
        return False
    logger.info("Prometheus metrics exposed on port %d", port)
    return True
