"""
Prometheus metrics for the order service.

/metrics exposes HTTP request metrics plus order and stock counters. It is
not authenticated; keep it on the internal network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST,
    generate_latest, multiprocess
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers write to PROMETHEUS_MULTIPROC_DIR and are merged at scrape time
MULTIPROCESS_MODE = 'PROMETHEUS_MULTIPROC_DIR' in os.environ

if MULTIPROCESS_MODE:
    scrape_registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(scrape_registry)
    _register_on = None
else:
    scrape_registry = REGISTRY
    _register_on = REGISTRY


# =====================================================
# DOMAIN
# =====================================================

orders_created_total = Counter(
    'orders_created_total',
    'Orders placed, by order type',
    ['order_type'],
    registry=_register_on
)

orders_cancelled_total = Counter(
    'orders_cancelled_total',
    'Orders cancelled, by who cancelled them',
    ['actor'],
    registry=_register_on
)

stock_outs_total = Counter(
    'stock_outs_total',
    'Reservations refused for lack of stock',
    registry=_register_on
)


# =====================================================
# HTTP
# =====================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_register_on
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_register_on,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests currently being processed',
    registry=_register_on
)


def _observe(response):
    started = g.pop('_metrics_started', None)
    if started is None:
        return
    http_requests_in_flight.dec()

    # Unrouted requests (404s) share one label instead of one per path
    endpoint = request.endpoint or 'unmatched'
    http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
    http_requests_total.labels(request.method, endpoint, response.status_code).inc()


def setup_metrics_instrumentation(app):
    """Register the request hooks that feed the HTTP metrics."""

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request_metrics(response):
        try:
            _observe(response)
        except (ValueError, TypeError) as e:
            app.logger.warning(f"[METRICS] Failed to record request metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus scrape endpoint."""
    return Response(generate_latest(scrape_registry), mimetype=CONTENT_TYPE_LATEST)
