"""
Prometheus metrics for the Trusted JWS services.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional, Sequence, Tuple, Type

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


# name -> (type, help, label names)
METRIC_DEFINITIONS: Dict[str, Tuple[Type, str, Sequence[str]]] = {
    "http_requests_total": (Counter, "Total HTTP requests", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request duration in seconds", ("method", "endpoint")),
    "health_check_total": (Counter, "Total health check requests", ("status",)),
    "errors_total": (Counter, "Total errors", ("error_type", "service")),
    "verifications_total": (Counter, "Signature verifications by outcome", ("outcome",)),
    "verification_duration_seconds": (Histogram, "Signature verification duration in seconds", ()),
    "registry_cache_total": (Counter, "Registry cache lookups", ("result",)),
    "registry_fetch_total": (Counter, "Registry fetches", ("status",)),
    "jwks_fetch_total": (Counter, "JWK set fetches", ("status",)),
}


class MetricsCollector:
    """Holds one service's metrics.

    Metrics are registered in ``registry`` only; with ``registry=None`` they
    are created unregistered so several collectors can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._lock = threading.Lock()

        self._metrics: Dict[str, Any] = {
            name: metric_type(name, description, list(labels), registry=registry)
            for name, (metric_type, description, labels) in METRIC_DEFINITIONS.items()
        }

        info = Info("service_info", "Service information", registry=registry)
        info.info({"service": service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Observe the duration of the block in histogram ``operation_name``."""
        started = time.time()
        try:
            yield
        finally:
            metric = self._metrics.get(operation_name)
            if metric is not None:
                (metric.labels(**labels) if labels else metric).observe(time.time() - started)

    def increment_counter(self, metric_name: str, **labels):
        """Increment counter ``metric_name``; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            with self._lock:
                metric.labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
