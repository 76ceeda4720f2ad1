"""
Shared metrics configuration for RouteWise services.
"""

from typing import Dict, Any, Optional
import threading
import time
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for services.

    Metrics are registered against ``registry``; pass ``None`` to keep them
    unregistered (handy for tests that build many collectors).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up tiered cache metrics."""
        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Cache operations by tier and outcome",
            ["operation", "tier", "result"],
            registry=self.registry
        )

        self._metrics["cache_fallbacks_total"] = Counter(
            "cache_fallbacks_total",
            "Operations served by the local tier because the remote tier was unavailable",
            ["operation"],
            registry=self.registry
        )

        self._metrics["cache_evictions_total"] = Counter(
            "cache_evictions_total",
            "Local fallback entries evicted under capacity pressure",
            registry=self.registry
        )

        self._metrics["cache_remote_connected"] = Gauge(
            "cache_remote_connected",
            "1 when the remote cache backend is connected",
            registry=self.registry
        )

        self._metrics["cache_local_entries"] = Gauge(
            "cache_local_entries",
            "Entries held by the local fallback store",
            registry=self.registry
        )

        self._metrics["cache_remote_latency_seconds"] = Histogram(
            "cache_remote_latency_seconds",
            "Remote cache round trip latency in seconds",
            ["operation"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_cache_operation(self, operation: str, tier: str, result: str):
        """Record one cache operation outcome."""
        self._metrics["cache_operations_total"].labels(
            operation=operation,
            tier=tier,
            result=result
        ).inc()

    def record_cache_fallback(self, operation: str):
        """Record an operation that degraded to the local tier."""
        self._metrics["cache_fallbacks_total"].labels(operation=operation).inc()

    def record_cache_eviction(self, count: int = 1):
        """Record local store evictions."""
        if count > 0:
            self._metrics["cache_evictions_total"].inc(count)

    def set_cache_state(self, connected: bool, local_entries: int):
        """Publish current tier health and local store size."""
        with self._lock:
            self._metrics["cache_remote_connected"].set(1 if connected else 0)
            self._metrics["cache_local_entries"].set(local_entries)

    @contextmanager
    def time_remote_call(self, operation: str):
        """Context manager to time a remote cache call."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self._metrics["cache_remote_latency_seconds"].labels(operation=operation).observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
