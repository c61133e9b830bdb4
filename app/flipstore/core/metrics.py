from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.flipstore.core.config import settings


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    def __init__(self) -> None:
        self.enabled = bool(settings.METRICS_ENABLED)
        self._registry = None
        self._http_requests_total = None
        self._http_request_duration_ms = None
        self._cache_hits_total = None
        self._cache_misses_total = None
        self._cache_invalidations_total = None
        self._feature_evaluations_total = None
        if self.enabled:
            self._initialize_registry()

    def _initialize_registry(self) -> None:
        self._registry = CollectorRegistry()
        self._http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            registry=self._registry,
        )
        self._cache_hits_total = Counter(
            "flip_cache_hits_total",
            "Feature cache hits by store operation.",
            ["operation"],
            registry=self._registry,
        )
        self._cache_misses_total = Counter(
            "flip_cache_misses_total",
            "Feature cache misses by store operation.",
            ["operation"],
            registry=self._registry,
        )
        self._cache_invalidations_total = Counter(
            "flip_cache_invalidations_total",
            "Feature cache invalidations by mutating operation.",
            ["operation"],
            registry=self._registry,
        )
        self._feature_evaluations_total = Counter(
            "feature_evaluations_total",
            "Feature evaluations by outcome.",
            ["result"],
            registry=self._registry,
        )

    def reset(self) -> None:
        if not self.enabled:
            return
        self._initialize_registry()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._http_requests_total.labels(**labels).inc()
        self._http_request_duration_ms.labels(**labels).observe(latency_ms)

    def increment_cache_hit(self, operation: str) -> None:
        if not self.enabled:
            return
        self._cache_hits_total.labels(operation=operation).inc()

    def increment_cache_miss(self, operation: str) -> None:
        if not self.enabled:
            return
        self._cache_misses_total.labels(operation=operation).inc()

    def increment_cache_invalidation(self, operation: str) -> None:
        if not self.enabled:
            return
        self._cache_invalidations_total.labels(operation=operation).inc()

    def increment_evaluation(self, result: str) -> None:
        if not self.enabled:
            return
        self._feature_evaluations_total.labels(result=result).inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
