"""
Prometheus metrics for the registry.

Low-cardinality labels only: outcomes, kinds, cache names, backend operation
names, route templates. Never package ids, versions, keys or query strings.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram
from prometheus_client.registry import CollectorRegistry

# Labels that would explode cardinality
FORBIDDEN_LABELS = frozenset(
    {"package_id", "version", "query", "pubkey", "path", "interface", "ip"}
)


class RegistryMetrics:
    """
    Prometheus metrics exporter for registry operations.

    Usage:
        registry = CollectorRegistry()
        metrics = RegistryMetrics(registry=registry)
        metrics.record_submission("manifest", "created")
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics.

        Args:
            registry: Prometheus CollectorRegistry. If None, a private one is created.
        """
        self._registry = registry or CollectorRegistry()

        self._submissions = Counter(
            "appregistry_submissions_total",
            "Submitted documents by kind and outcome (created or error code)",
            ["kind", "outcome"],
            registry=self._registry,
        )
        self._resolutions = Counter(
            "appregistry_resolutions_total",
            "Dependency resolutions by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._cache_requests = Counter(
            "appregistry_cache_requests_total",
            "Read-through cache lookups",
            ["cache", "result"],
            registry=self._registry,
        )
        self._index_failures = Counter(
            "appregistry_index_failures_total",
            "Best-effort index writes that failed after the primary claim",
            ["index"],
            registry=self._registry,
        )
        self._http_requests = Counter(
            "appregistry_http_requests_total",
            "HTTP requests by route template, method and status",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_latency = Histogram(
            "appregistry_http_request_duration_seconds",
            "HTTP request latency by route template",
            ["route"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus registry."""
        return self._registry

    def record_submission(self, kind: str, outcome: str) -> None:
        self._submissions.labels(kind=kind, outcome=outcome).inc()

    def record_resolution(self, outcome: str) -> None:
        self._resolutions.labels(outcome=outcome).inc()

    def record_cache(self, cache: str, hit: bool) -> None:
        self._cache_requests.labels(cache=cache, result="hit" if hit else "miss").inc()

    def record_index_failure(self, index: str) -> None:
        self._index_failures.labels(index=index).inc()

    def observe_request(self, route: str, method: str, status: int, duration_s: float) -> None:
        self._http_requests.labels(route=route, method=method, status=str(status)).inc()
        self._http_latency.labels(route=route).observe(duration_s)
