import logging
from typing import Any, Dict

import prometheus_client as prom
from prometheus_client import CollectorRegistry, start_http_server

logger = logging.getLogger(__name__)


class MonitoringService:
    """Prometheus metrics for the AI orchestration layer.

    Each instance owns its own registry so several services (or tests) can
    live in one process without duplicate-metric errors.
    """

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self.metrics = {
            'requests': prom.Counter(
                'shrink_ai_requests_total', 'Provider calls made', ['provider', 'kind'],
                registry=self.registry,
            ),
            'cache_hits': prom.Counter(
                'shrink_ai_cache_hits_total', 'Responses served from cache', ['cache'],
                registry=self.registry,
            ),
            'failures': prom.Counter(
                'shrink_ai_request_failures_total', 'Requests that failed permanently', ['reason'],
                registry=self.registry,
            ),
            'cost': prom.Counter(
                'shrink_ai_cost_usd_total', 'Estimated spend in USD', ['provider'],
                registry=self.registry,
            ),
            'queue_depth': prom.Gauge(
                'shrink_ai_queue_depth', 'Jobs waiting in the request queue',
                registry=self.registry,
            ),
        }

    def start(self, port: int = 9090, addr: str = '127.0.0.1') -> None:
        """Exposes the metrics over HTTP"""
        # Bind to 127.0.0.1 by default so the port is not exposed externally.
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Monitoring endpoint started on {addr}:{port}")

    def log_request(self, provider: str, kind: str, cost: float = 0.0) -> None:
        self.metrics['requests'].labels(provider=provider, kind=kind).inc()
        if cost > 0:
            self.metrics['cost'].labels(provider=provider).inc(cost)

    def log_cache_hit(self, cache: str) -> None:
        self.metrics['cache_hits'].labels(cache=cache).inc()

    def log_failure(self, reason: str) -> None:
        self.metrics['failures'].labels(reason=reason).inc()

    def set_queue_depth(self, depth: int) -> None:
        self.metrics['queue_depth'].set(depth)

    def sample(self, name: str, labels: Dict[str, str] = None) -> Any:
        """Current value of a sample, e.g. ``sample('shrink_ai_requests_total', {...})``."""
        return self.registry.get_sample_value(name, labels or {})

    def render(self) -> bytes:
        """Text exposition of all metrics."""
        return prom.generate_latest(self.registry)
