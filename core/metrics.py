"""Prometheus metrics for the gateway.

Each ``GatewayMetrics`` owns its own ``CollectorRegistry`` so several gateways
(or test apps) in one process never collide on metric names.
"""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


class GatewayMetrics:
    """
    Request and result counters for the crawl gateway.

    Metrics:
        gateway_web_crawl_requests_total{status}: submissions by outcome
            (accepted, store_unavailable, broker_unavailable)
        gateway_web_crawl_processing_seconds: time to store and publish one request
        gateway_http_requests_total{endpoint,method,status_code}: REST calls
        gateway_http_request_duration_seconds{endpoint,method}: REST latency
        gateway_crawl_results_total{outcome}: result messages by outcome
            (delivered, offline, unknown, rejected, deferred)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.web_crawl_requests = Counter(
            "gateway_web_crawl_requests",
            "Crawl requests submitted to the gateway",
            ["status"],
            registry=self.registry,
        )
        self.web_crawl_processing = Histogram(
            "gateway_web_crawl_processing_seconds",
            "Time to persist and publish one crawl request",
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "gateway_http_requests",
            "REST requests handled",
            ["endpoint", "method", "status_code"],
            registry=self.registry,
        )
        self.http_request_duration = Histogram(
            "gateway_http_request_duration_seconds",
            "REST request duration",
            ["endpoint", "method"],
            registry=self.registry,
        )
        self.crawl_results = Counter(
            "gateway_crawl_results",
            "Crawl result messages consumed",
            ["outcome"],
            registry=self.registry,
        )

    def record_submission(self, status: str, duration: float) -> None:
        self.web_crawl_requests.labels(status=status).inc()
        self.web_crawl_processing.observe(duration)
        logger.debug(
            "Web crawl request counted",
            extra={"event_data": {"status": status, "duration": duration}},
        )

    def record_http_request(self, endpoint: str, method: str, status_code: int, duration: float) -> None:
        self.http_requests.labels(endpoint=endpoint, method=method, status_code=str(status_code)).inc()
        self.http_request_duration.labels(endpoint=endpoint, method=method).observe(duration)

    def record_result(self, outcome: str) -> None:
        self.crawl_results.labels(outcome=outcome).inc()

    def sample(self, name: str, **labels: str) -> float:
        """Current value of one sample, 0.0 when it was never recorded."""
        return self.registry.get_sample_value(name, labels) or 0.0

    def render(self) -> bytes:
        """Prometheus text exposition of every metric."""
        return generate_latest(self.registry)
