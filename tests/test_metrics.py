"""Tests for gateway Prometheus metrics."""

import json

import pytest
from fastapi.testclient import TestClient

from core.correlation_store import CorrelationRecord, RequestMetadata
from core.di.container import build_container
from core.errors import BrokerOperationError, StorageError
from core.metrics import GatewayMetrics
from core.request_publisher import RequestPublisher
from core.response_consumer import ResponseConsumer
from services.gateway.config import Settings
from services.gateway.main import create_app


def _result_body() -> bytes:
    return json.dumps({"success": True, "scraped_data": {"title": "X"}, "error_message": None}).encode("utf-8")


def test_fresh_metrics_are_isolated() -> None:
    first = GatewayMetrics()
    second = GatewayMetrics()

    first.record_result("delivered")

    assert first.sample("gateway_crawl_results_total", outcome="delivered") == 1
    assert second.sample("gateway_crawl_results_total", outcome="delivered") == 0


@pytest.mark.asyncio
async def test_submissions_are_counted_by_status(store, broker, fake_redis) -> None:
    metrics = GatewayMetrics()
    publisher = RequestPublisher(store, broker, topic="crawl-requests", metrics=metrics)

    await publisher.submit_request("a@example.com", "q", "https://x")

    broker.fail_publish = True
    with pytest.raises(BrokerOperationError):
        await publisher.submit_request("a@example.com", "q", "https://x")
    broker.fail_publish = False

    fake_redis.fail = True
    with pytest.raises(StorageError):
        await publisher.submit_request("a@example.com", "q", "https://x")

    assert metrics.sample("gateway_web_crawl_requests_total", status="accepted") == 1
    assert metrics.sample("gateway_web_crawl_requests_total", status="broker_unavailable") == 1
    assert metrics.sample("gateway_web_crawl_requests_total", status="store_unavailable") == 1
    assert metrics.sample("gateway_web_crawl_processing_seconds_count") == 3


@pytest.mark.asyncio
async def test_result_outcomes_are_counted(store, sink, registry, make_connection) -> None:
    metrics = GatewayMetrics()
    consumer = ResponseConsumer(store, sink, metrics=metrics)
    registry.bind("online@example.com", make_connection())
    for fingerprint, identity in (("fp-1", "online@example.com"), ("fp-2", "offline@example.com")):
        await store.put(
            CorrelationRecord(
                fingerprint=fingerprint,
                delivery_target=identity,
                request_metadata=RequestMetadata(url="https://x", query="q"),
            )
        )

    await consumer.on_result_message({"fingerprint": "fp-1"}, _result_body())
    await consumer.on_result_message({"fingerprint": "fp-2"}, _result_body())
    await consumer.on_result_message({"fingerprint": "fp-missing"}, _result_body())
    await consumer.on_result_message({}, _result_body())

    assert metrics.sample("gateway_crawl_results_total", outcome="delivered") == 1
    assert metrics.sample("gateway_crawl_results_total", outcome="offline") == 1
    assert metrics.sample("gateway_crawl_results_total", outcome="unknown") == 1
    assert metrics.sample("gateway_crawl_results_total", outcome="rejected") == 1


def test_metrics_endpoint_exposes_prometheus_text(fake_redis, broker) -> None:
    settings = Settings(_env_file=None, log_file="")
    container = build_container(settings)
    container.override("redis", fake_redis)
    container.override("broker", broker)
    app = create_app(settings, container)

    with TestClient(app) as client:
        client.post(
            "/api/web-crawl",
            json={"user_email": "a@example.com", "query": "q", "original_url": "https://x"},
        )
        broker.fail_publish = True
        client.post(
            "/api/web-crawl",
            json={"user_email": "a@example.com", "query": "q", "original_url": "https://x"},
        )
        response = client.get("/api/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    text = response.text
    assert 'gateway_web_crawl_requests_total{status="accepted"} 1.0' in text
    assert 'gateway_web_crawl_requests_total{status="broker_unavailable"} 1.0' in text
    assert 'gateway_http_requests_total{endpoint="/api/web-crawl",method="POST",status_code="202"} 1.0' in text
    assert 'gateway_http_requests_total{endpoint="/api/web-crawl",method="POST",status_code="503"} 1.0' in text
    assert "gateway_http_request_duration_seconds_bucket" in text
