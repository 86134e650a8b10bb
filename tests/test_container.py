"""Tests for component wiring."""

from core.di.container import Container, build_container
from core.delivery import DeliverySink
from core.request_publisher import RequestPublisher
from services.gateway.config import Settings


def test_resolve_caches_instances() -> None:
    container = Container()
    container.register("thing", lambda _: object())

    assert container.resolve("thing") is container.resolve("thing")


def test_build_container_wires_shared_components(fake_redis, broker) -> None:
    settings = Settings(_env_file=None, kafka_request_topic="req", kafka_response_topic="res")
    container = build_container(settings)
    container.override("redis", fake_redis)
    container.override("broker", broker)

    publisher = container.resolve("request_publisher")
    sink = container.resolve("delivery_sink")
    lifecycle = container.resolve("consumer_lifecycle")

    assert isinstance(publisher, RequestPublisher)
    assert publisher.topic == "req"
    assert publisher.broker is broker
    assert publisher.store is container.resolve("correlation_store")
    assert publisher.store.redis is fake_redis
    assert publisher.metrics is container.resolve("response_consumer").metrics
    assert isinstance(sink, DeliverySink)
    assert sink.registry is container.resolve("connection_registry")
    assert lifecycle.configured_topics == ["req", "res"]
    assert lifecycle.get_consumer("res") is not None


def test_separate_containers_do_not_share_state() -> None:
    settings = Settings(_env_file=None)

    first = build_container(settings).resolve("connection_registry")
    second = build_container(settings).resolve("connection_registry")

    assert first is not second
