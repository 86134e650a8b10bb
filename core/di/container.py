from __future__ import annotations

from typing import Any, Callable, Dict

from redis import asyncio as aioredis

from core.broker import KafkaBrokerClient
from core.connection_registry import ConnectionRegistry
from core.consumer_lifecycle import ConsumerLifecycleManager, TopicConsumer
from core.correlation_store import CorrelationStore
from core.delivery import DeliverySink
from core.metrics import GatewayMetrics
from core.request_publisher import RequestPublisher
from core.response_consumer import ResponseConsumer


class Container:
    def __init__(self) -> None:
        self._providers: Dict[str, Callable[["Container"], Any]] = {}
        self._cache: Dict[str, Any] = {}

    def register(self, key: str, provider: Callable[["Container"], Any]) -> None:
        self._providers[key] = provider
        self._cache.pop(key, None)

    def override(self, key: str, instance: Any) -> None:
        """Pin an already-built instance, e.g. a fake in tests."""
        self._providers[key] = lambda _: instance
        self._cache[key] = instance

    def resolve(self, key: str) -> Any:
        if key in self._cache:
            return self._cache[key]
        provider = self._providers[key]
        instance = provider(self)
        self._cache[key] = instance
        return instance


def _build_lifecycle(c: Container) -> ConsumerLifecycleManager:
    settings = c.resolve("settings")
    manager = ConsumerLifecycleManager(c.resolve("broker"), settings.configured_topics)
    manager.register_consumer(
        TopicConsumer(
            settings.kafka_response_topic,
            c.resolve("response_consumer").on_result_message,
            name="crawl-results",
        )
    )
    return manager


def build_container(settings) -> Container:
    """Wire the gateway components for one process.

    Nothing is constructed until first resolved; every key resolves to one
    shared instance per container.
    """
    container = Container()

    container.register("settings", lambda _: settings)
    container.register("redis", lambda _: aioredis.from_url(settings.redis_url))
    container.register(
        "broker",
        lambda c: KafkaBrokerClient(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=settings.kafka_client_id,
            group_id=settings.kafka_group_id,
            poll_timeout_ms=settings.kafka_poll_timeout_ms,
        ),
    )
    container.register(
        "correlation_store",
        lambda c: CorrelationStore(
            c.resolve("redis"),
            key_prefix=settings.correlation_key_prefix,
            ttl_seconds=settings.correlation_ttl_seconds,
        ),
    )
    container.register("metrics", lambda _: GatewayMetrics())
    container.register("connection_registry", lambda _: ConnectionRegistry())
    container.register("delivery_sink", lambda c: DeliverySink(c.resolve("connection_registry")))
    container.register(
        "request_publisher",
        lambda c: RequestPublisher(
            c.resolve("correlation_store"),
            c.resolve("broker"),
            topic=settings.kafka_request_topic,
            service_name=settings.app_name,
            metrics=c.resolve("metrics"),
        ),
    )
    container.register(
        "response_consumer",
        lambda c: ResponseConsumer(
            c.resolve("correlation_store"), c.resolve("delivery_sink"), metrics=c.resolve("metrics")
        ),
    )
    container.register("consumer_lifecycle", _build_lifecycle)

    return container
