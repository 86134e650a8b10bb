"""Shared in-memory fakes for Redis, the broker client and live connections."""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.connection_registry import ConnectionRegistry
from core.correlation_store import CorrelationStore
from core.delivery import DeliverySink
from core.errors import BrokerOperationError, DeliveryError


class FakeRedis:
    """Async subset of redis.asyncio.Redis used by the correlation store."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.expiries: Dict[str, Optional[int]] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self.data[key] = value
        self.expiries[key] = ex
        return True

    async def get(self, key: str) -> Optional[bytes]:
        self._check()
        value = self.data.get(key)
        return value.encode("utf-8") if value is not None else None

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


class FakeBroker:
    """Records every broker call; topics in ``fail_topics`` reject pause/resume/subscribe."""

    def __init__(self) -> None:
        self.is_connected = False
        self.published: List[Tuple[str, Optional[str], Dict[str, str], Any]] = []
        self.handlers: Dict[str, Any] = {}
        self.paused: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self.fail_topics: Set[str] = set()
        self.fail_publish = False
        self.consume_started = 0

    async def connect(self) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def publish(self, topic: str, key: Optional[str], headers: Dict[str, str], body: Any) -> None:
        self.calls.append(("publish", topic))
        if self.fail_publish:
            raise BrokerOperationError("broker down", topic=topic)
        self.published.append((topic, key, dict(headers), body))

    async def subscribe(self, topic: str, handler) -> None:
        self.calls.append(("subscribe", topic))
        if topic in self.fail_topics:
            raise BrokerOperationError(f"cannot subscribe {topic}", topic=topic)
        self.handlers[topic] = handler

    async def unsubscribe(self, topic: str) -> None:
        self.calls.append(("unsubscribe", topic))
        self.handlers.pop(topic, None)

    async def pause_topic(self, topic: str) -> None:
        self.calls.append(("pause", topic))
        if topic in self.fail_topics:
            raise BrokerOperationError(f"cannot pause {topic}", topic=topic)
        self.paused.add(topic)

    async def resume_topic(self, topic: str) -> None:
        self.calls.append(("resume", topic))
        if topic in self.fail_topics:
            raise BrokerOperationError(f"cannot resume {topic}", topic=topic)
        self.paused.discard(topic)

    async def start_consuming(self) -> None:
        self.consume_started += 1

    def is_topic_paused(self, topic: str) -> bool:
        return topic in self.paused


_ids = itertools.count(1)


class FakeConnection:
    def __init__(self, fail_send: bool = False) -> None:
        self.connection_id = f"conn-{next(_ids)}"
        self.sent: List[Dict[str, Any]] = []
        self.terminated = False
        self.fail_send = fail_send

    async def send(self, payload: Dict[str, Any]) -> None:
        if self.terminated or self.fail_send:
            raise DeliveryError("connection closed", {"connection_id": self.connection_id})
        self.sent.append(payload)

    def terminate(self) -> None:
        self.terminated = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> CorrelationStore:
    return CorrelationStore(fake_redis, key_prefix="test:", ttl_seconds=60)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def sink(registry: ConnectionRegistry) -> DeliverySink:
    return DeliverySink(registry)


@pytest.fixture
def make_connection():
    def _make(fail_send: bool = False) -> FakeConnection:
        return FakeConnection(fail_send=fail_send)

    return _make
