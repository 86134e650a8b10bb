"""Tests for the aiokafka-backed broker client, driven through fake producer/consumer factories."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from aiokafka import TopicPartition
from aiokafka.errors import KafkaConnectionError

from core.broker import KafkaBrokerClient, decode_headers, encode_headers
from core.errors import BrokerOperationError


class _FakeProducer:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.sent: List[Dict[str, Any]] = []
        self.started = False
        self.fail_start = False

    async def start(self) -> None:
        if self.fail_start:
            raise KafkaConnectionError("no brokers")
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send_and_wait(self, topic, value=None, key=None, headers=None):
        self.sent.append({"topic": topic, "value": value, "key": key, "headers": headers})


class _FakeConsumer:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.topics: List[str] = []
        self.listener = None
        self.assigned: set = set()
        self.paused: set = set()
        self.batches: List[Dict[TopicPartition, list]] = []
        self.commits: List[Dict[TopicPartition, int]] = []
        self.seeks: List[tuple] = []

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def subscribe(self, topics, listener=None) -> None:
        self.topics = list(topics)
        self.listener = listener

    def unsubscribe(self) -> None:
        self.topics = []

    def assignment(self):
        return set(self.assigned)

    def pause(self, *partitions) -> None:
        self.paused.update(partitions)

    def resume(self, *partitions) -> None:
        self.paused.difference_update(partitions)

    def seek(self, tp, offset) -> None:
        self.seeks.append((tp, offset))

    async def getmany(self, timeout_ms: int = 0):
        if self.batches:
            return self.batches.pop(0)
        await asyncio.sleep(0.01)
        return {}

    async def commit(self, offsets) -> None:
        self.commits.append(dict(offsets))


def _record(offset: int, fingerprint: str = "fp") -> SimpleNamespace:
    return SimpleNamespace(
        offset=offset,
        value=json.dumps({"success": True}).encode("utf-8"),
        headers=[("fingerprint", fingerprint.encode("utf-8"))],
    )


@pytest.fixture
def kafka_parts():
    parts = SimpleNamespace(producer=None, consumer=None)

    def producer_factory(**kwargs):
        parts.producer = _FakeProducer(**kwargs)
        return parts.producer

    def consumer_factory(**kwargs):
        parts.consumer = _FakeConsumer(**kwargs)
        return parts.consumer

    client = KafkaBrokerClient(
        "localhost:9092",
        client_id="test",
        group_id="test-group",
        poll_timeout_ms=10,
        producer_factory=producer_factory,
        consumer_factory=consumer_factory,
    )
    parts.client = client
    return parts


def test_header_codec() -> None:
    encoded = encode_headers({"fingerprint": "abc", "identity": "a@example.com", "skip": None})

    assert encoded == [("fingerprint", b"abc"), ("identity", b"a@example.com")]
    assert decode_headers(encoded) == {"fingerprint": "abc", "identity": "a@example.com"}
    assert decode_headers(None) == {}


@pytest.mark.asyncio
async def test_connect_configures_manual_commits(kafka_parts) -> None:
    await kafka_parts.client.connect()

    assert kafka_parts.client.is_connected
    assert kafka_parts.consumer.kwargs["enable_auto_commit"] is False
    assert kafka_parts.consumer.kwargs["group_id"] == "test-group"
    await kafka_parts.client.disconnect()
    assert not kafka_parts.client.is_connected


@pytest.mark.asyncio
async def test_connect_failure_raises_broker_error() -> None:
    def failing_producer(**kwargs):
        producer = _FakeProducer(**kwargs)
        producer.fail_start = True
        return producer

    client = KafkaBrokerClient(
        "localhost:9092", "test", "test-group",
        producer_factory=failing_producer, consumer_factory=_FakeConsumer,
    )

    with pytest.raises(BrokerOperationError):
        await client.connect()
    assert not client.is_connected


@pytest.mark.asyncio
async def test_publish_requires_connection(kafka_parts) -> None:
    with pytest.raises(BrokerOperationError) as exc_info:
        await kafka_parts.client.publish("t", "k", {}, {})

    assert exc_info.value.topic == "t"


@pytest.mark.asyncio
async def test_publish_encodes_key_headers_and_body(kafka_parts) -> None:
    await kafka_parts.client.connect()

    await kafka_parts.client.publish("crawl-requests", "fp-1", {"fingerprint": "fp-1"}, {"query": "q"})

    sent = kafka_parts.producer.sent[0]
    assert sent["topic"] == "crawl-requests"
    assert sent["key"] == b"fp-1"
    assert sent["headers"] == [("fingerprint", b"fp-1")]
    assert json.loads(sent["value"]) == {"query": "q"}


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe_track_topic_set(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()

    async def handler(headers, body):
        return None

    await client.subscribe("b", handler)
    await client.subscribe("a", handler)
    assert kafka_parts.consumer.topics == ["a", "b"]

    await client.unsubscribe("b")
    assert kafka_parts.consumer.topics == ["a"]
    await client.unsubscribe("a")
    assert kafka_parts.consumer.topics == []
    assert client.subscribed_topics() == []


@pytest.mark.asyncio
async def test_pause_before_assignment_is_applied_on_rebalance(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()

    await client.pause_topic("crawl-responses")
    assert kafka_parts.consumer.paused == set()

    tp = TopicPartition("crawl-responses", 0)
    other = TopicPartition("crawl-requests", 0)
    await client._listener.on_partitions_assigned({tp, other})

    assert kafka_parts.consumer.paused == {tp}
    assert client.is_topic_paused("crawl-responses")


@pytest.mark.asyncio
async def test_pause_and_resume_assigned_partitions(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()
    tp0 = TopicPartition("t", 0)
    tp1 = TopicPartition("t", 1)
    kafka_parts.consumer.assigned = {tp0, tp1, TopicPartition("other", 0)}

    await client.pause_topic("t")
    assert kafka_parts.consumer.paused == {tp0, tp1}

    await client.resume_topic("t")
    assert kafka_parts.consumer.paused == set()
    assert not client.is_topic_paused("t")


@pytest.mark.asyncio
async def test_consume_loop_dispatches_and_commits(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()
    received = []

    async def handler(headers, body):
        received.append((headers, json.loads(body)))

    await client.subscribe("t", handler)
    tp = TopicPartition("t", 0)
    kafka_parts.consumer.batches.append({tp: [_record(0, "a"), _record(1, "b")]})

    await client.start_consuming()
    await asyncio.sleep(0.05)
    await client.disconnect()

    assert [headers["fingerprint"] for headers, _ in received] == ["a", "b"]
    assert kafka_parts.consumer.commits == [{tp: 1}, {tp: 2}]


@pytest.mark.asyncio
async def test_handler_failure_does_not_stop_loop(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()
    seen = []

    async def handler(headers, body):
        seen.append(headers["fingerprint"])
        if headers["fingerprint"] == "bad":
            raise RuntimeError("boom")

    await client.subscribe("t", handler)
    tp = TopicPartition("t", 0)
    kafka_parts.consumer.batches.append({tp: [_record(0, "bad"), _record(1, "good")]})

    await client.start_consuming()
    await asyncio.sleep(0.05)
    await client.disconnect()

    assert seen == ["bad", "good"]
    assert kafka_parts.consumer.commits[-1] == {tp: 2}


@pytest.mark.asyncio
async def test_records_of_paused_topic_are_rewound(kafka_parts) -> None:
    client = kafka_parts.client
    await client.connect()
    received = []

    async def handler(headers, body):
        received.append(headers)

    await client.subscribe("t", handler)
    await client.pause_topic("t")
    tp = TopicPartition("t", 0)
    kafka_parts.consumer.batches.append({tp: [_record(5), _record(6)]})

    await client.start_consuming()
    await asyncio.sleep(0.05)
    await client.disconnect()

    assert received == []
    assert kafka_parts.consumer.seeks == [(tp, 5)]
    assert kafka_parts.consumer.commits == []
