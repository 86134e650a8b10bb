"""Kafka broker client built on aiokafka.

One producer and one consumer per process. Topics are subscribed with a
handler each; the fetch loop hands records to the handler of their topic, one
record at a time per partition, and commits the offset once the handler returns.
Pausing works per topic and survives rebalances.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Set

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition
from aiokafka.abc import ConsumerRebalanceListener
from aiokafka.errors import KafkaError

from core.errors import BrokerOperationError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, str], bytes], Awaitable[None]]


class BrokerClient(Protocol):
    async def publish(self, topic: str, key: Optional[str], headers: Dict[str, str], body: Any) -> None: ...

    async def subscribe(self, topic: str, handler: MessageHandler) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...

    async def pause_topic(self, topic: str) -> None: ...

    async def resume_topic(self, topic: str) -> None: ...

    def is_topic_paused(self, topic: str) -> bool: ...

    async def start_consuming(self) -> None: ...

    async def disconnect(self) -> None: ...


def encode_headers(headers: Dict[str, str]) -> List[tuple]:
    return [(key, str(value).encode("utf-8")) for key, value in headers.items() if value is not None]


def decode_headers(raw: Optional[Iterable[tuple]]) -> Dict[str, str]:
    decoded: Dict[str, str] = {}
    for key, value in raw or ():
        if value is None:
            continue
        decoded[key] = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)
    return decoded


class _PauseOnAssign(ConsumerRebalanceListener):
    """Re-apply topic pauses to partitions handed out by a rebalance."""

    def __init__(self, client: "KafkaBrokerClient"):
        self.client = client

    async def on_partitions_revoked(self, revoked):
        pass

    async def on_partitions_assigned(self, assigned):
        self.client._apply_pauses(assigned)


class KafkaBrokerClient:
    """
    Broker adapter offering publish/subscribe/pause/resume/disconnect.

    Example:
        >>> broker = KafkaBrokerClient("localhost:9092", client_id="gateway", group_id="gateway")
        >>> await broker.connect()
        >>> await broker.subscribe("crawl-responses", handler)
        >>> await broker.start_consuming()
        >>> await broker.pause_topic("crawl-responses")
        >>> await broker.disconnect()
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        group_id: str,
        poll_timeout_ms: int = 500,
        producer_factory: Callable[..., Any] = AIOKafkaProducer,
        consumer_factory: Callable[..., Any] = AIOKafkaConsumer,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.group_id = group_id
        self.poll_timeout_ms = poll_timeout_ms
        self._producer_factory = producer_factory
        self._consumer_factory = consumer_factory

        self._producer = None
        self._consumer = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._paused_topics: Set[str] = set()
        self._listener = _PauseOnAssign(self)
        self._loop_task: Optional[asyncio.Task] = None
        self._connected = False

    # ── lifecycle ───────────────────────────────────────────────────────
    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            logger.warning("Kafka client already connected")
            return

        self._producer = self._producer_factory(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
        )
        self._consumer = self._consumer_factory(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            group_id=self.group_id,
            enable_auto_commit=False,
            auto_offset_reset="latest",
        )
        try:
            await self._producer.start()
            await self._consumer.start()
        except KafkaError as exc:
            raise BrokerOperationError(f"Failed to connect to Kafka: {exc}") from exc

        self._connected = True
        logger.info(
            "Kafka client connected",
            extra={"event_data": {"bootstrap_servers": self.bootstrap_servers, "group_id": self.group_id}},
        )

    async def disconnect(self) -> None:
        if not self._connected:
            logger.debug("disconnect() called but Kafka client is not connected")
            return

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        errors = []
        for name, client in (("consumer", self._consumer), ("producer", self._producer)):
            try:
                await client.stop()
            except KafkaError as exc:
                errors.append(f"{name}: {exc}")
        self._connected = False
        self._handlers.clear()
        self._paused_topics.clear()
        logger.info("Kafka client disconnected")

        if errors:
            raise BrokerOperationError("Error disconnecting from Kafka: " + "; ".join(errors))

    # ── producing ───────────────────────────────────────────────────────
    async def publish(self, topic: str, key: Optional[str], headers: Dict[str, str], body: Any) -> None:
        if not self._connected:
            raise BrokerOperationError("Kafka client is not connected", topic=topic)

        value = json.dumps(body).encode("utf-8")
        try:
            await self._producer.send_and_wait(
                topic,
                value=value,
                key=key.encode("utf-8") if key else None,
                headers=encode_headers(headers),
            )
        except KafkaError as exc:
            logger.error(
                "Failed to publish message",
                extra={"event_data": {"topic": topic, "key": key, "error": str(exc)}},
            )
            raise BrokerOperationError(f"Failed to publish to {topic}: {exc}", topic=topic) from exc

        logger.debug("Message published", extra={"event_data": {"topic": topic, "key": key}})

    # ── subscriptions ───────────────────────────────────────────────────
    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        if not self._connected:
            raise BrokerOperationError("Kafka client is not connected", topic=topic)

        self._handlers[topic] = handler
        try:
            self._consumer.subscribe(topics=sorted(self._handlers), listener=self._listener)
        except (KafkaError, ValueError) as exc:
            self._handlers.pop(topic, None)
            raise BrokerOperationError(f"Failed to subscribe to {topic}: {exc}", topic=topic) from exc
        logger.info("Subscribed to topic", extra={"event_data": {"topic": topic}})

    async def unsubscribe(self, topic: str) -> None:
        if self._handlers.pop(topic, None) is None:
            return
        self._paused_topics.discard(topic)
        if not self._connected:
            return
        try:
            if self._handlers:
                self._consumer.subscribe(topics=sorted(self._handlers), listener=self._listener)
            else:
                self._consumer.unsubscribe()
        except (KafkaError, ValueError) as exc:
            raise BrokerOperationError(f"Failed to unsubscribe from {topic}: {exc}", topic=topic) from exc
        logger.info("Unsubscribed from topic", extra={"event_data": {"topic": topic}})

    def subscribed_topics(self) -> List[str]:
        return sorted(self._handlers)

    # ── flow control ────────────────────────────────────────────────────
    async def pause_topic(self, topic: str) -> None:
        self._paused_topics.add(topic)
        if not self._connected:
            return
        try:
            partitions = self._partitions_of(topic)
            if partitions:
                self._consumer.pause(*partitions)
        except (KafkaError, ValueError) as exc:
            raise BrokerOperationError(f"Failed to pause {topic}: {exc}", topic=topic) from exc
        logger.debug("Topic paused", extra={"event_data": {"topic": topic}})

    async def resume_topic(self, topic: str) -> None:
        self._paused_topics.discard(topic)
        if not self._connected:
            return
        try:
            partitions = self._partitions_of(topic)
            if partitions:
                self._consumer.resume(*partitions)
        except (KafkaError, ValueError) as exc:
            raise BrokerOperationError(f"Failed to resume {topic}: {exc}", topic=topic) from exc
        logger.debug("Topic resumed", extra={"event_data": {"topic": topic}})

    def is_topic_paused(self, topic: str) -> bool:
        return topic in self._paused_topics

    def _partitions_of(self, topic: str) -> List[TopicPartition]:
        return [tp for tp in self._consumer.assignment() if tp.topic == topic]

    def _apply_pauses(self, assigned: Iterable[TopicPartition]) -> None:
        to_pause = [tp for tp in assigned if tp.topic in self._paused_topics]
        if to_pause:
            self._consumer.pause(*to_pause)

    # ── consuming ───────────────────────────────────────────────────────
    async def start_consuming(self) -> None:
        if not self._connected:
            raise BrokerOperationError("Kafka client is not connected")
        if self._loop_task is not None and not self._loop_task.done():
            logger.debug("Consume loop already running")
            return
        self._loop_task = asyncio.create_task(self._consume_loop(), name="kafka-consume-loop")
        logger.info("Started consuming from subscribed topics")

    async def _consume_loop(self) -> None:
        while True:
            if not self._handlers:
                await asyncio.sleep(self.poll_timeout_ms / 1000)
                continue
            try:
                batches = await self._consumer.getmany(timeout_ms=self.poll_timeout_ms)
            except KafkaError as exc:
                logger.error("Kafka fetch failed", extra={"event_data": {"error": str(exc)}})
                await asyncio.sleep(self.poll_timeout_ms / 1000)
                continue

            for tp, records in batches.items():
                for record in records:
                    if tp.topic in self._paused_topics:
                        # Fetched before the pause landed; rewind so resume starts here
                        self._consumer.seek(tp, record.offset)
                        break
                    await self._dispatch(tp, record)

    async def _dispatch(self, tp: TopicPartition, record) -> None:
        handler = self._handlers.get(tp.topic)
        if handler is None:
            logger.error("No handler registered for topic", extra={"event_data": {"topic": tp.topic}})
            return

        logger.debug(
            "Processing Kafka message",
            extra={"event_data": {"topic": tp.topic, "partition": tp.partition, "offset": record.offset}},
        )
        try:
            await handler(decode_headers(record.headers), record.value)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception(
                "Handler failed for Kafka message",
                extra={"event_data": {"topic": tp.topic, "partition": tp.partition, "offset": record.offset}},
            )

        try:
            await self._consumer.commit({tp: record.offset + 1})
        except KafkaError as exc:
            logger.warning(
                "Offset commit failed",
                extra={"event_data": {"topic": tp.topic, "partition": tp.partition, "error": str(exc)}},
            )
