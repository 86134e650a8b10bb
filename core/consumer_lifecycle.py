"""Lifecycle management for broker consumers.

Each consumer owns exactly one topic and moves through

    IDLE -> SUBSCRIBED -> CONSUMING <-> PAUSED -> STOPPED

``STOPPED`` is terminal. The manager drives start/stop over the registered
consumers, while pause/resume walk the configured topic set so operators can
halt ingestion for topics that have no consumer wired up yet.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from core.broker import BrokerClient, MessageHandler
from core.errors import BrokerOperationError, ConsumerStateError

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    CONSUMING = "consuming"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class ConsumerDescriptor:
    topic: str
    state: ConsumerState = ConsumerState.IDLE


class TopicConsumer:
    """A handler bound to one topic, with its own pause/resume/stop lifecycle."""

    def __init__(self, topic: str, handler: MessageHandler, name: Optional[str] = None):
        self.descriptor = ConsumerDescriptor(topic=topic)
        self.handler = handler
        self.name = name or topic

    @property
    def topic(self) -> str:
        return self.descriptor.topic

    @property
    def state(self) -> ConsumerState:
        return self.descriptor.state

    def is_active(self) -> bool:
        """Subscribed and not stopped, whether consuming or paused."""
        return self.state in (ConsumerState.CONSUMING, ConsumerState.PAUSED)

    async def start(self, broker: BrokerClient) -> None:
        """Subscribe the handler and mark the consumer active.

        Lands in PAUSED instead when the broker already has the topic paused,
        e.g. after a pause_all issued before this consumer was registered.
        No-op once started; rejected after stop. A failed subscribe leaves the
        consumer IDLE so a later start can retry.
        """
        if self.state == ConsumerState.STOPPED:
            raise ConsumerStateError(f"Consumer for {self.topic} is stopped", {"topic": self.topic})
        if self.state != ConsumerState.IDLE:
            return

        await broker.subscribe(self.topic, self.handler)
        self.descriptor.state = ConsumerState.SUBSCRIBED
        if broker.is_topic_paused(self.topic):
            self.descriptor.state = ConsumerState.PAUSED
        else:
            self.descriptor.state = ConsumerState.CONSUMING
        logger.info(
            "Consumer started",
            extra={"event_data": {"topic": self.topic, "consumer": self.name, "state": self.state.value}},
        )

    async def pause(self, broker: BrokerClient) -> None:
        if self.state == ConsumerState.PAUSED:
            return
        self._require(ConsumerState.CONSUMING, "pause")
        await broker.pause_topic(self.topic)
        self.descriptor.state = ConsumerState.PAUSED
        logger.info("Consumer paused", extra={"event_data": {"topic": self.topic}})

    async def resume(self, broker: BrokerClient) -> None:
        if self.state == ConsumerState.CONSUMING:
            return
        self._require(ConsumerState.PAUSED, "resume")
        await broker.resume_topic(self.topic)
        self.descriptor.state = ConsumerState.CONSUMING
        logger.info("Consumer resumed", extra={"event_data": {"topic": self.topic}})

    async def stop(self, broker: BrokerClient) -> None:
        if self.state == ConsumerState.STOPPED:
            return
        was_subscribed = self.state != ConsumerState.IDLE
        self.descriptor.state = ConsumerState.STOPPED
        if was_subscribed:
            try:
                await broker.unsubscribe(self.topic)
            except BrokerOperationError as exc:
                logger.warning(
                    "Unsubscribe failed while stopping consumer",
                    extra={"event_data": {"topic": self.topic, "error": str(exc)}},
                )
        logger.info("Consumer stopped", extra={"event_data": {"topic": self.topic}})

    def mark_paused(self) -> None:
        """Mirror a broker-level pause already applied to this topic."""
        if self.state == ConsumerState.CONSUMING:
            self.descriptor.state = ConsumerState.PAUSED

    def mark_resumed(self) -> None:
        """Mirror a broker-level resume already applied to this topic."""
        if self.state == ConsumerState.PAUSED:
            self.descriptor.state = ConsumerState.CONSUMING

    def _require(self, expected: ConsumerState, operation: str) -> None:
        if self.state != expected:
            raise ConsumerStateError(
                f"Cannot {operation} consumer for {self.topic} in state {self.state.value}",
                {"topic": self.topic, "state": self.state.value},
            )


class ConsumerLifecycleManager:
    """
    Owns the registered consumers and the configured topic set.

    Batch operations never stop at the first failure: every failure is logged
    with its topic and the remaining consumers/topics are still processed.

    Example:
        >>> manager = ConsumerLifecycleManager(broker, ["crawl-requests", "crawl-responses"])
        >>> manager.register_consumer(TopicConsumer("crawl-responses", handler))
        >>> await manager.start_all()
        >>> await manager.pause_all()    # both topics paused at the broker
        >>> await manager.resume_all()
        >>> await manager.stop_all()
    """

    def __init__(self, broker: BrokerClient, configured_topics: Iterable[str] = ()):
        self.broker = broker
        self.configured_topics: List[str] = list(dict.fromkeys(configured_topics))
        self._consumers: Dict[str, TopicConsumer] = {}
        self._lock = asyncio.Lock()

    def register_consumer(self, consumer: TopicConsumer) -> None:
        if consumer.topic in self._consumers:
            raise ValueError(f"A consumer is already registered for topic {consumer.topic}")
        self._consumers[consumer.topic] = consumer
        logger.debug("Consumer registered", extra={"event_data": {"topic": consumer.topic}})

    def consumers(self) -> List[TopicConsumer]:
        return list(self._consumers.values())

    def get_consumer(self, topic: str) -> Optional[TopicConsumer]:
        return self._consumers.get(topic)

    def all_topics(self) -> List[str]:
        """Configured topics followed by any registered topic outside that set."""
        return list(dict.fromkeys([*self.configured_topics, *self._consumers]))

    def states(self) -> Dict[str, str]:
        return {topic: consumer.state.value for topic, consumer in self._consumers.items()}

    async def start_all(self) -> Dict[str, str]:
        async with self._lock:
            logger.info(f"Starting {len(self._consumers)} Kafka consumer(s)...")
            for consumer in self._consumers.values():
                try:
                    await consumer.start(self.broker)
                except (BrokerOperationError, ConsumerStateError) as exc:
                    logger.error(
                        "Failed to start consumer",
                        extra={"event_data": {"topic": consumer.topic, "consumer": consumer.name, "error": str(exc)}},
                    )

            if any(consumer.is_active() for consumer in self._consumers.values()):
                try:
                    await self.broker.start_consuming()
                except BrokerOperationError as exc:
                    logger.error("Failed to start consume loop", extra={"event_data": {"error": str(exc)}})
            return self.states()

    async def pause_all(self) -> List[str]:
        return await self.pause_topics(self.all_topics())

    async def resume_all(self) -> List[str]:
        return await self.resume_topics(self.all_topics())

    async def pause_topics(self, topics: Iterable[str]) -> List[str]:
        """Pause topics at the broker and mirror into matching consumers.

        Returns:
            List[str]: Topics the broker failed to pause
        """
        async with self._lock:
            failed = []
            for topic in topics:
                try:
                    await self.broker.pause_topic(topic)
                except BrokerOperationError as exc:
                    logger.error("Failed to pause topic", extra={"event_data": {"topic": topic, "error": str(exc)}})
                    failed.append(topic)
                    continue
                consumer = self._consumers.get(topic)
                if consumer is not None:
                    consumer.mark_paused()
            logger.info("Topics paused", extra={"event_data": {"failed": failed}})
            return failed

    async def resume_topics(self, topics: Iterable[str]) -> List[str]:
        """Resume topics at the broker and mirror into matching consumers.

        Returns:
            List[str]: Topics the broker failed to resume
        """
        async with self._lock:
            failed = []
            for topic in topics:
                try:
                    await self.broker.resume_topic(topic)
                except BrokerOperationError as exc:
                    logger.error("Failed to resume topic", extra={"event_data": {"topic": topic, "error": str(exc)}})
                    failed.append(topic)
                    continue
                consumer = self._consumers.get(topic)
                if consumer is not None:
                    consumer.mark_resumed()
            logger.info("Topics resumed", extra={"event_data": {"failed": failed}})
            return failed

    async def stop_all(self) -> None:
        async with self._lock:
            logger.info("Stopping all Kafka consumers...")
            for consumer in self._consumers.values():
                await consumer.stop(self.broker)
