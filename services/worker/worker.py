"""Kafka crawl worker process."""
import asyncio
import json
import logging
import signal
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.broker import BrokerClient, KafkaBrokerClient
from core.consumer_lifecycle import ConsumerLifecycleManager, TopicConsumer
from core.errors import BrokerOperationError
from core.messages import CrawlRequestBody, ResultStatus
from utils.logger import setup_logging
from utils.trace_context import configure_tracing, extract_context, producer_span

from .config import WorkerSettings, get_worker_settings
from .crawl_task import CrawlOutcome, CrawlTask

logger = logging.getLogger(__name__)


class CrawlWorker:
    """
    Consumes crawl requests and publishes one result per request.

    Results echo the request's ``fingerprint`` and ``identity`` headers so the
    gateway can correlate them without reading the body.
    """

    def __init__(
        self,
        broker: BrokerClient,
        crawl_task: CrawlTask,
        settings: WorkerSettings,
        lifecycle: Optional[ConsumerLifecycleManager] = None,
    ):
        self.broker = broker
        self.crawl_task = crawl_task
        self.settings = settings
        self.lifecycle = lifecycle or ConsumerLifecycleManager(broker, [settings.kafka_request_topic])
        self.lifecycle.register_consumer(
            TopicConsumer(settings.kafka_request_topic, self.handle_request, name="crawl-requests")
        )
        self._stop = asyncio.Event()

    async def handle_request(
        self,
        headers: Mapping[str, str],
        body: Union[bytes, str, Dict[str, Any], None],
    ) -> Optional[CrawlOutcome]:
        """
        Crawl one request and publish its result.

        Returns:
            The published outcome, or None when the request was dropped
        """
        fingerprint = headers.get("fingerprint")
        if not fingerprint:
            logger.error("Crawl request without fingerprint header, dropping")
            return None

        try:
            payload = json.loads(body) if isinstance(body, (bytes, str)) else body
            request = CrawlRequestBody.model_validate(payload)
        except (ValueError, PydanticValidationError) as exc:
            logger.error(
                "Malformed crawl request",
                extra={"event_data": {"fingerprint": fingerprint, "error": str(exc)}},
            )
            outcome = CrawlOutcome(success=False, error_message="Malformed crawl request")
        else:
            logger.info(
                "Crawling",
                extra={"event_data": {"fingerprint": fingerprint, "url": request.url}},
            )
            outcome = await self.crawl_task.run(request.url, request.query)

        topic = self.settings.kafka_response_topic
        span_attributes = {"messaging.destination.name": topic, "crawl.fingerprint": fingerprint}
        with producer_span(f"{topic} publish", extract_context(headers), span_attributes) as trace_headers:
            await self.broker.publish(
                topic,
                fingerprint,
                {**self._result_headers(headers, fingerprint, outcome), **trace_headers},
                outcome.to_body(),
            )
        logger.info(
            "Crawl result published",
            extra={"event_data": {"fingerprint": fingerprint, "success": outcome.success}},
        )
        return outcome

    def _result_headers(self, request_headers: Mapping[str, str], fingerprint: str, outcome: CrawlOutcome) -> Dict[str, str]:
        headers = {
            "fingerprint": fingerprint,
            "status": (ResultStatus.SUCCESS if outcome.success else ResultStatus.FAILURE).value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source-service": self.settings.service_name,
            "content-type": "application/json",
        }
        identity = request_headers.get("identity")
        if identity:
            headers["identity"] = identity
        return headers

    async def run(self) -> None:
        await self.lifecycle.start_all()
        logger.info(
            "Worker started",
            extra={"event_data": {"topic": self.settings.kafka_request_topic, "group_id": self.settings.kafka_group_id}},
        )
        await self._stop.wait()
        await self.lifecycle.stop_all()

    def stop(self) -> None:
        self._stop.set()


async def _serve(settings: WorkerSettings) -> None:
    broker = KafkaBrokerClient(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        client_id=settings.kafka_client_id,
        group_id=settings.kafka_group_id,
        poll_timeout_ms=settings.kafka_poll_timeout_ms,
    )
    await broker.connect()
    try:
        async with httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": settings.user_agent},
        ) as client:
            worker = CrawlWorker(broker, CrawlTask(client, settings.max_snippets), settings)
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, worker.stop)
            await worker.run()
    finally:
        try:
            await broker.disconnect()
        except BrokerOperationError as exc:
            logger.error("Kafka disconnect failed", extra={"event_data": {"error": str(exc)}})


def main():
    """
    Start a crawl worker listening to the request topic.

    Usage:
        python -m services.worker.worker
    """
    settings = get_worker_settings()
    setup_logging(settings.log_level, settings.log_format, settings.log_file)
    configure_tracing(settings.service_name)
    asyncio.run(_serve(settings))


if __name__ == "__main__":
    main()
