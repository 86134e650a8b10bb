"""Turn a validated crawl request into a correlation record plus a broker message."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from opentelemetry.context import Context

from core.broker import BrokerClient
from core.correlation_store import CorrelationRecord, CorrelationStore, RequestMetadata
from core.errors import BrokerOperationError, StorageError
from core.metrics import GatewayMetrics
from utils.trace_context import producer_span

logger = logging.getLogger(__name__)

CRAWL_REQUEST_MESSAGE_TYPE = "crawl_request"


def new_fingerprint() -> str:
    """Random request id; identical requests never share a fingerprint."""
    return uuid.uuid4().hex


class RequestPublisher:
    """
    Store-then-publish of crawl requests.

    The correlation record is persisted before the broker message goes out, so
    a result can never arrive for a request the gateway does not know about. A
    crash or publish failure after the store step leaves an orphaned record,
    which the store's retention window eventually drops.
    """

    def __init__(
        self,
        store: CorrelationStore,
        broker: BrokerClient,
        topic: str,
        service_name: str = "crawl-gateway",
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.store = store
        self.broker = broker
        self.topic = topic
        self.service_name = service_name
        self.metrics = metrics

    async def publish(
        self,
        identity: str,
        query: str,
        target: str,
        trace: Optional[Context] = None,
    ) -> str:
        """
        Persist the correlation record and publish the crawl request.

        Args:
            identity: Client identity (email) that should receive the result
            query: What the client wants to know about the page
            target: URL to crawl
            trace: Caller trace context; a new trace is started when None

        Returns:
            str: The request fingerprint

        Raises:
            StorageError: Record could not be persisted; nothing was published
            BrokerOperationError: Record persisted but the message was not published
        """
        fingerprint = new_fingerprint()
        created_at = datetime.now(timezone.utc)
        record = CorrelationRecord(
            fingerprint=fingerprint,
            delivery_target=identity,
            request_metadata=RequestMetadata(url=target, query=query),
            created_at=created_at,
        )

        await self.store.put(record)

        body = {"fingerprint": fingerprint, "query": query, "url": target}
        span_attributes = {"messaging.destination.name": self.topic, "crawl.fingerprint": fingerprint}
        with producer_span(f"{self.topic} publish", trace, span_attributes) as trace_headers:
            headers = {**self._build_headers(identity, fingerprint, created_at), **trace_headers}
            try:
                await self.broker.publish(self.topic, fingerprint, headers, body)
            except Exception:
                logger.error(
                    "Publish failed after correlation record was stored",
                    extra={"event_data": {"fingerprint": fingerprint, "identity": identity, "topic": self.topic}},
                )
                raise

        logger.info(
            "Crawl request published",
            extra={
                "event_data": {
                    "fingerprint": fingerprint,
                    "identity": identity,
                    "topic": self.topic,
                    "traceparent": headers.get("traceparent"),
                }
            },
        )
        return fingerprint

    async def submit_request(
        self,
        identity: str,
        query: str,
        target: str,
        trace: Optional[Context] = None,
    ) -> Dict[str, Any]:
        """Entry point for the REST and WebSocket handlers; counts every submission."""
        started = time.perf_counter()
        status = "accepted"
        try:
            fingerprint = await self.publish(identity, query, target, trace)
        except StorageError:
            status = "store_unavailable"
            raise
        except BrokerOperationError:
            status = "broker_unavailable"
            raise
        finally:
            if self.metrics is not None:
                self.metrics.record_submission(status, time.perf_counter() - started)
        return {
            "status": "accepted",
            "message": "Web crawl task received successfully",
            "fingerprint": fingerprint,
        }

    def _build_headers(
        self,
        identity: str,
        fingerprint: str,
        created_at: datetime,
    ) -> Dict[str, str]:
        headers = {
            "identity": identity,
            "fingerprint": fingerprint,
            "timestamp": created_at.isoformat(),
            "message-id": str(uuid.uuid4()),
            "message-type": CRAWL_REQUEST_MESSAGE_TYPE,
            "source-service": self.service_name,
            "content-type": "application/json",
        }
        return headers
