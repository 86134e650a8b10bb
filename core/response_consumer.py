"""Correlate worker results with stored requests and deliver them."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from core.correlation_store import CorrelationRecord, CorrelationStore
from core.delivery import DeliverySink
from core.errors import StorageError, ValidationError
from core.messages import CrawlResultBody, ResultStatus
from core.metrics import GatewayMetrics

logger = logging.getLogger(__name__)

CRAWL_RESULT_EVENT = "crawl_result"


class ResultOutcome(str, Enum):
    """What happened to one inbound result message."""

    DELIVERED = "delivered"
    OFFLINE = "offline"
    UNKNOWN = "unknown"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class ResponseConsumer:
    """
    Handles messages from the crawl response topic.

    Flow per message:
        1. fingerprint header missing -> rejected, nothing else happens
        2. body not a valid result -> rejected, record kept for a retry
        3. no record for the fingerprint -> unknown, dropped
        4. identity header disagrees with the record -> rejected, record kept
        5. otherwise deliver to the identity's current connection (if any)
           and delete the record whether or not delivery happened

    Store outages while reading leave the record in place (deferred); nothing
    raised here reaches the broker loop.
    """

    def __init__(self, store: CorrelationStore, sink: DeliverySink, metrics: Optional[GatewayMetrics] = None):
        self.store = store
        self.sink = sink
        self.metrics = metrics

    async def on_result_message(
        self,
        headers: Mapping[str, str],
        body: Union[bytes, str, Dict[str, Any], None],
    ) -> ResultOutcome:
        outcome = await self._process(headers, body)
        if self.metrics is not None:
            self.metrics.record_result(outcome.value)
        return outcome

    async def _process(
        self,
        headers: Mapping[str, str],
        body: Union[bytes, str, Dict[str, Any], None],
    ) -> ResultOutcome:
        fingerprint = headers.get("fingerprint")
        if not fingerprint:
            logger.error(
                "Result message without fingerprint header, dropping",
                extra={"event_data": {"headers": sorted(headers)}},
            )
            return ResultOutcome.REJECTED

        try:
            result = self._parse_body(body)
            status = self._resolve_status(headers.get("status"), result)
        except ValidationError as exc:
            logger.error(
                "Malformed result message, keeping correlation record",
                extra={"event_data": {"fingerprint": fingerprint, "error": str(exc)}},
            )
            return ResultOutcome.REJECTED

        try:
            record = await self.store.get(fingerprint)
        except StorageError as exc:
            logger.error(
                "Correlation store unavailable while resolving result",
                extra={"event_data": {"fingerprint": fingerprint, "error": str(exc)}},
            )
            return ResultOutcome.DEFERRED

        if record is None:
            logger.warning(
                "No correlation record for result, dropping",
                extra={"event_data": {"fingerprint": fingerprint}},
            )
            return ResultOutcome.UNKNOWN

        header_identity = headers.get("identity")
        if header_identity and header_identity != record.delivery_target:
            logger.error(
                "Result identity does not match correlation record, dropping",
                extra={
                    "event_data": {
                        "fingerprint": fingerprint,
                        "identity": header_identity,
                        "expected": record.delivery_target,
                    }
                },
            )
            return ResultOutcome.REJECTED

        payload = build_result_payload(record, status, result)
        delivered = await self.sink.deliver(record.delivery_target, payload)

        try:
            await self.store.delete(fingerprint)
        except StorageError as exc:
            logger.error(
                "Failed to delete correlation record after processing",
                extra={"event_data": {"fingerprint": fingerprint, "error": str(exc)}},
            )

        logger.info(
            "Processed crawl result",
            extra={
                "event_data": {
                    "fingerprint": fingerprint,
                    "identity": record.delivery_target,
                    "status": status.value,
                    "delivered": delivered,
                }
            },
        )
        return ResultOutcome.DELIVERED if delivered else ResultOutcome.OFFLINE

    @staticmethod
    def _parse_body(body: Union[bytes, str, Dict[str, Any], None]) -> CrawlResultBody:
        if body is None:
            raise ValidationError("Result message has no body")
        try:
            if isinstance(body, (bytes, str)):
                body = json.loads(body)
            return CrawlResultBody.model_validate(body)
        except (ValueError, PydanticValidationError) as exc:
            raise ValidationError(f"Invalid result body: {exc}") from exc

    @staticmethod
    def _resolve_status(header_status: Optional[str], result: CrawlResultBody) -> ResultStatus:
        if header_status is None:
            return ResultStatus.SUCCESS if result.success else ResultStatus.FAILURE
        try:
            return ResultStatus(header_status.lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown result status {header_status!r}") from exc


def build_result_payload(
    record: CorrelationRecord,
    status: ResultStatus,
    result: CrawlResultBody,
) -> Dict[str, Any]:
    """Client-facing frame: original request context plus the worker's result."""
    return {
        "event": CRAWL_RESULT_EVENT,
        "data": {
            "fingerprint": record.fingerprint,
            "query": record.request_metadata.query,
            "url": record.request_metadata.url,
            "status": status.value,
            "success": result.success,
            "scraped_data": result.scraped_data,
            "error_message": result.error_message,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
