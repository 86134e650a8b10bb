"""Crawl submission endpoint."""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from core.errors import BrokerOperationError, StorageError
from core.metrics import GatewayMetrics
from core.request_publisher import RequestPublisher
from utils.trace_context import extract_context

from ..dependencies import get_metrics, get_publisher
from ..models import ErrorResponse, WebCrawlRequest, WebCrawlResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/web-crawl",
    response_model=WebCrawlResponse,
    status_code=202,
    responses={503: {"model": ErrorResponse, "description": "Correlation store or broker unavailable"}},
)
async def submit_web_crawl(
    req: WebCrawlRequest,
    publisher: RequestPublisher = Depends(get_publisher),
    metrics: GatewayMetrics = Depends(get_metrics),
    traceparent: Optional[str] = Header(default=None),
    tracestate: Optional[str] = Header(default=None),
):
    """
    Accept a crawl request and hand it to the worker pool.

    The result is not part of this response: it is pushed to the WebSocket
    connection currently authenticated as ``user_email``.

    Args:
        req: Crawl request (identity, query, URL)
        publisher: Request publisher (injected)
        metrics: Gateway metrics (injected)
        traceparent: Optional W3C trace parent of the caller
        tracestate: Optional W3C trace state of the caller

    Returns:
        WebCrawlResponse: Acceptance with the correlation fingerprint

    Raises:
        HTTPException: 503 if the correlation store or broker is unavailable

    Example response:
        ```json
        {
            "status": "accepted",
            "message": "Web crawl task received successfully",
            "fingerprint": "5f0c6c1e9a4b4c6f8d2f1f0e3b7a9c21"
        }
        ```
    """
    started = time.perf_counter()
    trace = extract_context({"traceparent": traceparent, "tracestate": tracestate})

    try:
        result = await publisher.submit_request(
            str(req.user_email), req.query, req.original_url, trace
        )
    except StorageError as exc:
        logger.error("Crawl request rejected, store unavailable", extra={"event_data": {"error": str(exc)}})
        metrics.record_http_request("/api/web-crawl", "POST", 503, time.perf_counter() - started)
        raise HTTPException(status_code=503, detail="Correlation store unavailable") from exc
    except BrokerOperationError as exc:
        logger.error("Crawl request rejected, broker unavailable", extra={"event_data": {"error": str(exc)}})
        metrics.record_http_request("/api/web-crawl", "POST", 503, time.perf_counter() - started)
        raise HTTPException(status_code=503, detail="Message broker unavailable") from exc

    metrics.record_http_request("/api/web-crawl", "POST", 202, time.perf_counter() - started)
    return WebCrawlResponse(**result)
