"""Prometheus scrape endpoint."""
from fastapi import APIRouter, Depends, Response

from core.metrics import METRICS_CONTENT_TYPE, GatewayMetrics

from ..dependencies import get_metrics

router = APIRouter()


@router.get("/metrics", response_class=Response)
def metrics_endpoint(metrics: GatewayMetrics = Depends(get_metrics)):
    """Gateway counters and histograms in Prometheus text format."""
    return Response(content=metrics.render(), media_type=METRICS_CONTENT_TYPE)
