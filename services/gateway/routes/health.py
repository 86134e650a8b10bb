"""Health check endpoint."""
from fastapi import APIRouter, Depends

from core.di.container import Container
from core.errors import StorageError

from ..dependencies import get_container
from ..models import HealthResponse


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(container: Container = Depends(get_container)):
    """
    Health check with dependencies.

    Pings the correlation store and reports the broker connection plus the
    lifecycle state of every registered consumer. The endpoint itself always
    answers 200; ``status`` turns ``degraded`` when a dependency is down.

    Example response (healthy):
        ```json
        {
            "status": "ok",
            "redis": "ok",
            "broker": "ok",
            "consumers": {"crawl-responses": "consuming"}
        }
        ```
    """
    try:
        await container.resolve("correlation_store").ping()
        redis_status = "ok"
    except StorageError as e:
        redis_status = f"error: {e}"

    broker = container.resolve("broker")
    broker_status = "ok" if getattr(broker, "is_connected", False) else "disconnected"

    consumers = container.resolve("consumer_lifecycle").states()

    healthy = redis_status == "ok" and broker_status == "ok"
    return HealthResponse(
        status="ok" if healthy else "degraded",
        redis=redis_status,
        broker=broker_status,
        consumers=consumers,
    )
