"""FastAPI gateway for crawl requests and pushed results."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.di.container import Container, build_container
from core.errors import BrokerOperationError, StorageError
from utils.logger import setup_logging
from utils.trace_context import configure_tracing

from .config import Settings, get_settings
from .routes import consumers, crawl, health, metrics, websocket

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: check Redis, connect Kafka, start the registered consumers
    - Shutdown: stop consumers, disconnect Kafka, close Redis

    A dependency that is down at startup is logged and reported by
    ``/api/health``; the gateway still comes up.
    """
    container: Container = app.state.container
    settings: Settings = container.resolve("settings")
    store = container.resolve("correlation_store")
    broker = container.resolve("broker")
    lifecycle = container.resolve("consumer_lifecycle")

    logger.info(
        "Gateway starting",
        extra={
            "event_data": {
                "redis_url": settings.redis_url,
                "kafka": settings.kafka_bootstrap_servers,
                "topics": settings.configured_topics,
            }
        },
    )

    try:
        await store.ping()
    except StorageError as exc:
        logger.error("Correlation store unreachable at startup", extra={"event_data": {"error": str(exc)}})

    try:
        await broker.connect()
    except BrokerOperationError as exc:
        logger.error("Kafka unreachable at startup", extra={"event_data": {"error": str(exc)}})
    else:
        states = await lifecycle.start_all()
        logger.info("Consumers started", extra={"event_data": {"states": states}})

    yield

    logger.info("Gateway shutting down")
    await lifecycle.stop_all()
    try:
        await broker.disconnect()
    except BrokerOperationError as exc:
        logger.error("Kafka disconnect failed", extra={"event_data": {"error": str(exc)}})
    await store.close()
    logger.info("Gateway stopped")


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        container: Pre-built component container, e.g. with fakes wired in

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.log_file)
    configure_tracing(settings.app_name)

    app = FastAPI(
        title="Crawl Gateway",
        version=settings.app_version,
        description="""
        Gateway between clients and the crawl worker pool.

        Features:
        - Crawl submission over REST and WebSocket
        - Results pushed to the client's live WebSocket connection
        - Operator pause/resume of broker consumers
        - Health monitoring and Prometheus metrics

        Architecture:
        - Backend: FastAPI + aiokafka + redis
        - Correlation store: Redis
        - Broker: Kafka
        - Workers: separate processes consuming the request topic
        """,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.container = container or build_container(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(crawl.router, prefix="/api", tags=["crawl"])
    app.include_router(consumers.router, prefix="/api/consumers", tags=["consumers"])
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(metrics.router, prefix="/api", tags=["metrics"])
    app.include_router(websocket.router, tags=["websocket"])

    @app.get("/")
    def root():
        """Basic service information."""
        return {
            "status": "ok",
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/api/docs",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.gateway.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
