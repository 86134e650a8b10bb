"""FastAPI dependencies."""
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, WebSocket

from core.connection_registry import ConnectionRegistry
from core.consumer_lifecycle import ConsumerLifecycleManager
from core.correlation_store import CorrelationStore
from core.di.container import Container
from core.metrics import GatewayMetrics
from core.request_publisher import RequestPublisher

from .config import Settings


def get_container(request: Request) -> Container:
    """
    Get the component container from app state.

    The container is built by the application factory and its network clients
    are connected during startup.
    """
    return request.app.state.container


def get_settings_dep(container: Container = Depends(get_container)) -> Settings:
    return container.resolve("settings")


def get_publisher(container: Container = Depends(get_container)) -> RequestPublisher:
    return container.resolve("request_publisher")


def get_store(container: Container = Depends(get_container)) -> CorrelationStore:
    return container.resolve("correlation_store")


def get_lifecycle(container: Container = Depends(get_container)) -> ConsumerLifecycleManager:
    return container.resolve("consumer_lifecycle")


def get_metrics(container: Container = Depends(get_container)) -> GatewayMetrics:
    return container.resolve("metrics")


def get_ws_container(websocket: WebSocket) -> Container:
    return websocket.app.state.container


def get_ws_registry(container: Container = Depends(get_ws_container)) -> ConnectionRegistry:
    return container.resolve("connection_registry")


def get_ws_publisher(container: Container = Depends(get_ws_container)) -> RequestPublisher:
    return container.resolve("request_publisher")


async def require_admin(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    """
    Check the operator bearer token.

    Raises:
        HTTPException: 401 when the header is missing or the token does not match
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(token.strip(), settings.admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")
