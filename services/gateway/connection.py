"""WebSocket-backed connection handle for the connection registry."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import WebSocket

from core.errors import DeliveryError

logger = logging.getLogger(__name__)

EVICTED_CLOSE_CODE = 4008


class WebSocketConnection:
    """
    Wraps one accepted WebSocket.

    ``terminate`` is synchronous so the registry can call it under its lock;
    the actual close frame is sent from a scheduled task.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or uuid.uuid4().hex
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: Dict[str, Any]) -> None:
        if self._closed:
            raise DeliveryError(
                "Connection is closed", {"connection_id": self.connection_id}
            )
        try:
            await self.websocket.send_json(payload)
        except Exception as exc:
            self._closed = True
            raise DeliveryError(
                f"WebSocket send failed: {exc}", {"connection_id": self.connection_id}
            ) from exc

    def terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running loop to close evicted connection",
                extra={"event_data": {"connection_id": self.connection_id}},
            )
            return
        self._close_task = loop.create_task(self._close(EVICTED_CLOSE_CODE))

    def mark_closed(self) -> None:
        self._closed = True

    async def _close(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "Close of evicted connection failed",
                extra={"event_data": {"connection_id": self.connection_id, "error": str(exc)}},
            )

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.connection_id!r}, closed={self._closed})"
