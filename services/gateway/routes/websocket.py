"""WebSocket channel: identity binding, crawl submission and result push."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from core.connection_registry import ConnectionRegistry
from core.errors import BrokerOperationError, DeliveryError, StorageError
from core.request_publisher import RequestPublisher

from ..connection import WebSocketConnection
from ..dependencies import get_ws_publisher, get_ws_registry
from ..models import AuthFrame, SubmitCrawlFrame, error_frame, inbound_frame_adapter

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_AUTH_CLOSE_CODE = 4000
UNAUTHENTICATED_CLOSE_CODE = 4001

KNOWN_EVENTS = {"auth", "submit_crawl"}


@router.websocket("/ws")
async def crawl_channel(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_ws_registry),
    publisher: RequestPublisher = Depends(get_ws_publisher),
):
    """
    Bidirectional client channel.

    Frames are ``{"event": ..., "data": ...}`` JSON objects:

        -> {"event": "auth", "data": {"user_email": "ana@example.com"}}
        <- {"event": "auth_ok"}
        -> {"event": "submit_crawl", "data": {"query": "pricing", "original_url": "https://..."}}
        <- {"event": "crawl_accepted", "data": {"fingerprint": "...", "status": "accepted", "message": "..."}}
        <- {"event": "crawl_result", "data": {...}, "timestamp": "..."}

    A socket must authenticate before anything else (close 4001 otherwise);
    an invalid auth frame closes with 4000. Authenticating again from another
    socket as the same identity closes this one with 4008.
    """
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    identity: Optional[str] = None
    logger.debug("WebSocket accepted", extra={"event_data": {"connection_id": connection.connection_id}})

    try:
        while not connection.closed:
            raw = await websocket.receive_text()
            if connection.closed:
                break

            try:
                message = json.loads(raw)
            except ValueError:
                await connection.send(error_frame("Invalid JSON"))
                continue
            event = message.get("event") if isinstance(message, dict) else None

            if identity is None and event != "auth":
                logger.warning(
                    "Frame before authentication, closing",
                    extra={"event_data": {"connection_id": connection.connection_id, "event": event}},
                )
                connection.mark_closed()
                await websocket.close(code=UNAUTHENTICATED_CLOSE_CODE)
                return

            try:
                frame = inbound_frame_adapter.validate_python(message)
            except PydanticValidationError as exc:
                if event == "auth":
                    connection.mark_closed()
                    await websocket.close(code=INVALID_AUTH_CLOSE_CODE)
                    return
                if event not in KNOWN_EVENTS:
                    await connection.send(error_frame(f"Unknown event: {event}"))
                else:
                    errors = exc.errors(include_url=False, include_context=False, include_input=False)
                    await connection.send(error_frame("Invalid payload", errors))
                continue

            match frame:
                case AuthFrame(data=data):
                    identity = str(data.user_email)
                    registry.bind(identity, connection)
                    await connection.send({"event": "auth_ok"})

                case SubmitCrawlFrame(data=data):
                    try:
                        result = await publisher.submit_request(
                            identity, data.query, data.original_url
                        )
                    except (StorageError, BrokerOperationError) as exc:
                        logger.error(
                            "Crawl submission failed",
                            extra={"event_data": {"identity": identity, "error": str(exc)}},
                        )
                        await connection.send(error_frame("Crawl request could not be accepted"))
                        continue
                    await connection.send(
                        {
                            "event": "crawl_accepted",
                            "data": {
                                "fingerprint": result["fingerprint"],
                                "status": result["status"],
                                "message": result["message"],
                            },
                        }
                    )
    except WebSocketDisconnect as exc:
        logger.debug(
            "WebSocket disconnected",
            extra={"event_data": {"connection_id": connection.connection_id, "code": exc.code}},
        )
    except DeliveryError as exc:
        logger.info(
            "WebSocket send failed, dropping connection",
            extra={"event_data": {"connection_id": connection.connection_id, "error": str(exc)}},
        )
    finally:
        connection.mark_closed()
        registry.unbind(connection)
