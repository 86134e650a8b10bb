"""Delivery of result payloads to whichever connection an identity holds now."""

from __future__ import annotations

import logging
from typing import Any, Dict

from core.connection_registry import ConnectionRegistry
from core.errors import DeliveryError

logger = logging.getLogger(__name__)


class DeliverySink:
    """Resolve the current connection for an identity and send to it.

    Offline identities and failed sends are logged, never raised.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def deliver(self, identity: str, payload: Dict[str, Any]) -> bool:
        connection = self.registry.lookup_connection(identity)
        if connection is None:
            logger.info(
                "Client offline, dropping payload",
                extra={"event_data": {"identity": identity, "event": payload.get("event")}},
            )
            return False

        try:
            await connection.send(payload)
        except DeliveryError as exc:
            logger.warning(
                "Delivery failed, treating client as offline",
                extra={
                    "event_data": {
                        "identity": identity,
                        "connection_id": connection.connection_id,
                        "error": str(exc),
                    }
                },
            )
            return False

        logger.info(
            "Payload delivered",
            extra={
                "event_data": {
                    "identity": identity,
                    "connection_id": connection.connection_id,
                    "event": payload.get("event"),
                }
            },
        )
        return True
