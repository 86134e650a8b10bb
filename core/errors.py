"""Exception taxonomy for the crawl gateway core."""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all gateway errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ValidationError(GatewayError):
    """Malformed inbound request, result message or socket frame"""

    pass


class StorageError(GatewayError):
    """Correlation store unavailable or returned unreadable data"""

    pass


class DeliveryError(GatewayError):
    """Sending a payload to a live connection failed"""

    pass


class BrokerOperationError(GatewayError):
    """Publish/subscribe/pause/resume/stop failure against the broker"""

    def __init__(
        self,
        message: str,
        *,
        topic: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.topic = topic


class ConsumerStateError(GatewayError):
    """Requested lifecycle transition is not allowed from the current state"""

    pass
