"""In-memory identity <-> live connection registry."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Generic, Hashable, Optional, Protocol, TypeVar


logger = logging.getLogger(__name__)


class Connection(Protocol):
    """What the registry needs from a live connection handle."""

    connection_id: str

    def terminate(self) -> None:
        """Forcibly close the connection without a graceful handshake."""


C = TypeVar("C", bound=Connection)


class ConnectionRegistry(Generic[C]):
    """
    One live connection per identity, and one identity per connection.

    ``bind`` is a two-step protocol: the stale connection of an identity is
    evicted (terminated, both mappings dropped) before the new binding is
    installed. ``unbind`` only acts on the connection currently bound for its
    identity, so a late disconnect from an evicted socket cannot remove the
    newer binding.

    All mutations go through one lock; no method performs I/O.
    """

    def __init__(self) -> None:
        self._by_identity: Dict[str, C] = {}
        self._by_connection: Dict[Hashable, str] = {}
        self._lock = threading.Lock()

    def bind(self, identity: str, connection: C) -> None:
        with self._lock:
            self._evict(identity, keep=connection)
            self._install(identity, connection)
        logger.info(
            "Connection bound",
            extra={"event_data": {"identity": identity, "connection_id": connection.connection_id}},
        )

    def unbind(self, connection: C) -> Optional[str]:
        """Remove ``connection`` if it is still the bound one; returns its identity."""
        with self._lock:
            identity = self._by_connection.get(connection)
            if identity is None:
                return None
            if self._by_identity.get(identity) is not connection:
                # Superseded connection that somehow kept a reverse entry
                del self._by_connection[connection]
                return None
            del self._by_connection[connection]
            del self._by_identity[identity]
        logger.info(
            "Connection unbound",
            extra={"event_data": {"identity": identity, "connection_id": connection.connection_id}},
        )
        return identity

    def lookup_connection(self, identity: str) -> Optional[C]:
        return self._by_identity.get(identity)

    def lookup_identity(self, connection: C) -> Optional[str]:
        return self._by_connection.get(connection)

    def __len__(self) -> int:
        return len(self._by_identity)

    # -- bind steps, caller holds the lock ------------------------------------

    def _evict(self, identity: str, keep: C) -> None:
        old = self._by_identity.get(identity)
        if old is None or old is keep:
            return
        logger.warning(
            "Identity reconnected, terminating previous connection",
            extra={"event_data": {"identity": identity, "connection_id": old.connection_id}},
        )
        try:
            old.terminate()
        finally:
            self._by_connection.pop(old, None)
            del self._by_identity[identity]

    def _install(self, identity: str, connection: C) -> None:
        previous_identity = self._by_connection.get(connection)
        if previous_identity is not None and previous_identity != identity:
            # Same socket re-authenticating as someone else
            if self._by_identity.get(previous_identity) is connection:
                del self._by_identity[previous_identity]
        self._by_identity[identity] = connection
        self._by_connection[connection] = identity
