"""Redis-backed correlation store.

Maps a request fingerprint to the identity that should receive the result and
the request metadata echoed back with it. Records live in Redis so a restart of
the gateway does not lose in-flight correlations.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from core.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMetadata:
    """Original request fields echoed to the client alongside the result."""

    url: str
    query: str


@dataclass(frozen=True)
class CorrelationRecord:
    fingerprint: str
    delivery_target: str
    request_metadata: RequestMetadata
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorrelationRecord":
        return cls(
            fingerprint=data["fingerprint"],
            delivery_target=data["delivery_target"],
            request_metadata=RequestMetadata(**data["request_metadata"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class CorrelationStore:
    """
    Correlation records keyed by fingerprint.

    ``put`` must succeed before the matching broker message is published.
    ``get`` returns None for unknown or already-delivered fingerprints.
    ``delete`` is idempotent.

    Example:
        >>> store = CorrelationStore(redis.asyncio.Redis.from_url(url), ttl_seconds=3600)
        >>> await store.put(record)
        >>> await store.get(record.fingerprint)
    """

    def __init__(self, redis_client, key_prefix: str = "crawl-state:", ttl_seconds: int = 0):
        """
        Args:
            redis_client: ``redis.asyncio.Redis`` (or any client with async set/get/delete)
            key_prefix: Prefix prepended to every fingerprint key
            ttl_seconds: Retention window for records; 0 keeps them until deleted
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    async def put(self, record: CorrelationRecord) -> None:
        key = self._key(record.fingerprint)
        value = json.dumps(record.to_dict())
        try:
            await self.redis.set(key, value, ex=self.ttl_seconds or None)
        except RedisError as exc:
            logger.error(
                "Failed to save correlation record",
                extra={"event_data": {"fingerprint": record.fingerprint, "error": str(exc)}},
            )
            raise StorageError(
                f"Failed to save correlation record {record.fingerprint}",
                {"fingerprint": record.fingerprint},
            ) from exc
        logger.debug(
            "Saved correlation record",
            extra={"event_data": {"fingerprint": record.fingerprint, "identity": record.delivery_target}},
        )

    async def get(self, fingerprint: str) -> Optional[CorrelationRecord]:
        try:
            raw = await self.redis.get(self._key(fingerprint))
        except RedisError as exc:
            raise StorageError(
                f"Failed to read correlation record {fingerprint}",
                {"fingerprint": fingerprint},
            ) from exc

        if raw is None:
            return None

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return CorrelationRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageError(
                f"Corrupt correlation record {fingerprint}",
                {"fingerprint": fingerprint},
            ) from exc

    async def delete(self, fingerprint: str) -> None:
        try:
            await self.redis.delete(self._key(fingerprint))
        except RedisError as exc:
            raise StorageError(
                f"Failed to delete correlation record {fingerprint}",
                {"fingerprint": fingerprint},
            ) from exc
        logger.debug(
            "Deleted correlation record",
            extra={"event_data": {"fingerprint": fingerprint}},
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as exc:
            raise StorageError(f"Correlation store unreachable: {exc}") from exc

    async def close(self) -> None:
        await self.redis.aclose()
