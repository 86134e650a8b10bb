"""Tests for the Redis-backed correlation store."""

import json

import pytest

from core.correlation_store import CorrelationRecord, CorrelationStore, RequestMetadata
from core.errors import StorageError


def _record(fingerprint: str = "fp-1") -> CorrelationRecord:
    return CorrelationRecord(
        fingerprint=fingerprint,
        delivery_target="a@example.com",
        request_metadata=RequestMetadata(url="https://x", query="q"),
    )


@pytest.mark.asyncio
async def test_put_then_get_returns_record(store: CorrelationStore, fake_redis) -> None:
    record = _record()

    await store.put(record)
    loaded = await store.get("fp-1")

    assert loaded == record
    assert "test:fp-1" in fake_redis.data
    assert json.loads(fake_redis.data["test:fp-1"])["delivery_target"] == "a@example.com"


@pytest.mark.asyncio
async def test_put_applies_retention_window(store: CorrelationStore, fake_redis) -> None:
    await store.put(_record())

    assert fake_redis.expiries["test:fp-1"] == 60


@pytest.mark.asyncio
async def test_zero_ttl_keeps_record_without_expiry(fake_redis) -> None:
    store = CorrelationStore(fake_redis, key_prefix="p:", ttl_seconds=0)

    await store.put(_record())

    assert fake_redis.expiries["p:fp-1"] is None


@pytest.mark.asyncio
async def test_get_unknown_fingerprint_returns_none(store: CorrelationStore) -> None:
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_delete_is_idempotent(store: CorrelationStore) -> None:
    await store.put(_record())

    await store.delete("fp-1")
    await store.delete("fp-1")

    assert await store.get("fp-1") is None


@pytest.mark.asyncio
async def test_backend_failure_raises_storage_error(store: CorrelationStore, fake_redis) -> None:
    fake_redis.fail = True

    with pytest.raises(StorageError):
        await store.put(_record())
    with pytest.raises(StorageError):
        await store.get("fp-1")
    with pytest.raises(StorageError):
        await store.delete("fp-1")
    with pytest.raises(StorageError):
        await store.ping()


@pytest.mark.asyncio
async def test_corrupt_record_raises_storage_error(store: CorrelationStore, fake_redis) -> None:
    fake_redis.data["test:bad"] = "{not json"

    with pytest.raises(StorageError) as exc_info:
        await store.get("bad")

    assert exc_info.value.context == {"fingerprint": "bad"}


@pytest.mark.asyncio
async def test_close_closes_client(store: CorrelationStore, fake_redis) -> None:
    await store.close()

    assert fake_redis.closed
