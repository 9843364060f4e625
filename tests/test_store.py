"""Tests for the Redis lock store adapter."""

import pytest

import lockguard.store as store_module
from lockguard.config import LockGuardConfig
from lockguard.store import LockStore, RedisLockStore, close_lock_store, get_lock_store


def test_redis_store_satisfies_protocol(lock_store):
    assert isinstance(lock_store, LockStore)


@pytest.mark.asyncio
async def test_set_if_absent_only_sets_missing_keys(lock_store, redis_client):
    assert await lock_store.set_if_absent("inventory:reindex", "token-a", 5.0) is True
    assert await lock_store.set_if_absent("inventory:reindex", "token-b", 5.0) is False
    assert await redis_client.get("inventory:reindex") == b"token-a"


@pytest.mark.asyncio
async def test_set_if_absent_applies_ttl_in_milliseconds(lock_store, redis_client):
    await lock_store.set_if_absent("inventory:reindex", "token-a", 1.5)
    pttl = await redis_client.pttl("inventory:reindex")
    assert 0 < pttl <= 1500


@pytest.mark.asyncio
async def test_extend_resets_expiry(lock_store, redis_client):
    await lock_store.set_if_absent("inventory:reindex", "token-a", 0.5)
    assert await lock_store.extend("inventory:reindex", 10.0) is True
    assert await redis_client.pttl("inventory:reindex") > 5000


@pytest.mark.asyncio
async def test_extend_missing_key_returns_false(lock_store):
    assert await lock_store.extend("inventory:missing", 10.0) is False


@pytest.mark.asyncio
async def test_compare_and_delete_removes_matching_token(lock_store, redis_client):
    await lock_store.set_if_absent("inventory:reindex", "token-a", 5.0)
    assert await lock_store.compare_and_delete("inventory:reindex", "token-a") == 1
    assert await redis_client.exists("inventory:reindex") == 0


@pytest.mark.asyncio
async def test_compare_and_delete_ignores_foreign_token(lock_store, redis_client):
    await redis_client.set("inventory:reindex", "token-b")
    assert await lock_store.compare_and_delete("inventory:reindex", "token-a") == 0
    assert await redis_client.get("inventory:reindex") == b"token-b"


@pytest.mark.asyncio
async def test_compare_and_delete_missing_key(lock_store):
    assert await lock_store.compare_and_delete("inventory:missing", "token-a") == 0


@pytest.mark.asyncio
async def test_ping_reports_connectivity(lock_store):
    assert await lock_store.ping() is True


@pytest.mark.asyncio
async def test_close_leaves_borrowed_client_open(lock_store, redis_client):
    await lock_store.close()
    assert await redis_client.ping() is True


@pytest.mark.asyncio
async def test_default_store_is_shared_until_closed(monkeypatch):
    monkeypatch.setattr(store_module, "_default_store", None)
    config = LockGuardConfig(redis_url="redis://cache.internal:6380/2")

    first = get_lock_store(config)
    assert get_lock_store() is first
    assert first.client.connection_pool.connection_kwargs["host"] == "cache.internal"
    assert first.client.connection_pool.connection_kwargs["port"] == 6380

    await close_lock_store()
    assert store_module._default_store is None


def test_from_config_uses_host_port_and_db():
    config = LockGuardConfig(redis_host="10.0.0.7", redis_port=6390, redis_db=3)
    store = RedisLockStore.from_config(config)
    kwargs = store.client.connection_pool.connection_kwargs
    assert kwargs["host"] == "10.0.0.7"
    assert kwargs["port"] == 6390
    assert kwargs["db"] == 3
