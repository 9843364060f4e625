"""
Lock Store
==========

The key-value store the lock guard arbitrates through.

Any object with these three coroutines can back a LockGuard:

    set_if_absent(key, value, ttl) -> bool    SET key value NX PX ttl
    extend(key, ttl) -> bool                  PEXPIRE key ttl
    compare_and_delete(key, expected) -> int  DEL key iff GET key == expected

``RedisLockStore`` implements them over ``redis.asyncio``. Release runs as a
registered Lua script so the compare and the delete happen in one store-side
step; a client-side GET followed by DEL could delete a lock that expired and
was re-acquired by another holder in between.

Errors from Redis propagate to the caller. The guard decides what to absorb.

Example Usage:
    ```python
    store = RedisLockStore.from_url("redis://localhost:6379/0")
    guard = LockGuard(store, "billing:nightly", retry_limit=3)
    await guard.run(do_nightly_billing)
    await store.close()
    ```
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

import redis.asyncio as redis_asyncio

from lockguard.config import LockGuardConfig

logger = logging.getLogger(__name__)


RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _to_millis(ttl_seconds: float) -> int:
    return max(1, int(round(ttl_seconds * 1000)))


@runtime_checkable
class LockStore(Protocol):
    """Store operations consumed by the lock guard."""

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        ...

    async def extend(self, key: str, ttl: float) -> bool:
        ...

    async def compare_and_delete(self, key: str, expected: str) -> int:
        ...


# =============================================================================
# Redis Backend
# =============================================================================

class RedisLockStore:
    """
    LockStore over an async Redis client.

    The client is not owned unless built through ``from_url`` / ``from_config``;
    ``close()`` only closes clients this store created.
    """

    def __init__(self, client: redis_asyncio.Redis, *, owns_client: bool = False):
        self._client = client
        self._owns_client = owns_client
        self._release_script = client.register_script(RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLockStore":
        client = redis_asyncio.from_url(url, **kwargs)
        return cls(client, owns_client=True)

    @classmethod
    def from_config(cls, config: Optional[LockGuardConfig] = None) -> "RedisLockStore":
        config = config or LockGuardConfig.from_env()
        kwargs = {}
        if config.redis_password:
            kwargs["password"] = config.redis_password
        return cls.from_url(config.build_redis_url(), **kwargs)

    @property
    def client(self) -> redis_asyncio.Redis:
        return self._client

    async def ping(self) -> bool:
        """Check connectivity. Returns False instead of raising."""
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.debug(f"[LockGuard] Redis ping failed: {e}")
            return False

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        result = await self._client.set(key, value, nx=True, px=_to_millis(ttl))
        return bool(result)

    async def extend(self, key: str, ttl: float) -> bool:
        result = await self._client.pexpire(key, _to_millis(ttl))
        return bool(result)

    async def compare_and_delete(self, key: str, expected: str) -> int:
        result = await self._release_script(keys=[key], args=[expected])
        return int(result or 0)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# =============================================================================
# Global Instance
# =============================================================================

_default_store: Optional[RedisLockStore] = None


def get_lock_store(config: Optional[LockGuardConfig] = None) -> RedisLockStore:
    """Get or create the process-wide Redis lock store."""
    global _default_store

    if _default_store is None:
        _default_store = RedisLockStore.from_config(config)
        logger.info("[LockGuard] Default Redis lock store created")

    return _default_store


async def close_lock_store() -> None:
    """Close and forget the process-wide Redis lock store."""
    global _default_store

    if _default_store is not None:
        store, _default_store = _default_store, None
        await store.close()
