from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from account.logging import get_logger
from account.storage.errors import EntryNotFound, StoreError, StoreTimeout

logger = get_logger(__name__)


class RedisTokenStore:
    """Refresh token revocation entries kept in Redis.

    Each live refresh token has one key ``account:refresh:{uid}:{token_id}``
    expiring with the token, and is a member of the per-user sorted set
    ``account:refresh_index:{uid}`` scored by its expiry time. Members whose
    score has passed are pruned on every write, so abandoned sessions do not
    accumulate. Every operation is a single MULTI/EXEC transaction or Lua
    script, so a cancelled call never leaves a partial write behind.

    The ``{uid}`` part of both keys is a Redis Cluster hash tag: all keys of
    one user live in the same slot, which the delete-all script relies on.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds

    _DELETE_ALL_SCRIPT = """
local ids = redis.call('ZRANGE', KEYS[1], 0, -1)
local removed = 0
for _, id in ipairs(ids) do
  removed = removed + redis.call('DEL', ARGV[1] .. id)
end
redis.call('DEL', KEYS[1])
return removed
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis_url = redis_url
        self._clock = clock
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._delete_all = self.client.register_script(self._DELETE_ALL_SCRIPT)

    @staticmethod
    def _entry_prefix(user_id: str) -> str:
        return f"account:refresh:{{{user_id}}}:"

    @classmethod
    def _entry_key(cls, user_id: str, token_id: str) -> str:
        return f"{cls._entry_prefix(user_id)}{token_id}"

    @staticmethod
    def _index_key(user_id: str) -> str:
        return f"account:refresh_index:{{{user_id}}}"

    @staticmethod
    def _ttl_seconds(ttl: timedelta) -> int:
        """Whole seconds for Redis EX, clamped to at least 1."""
        return max(1, int(ttl.total_seconds()))

    def _resolve_timeout(self, timeout: Optional[float]) -> float:
        if timeout is None:
            return self.DEFAULT_OPERATION_TIMEOUT
        if timeout <= 0:
            raise StoreTimeout("deadline already passed before store call")
        return timeout

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        timeout: Optional[float],
    ) -> Any:
        bound = self._resolve_timeout(timeout)
        try:
            return await asyncio.wait_for(call(), bound)
        except asyncio.TimeoutError as exc:
            logger.warning("revocation_store_timeout", operation=operation, timeout=bound)
            raise StoreTimeout(f"{operation} timed out after {bound}s") from exc
        except RedisError as exc:
            logger.error(
                "revocation_store_error",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreError(f"{operation} failed: {exc}") from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def set(
        self,
        user_id: str,
        token_id: str,
        ttl: timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        ttl_s = self._ttl_seconds(ttl)

        async def _set() -> None:
            now = self._clock()
            index = self._index_key(user_id)
            pipe = self.client.pipeline()
            pipe.set(self._entry_key(user_id, token_id), "1", ex=ttl_s)
            pipe.zadd(index, {token_id: now + ttl_s})
            pipe.zremrangebyscore(index, "-inf", now)
            # the newest entry outlives every older one under a fixed lifetime
            pipe.expire(index, ttl_s)
            await pipe.execute()

        await self._run("set", _set, timeout)

    async def delete_one(
        self, user_id: str, token_id: str, *, timeout: Optional[float] = None
    ) -> None:
        async def _delete() -> int:
            pipe = self.client.pipeline()
            pipe.delete(self._entry_key(user_id, token_id))
            pipe.zrem(self._index_key(user_id), token_id)
            deleted, _ = await pipe.execute()
            return int(deleted)

        deleted = await self._run("delete_one", _delete, timeout)
        if not deleted:
            raise EntryNotFound(user_id, token_id)

    async def delete_all(self, user_id: str, *, timeout: Optional[float] = None) -> int:
        async def _delete_all() -> int:
            removed = await self._delete_all(
                keys=[self._index_key(user_id)],
                args=[self._entry_prefix(user_id)],
            )
            return int(removed or 0)

        return await self._run("delete_all", _delete_all, timeout)

    async def close(self) -> None:
        """Close the Redis connection pool on shutdown."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
