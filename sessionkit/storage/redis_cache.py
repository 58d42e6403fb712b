from __future__ import annotations

import math
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

_DENYLIST_PREFIX = "auth:access:denylist:"
_REFRESH_PREFIX = "auth:refresh:"


def _ttl_millis(ttl_seconds: float) -> int:
    """Convert a TTL to whole milliseconds, rounding up so entries never expire early."""

    return max(0, math.ceil(ttl_seconds * 1000))


class RedisCache:
    """Redis-backed storage for revoked access tokens and per-user refresh tokens."""

    # Compare-and-swap for refresh rotation: only overwrite the stored token if it
    # still equals the one the caller validated.
    _SWAP_REFRESH_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current ~= ARGV[1] then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'PX', tonumber(ARGV[3]))
return 1
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._swap_refresh = self.client.register_script(self._SWAP_REFRESH_SCRIPT)

    def verify_connection(self) -> None:
        # Short-lived sync client so the async client is not bound to a temporary loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def denylist_access_token(self, token_key: str, ttl_seconds: float) -> bool:
        """Denylist a token digest until the token would expire.

        Returns False if the digest was already denylisted (SET NX lost).
        """
        ttl_ms = _ttl_millis(ttl_seconds)
        if ttl_ms <= 0:
            return True
        added = await self.client.set(
            f"{_DENYLIST_PREFIX}{token_key}", "1", px=ttl_ms, nx=True
        )
        return bool(added)

    async def is_access_token_denylisted(self, token_key: str) -> bool:
        return bool(await self.client.exists(f"{_DENYLIST_PREFIX}{token_key}"))

    async def set_refresh_token(
        self, user_id: str, token: str, ttl_seconds: float
    ) -> None:
        ttl_ms = _ttl_millis(ttl_seconds)
        if ttl_ms <= 0:
            await self.client.delete(f"{_REFRESH_PREFIX}{user_id}")
            return
        await self.client.set(f"{_REFRESH_PREFIX}{user_id}", token, px=ttl_ms)

    async def get_refresh_token(self, user_id: str) -> Optional[str]:
        return await self.client.get(f"{_REFRESH_PREFIX}{user_id}")

    async def delete_refresh_token(self, user_id: str) -> None:
        await self.client.delete(f"{_REFRESH_PREFIX}{user_id}")

    async def swap_refresh_token(
        self, user_id: str, expected: str, token: str, ttl_seconds: float
    ) -> bool:
        result = await self._swap_refresh(
            keys=[f"{_REFRESH_PREFIX}{user_id}"],
            args=[expected, token, max(1, _ttl_millis(ttl_seconds))],
        )
        return bool(int(result))

    async def close(self) -> None:
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Blocking-client twin of RedisCache with the same awaitable interface.

    Chosen in TEST_MODE, where TestClient runs requests on its own loop and an
    asyncio connection pool would end up bound to the wrong one.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._swap_refresh = self.client.register_script(
            RedisCache._SWAP_REFRESH_SCRIPT
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def denylist_access_token(self, token_key: str, ttl_seconds: float) -> bool:
        ttl_ms = _ttl_millis(ttl_seconds)
        if ttl_ms <= 0:
            return True
        return bool(
            self.client.set(f"{_DENYLIST_PREFIX}{token_key}", "1", px=ttl_ms, nx=True)
        )

    async def is_access_token_denylisted(self, token_key: str) -> bool:
        return bool(self.client.exists(f"{_DENYLIST_PREFIX}{token_key}"))

    async def set_refresh_token(
        self, user_id: str, token: str, ttl_seconds: float
    ) -> None:
        ttl_ms = _ttl_millis(ttl_seconds)
        if ttl_ms <= 0:
            self.client.delete(f"{_REFRESH_PREFIX}{user_id}")
            return
        self.client.set(f"{_REFRESH_PREFIX}{user_id}", token, px=ttl_ms)

    async def get_refresh_token(self, user_id: str) -> Optional[str]:
        return self.client.get(f"{_REFRESH_PREFIX}{user_id}")

    async def delete_refresh_token(self, user_id: str) -> None:
        self.client.delete(f"{_REFRESH_PREFIX}{user_id}")

    async def swap_refresh_token(
        self, user_id: str, expected: str, token: str, ttl_seconds: float
    ) -> bool:
        result = self._swap_refresh(
            keys=[f"{_REFRESH_PREFIX}{user_id}"],
            args=[expected, token, max(1, _ttl_millis(ttl_seconds))],
        )
        return bool(int(result))

    async def close(self) -> None:
        self.client.close()
