from __future__ import annotations

import hashlib
from typing import Optional, Protocol


class TokenCache(Protocol):
    """Key-value backend with TTL support shared by both token stores."""

    async def denylist_access_token(self, token_key: str, ttl_seconds: float) -> bool: ...

    async def is_access_token_denylisted(self, token_key: str) -> bool: ...

    async def set_refresh_token(
        self, user_id: str, token: str, ttl_seconds: float
    ) -> None: ...

    async def get_refresh_token(self, user_id: str) -> Optional[str]: ...

    async def delete_refresh_token(self, user_id: str) -> None: ...

    async def swap_refresh_token(
        self, user_id: str, expected: str, token: str, ttl_seconds: float
    ) -> bool: ...


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class RevocationStore:
    """Access tokens rejected ahead of their natural expiry, keyed by token digest."""

    def __init__(self, cache: TokenCache) -> None:
        self.cache = cache

    async def revoke(self, token: str, ttl_seconds: float) -> bool:
        """Denylist ``token`` for ``ttl_seconds``.

        Returns False if it was already revoked. A token past expiry needs no
        entry and reports True.
        """
        if ttl_seconds <= 0:
            return True
        return await self.cache.denylist_access_token(token_digest(token), ttl_seconds)

    async def is_revoked(self, token: str) -> bool:
        return await self.cache.is_access_token_denylisted(token_digest(token))


class RefreshStore:
    """At most one live refresh token per user."""

    def __init__(self, cache: TokenCache) -> None:
        self.cache = cache

    async def save(self, user_id: str, refresh_token: str, ttl_seconds: float) -> None:
        """Unconditionally replace the user's refresh token."""
        await self.cache.set_refresh_token(user_id, refresh_token, ttl_seconds)

    async def get(self, user_id: str) -> Optional[str]:
        return await self.cache.get_refresh_token(user_id)

    async def clear(self, user_id: str) -> None:
        await self.cache.delete_refresh_token(user_id)

    async def rotate(
        self, user_id: str, expected: str, refresh_token: str, ttl_seconds: float
    ) -> bool:
        """Replace the stored token only if it still equals ``expected``.

        Returns False when another writer got there first.
        """
        return await self.cache.swap_refresh_token(
            user_id, expected, refresh_token, ttl_seconds
        )
