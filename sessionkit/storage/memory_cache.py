from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from sessionkit.storage.redis_cache import _ttl_millis


class MemoryTokenCache:
    """Process-local stand-in for RedisCache when Redis is unavailable.

    Entries carry an absolute expiry on the supplied clock and are dropped lazily
    on access. Every operation runs under one lock, so single-key writes are
    linearizable within the process.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._denylist: Dict[str, float] = {}
        self._refresh: Dict[str, Tuple[str, float]] = {}

    def verify_connection(self) -> None:
        return None

    def _expiry(self, ttl_seconds: float) -> float:
        return self._clock() + _ttl_millis(ttl_seconds) / 1000

    def _live_refresh(self, user_id: str) -> Optional[str]:
        entry = self._refresh.get(user_id)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at <= self._clock():
            del self._refresh[user_id]
            return None
        return token

    def _live_denylisted(self, token_key: str) -> bool:
        expires_at = self._denylist.get(token_key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._denylist[token_key]
            return False
        return True

    async def denylist_access_token(self, token_key: str, ttl_seconds: float) -> bool:
        if _ttl_millis(ttl_seconds) <= 0:
            return True
        with self._lock:
            if self._live_denylisted(token_key):
                return False
            self._denylist[token_key] = self._expiry(ttl_seconds)
            return True

    async def is_access_token_denylisted(self, token_key: str) -> bool:
        with self._lock:
            return self._live_denylisted(token_key)

    async def set_refresh_token(
        self, user_id: str, token: str, ttl_seconds: float
    ) -> None:
        with self._lock:
            if _ttl_millis(ttl_seconds) <= 0:
                self._refresh.pop(user_id, None)
                return
            self._refresh[user_id] = (token, self._expiry(ttl_seconds))

    async def get_refresh_token(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._live_refresh(user_id)

    async def delete_refresh_token(self, user_id: str) -> None:
        with self._lock:
            self._refresh.pop(user_id, None)

    async def swap_refresh_token(
        self, user_id: str, expected: str, token: str, ttl_seconds: float
    ) -> bool:
        with self._lock:
            if self._live_refresh(user_id) != expected:
                return False
            self._refresh[user_id] = (token, self._expiry(max(ttl_seconds, 0.001)))
            return True

    async def close(self) -> None:
        with self._lock:
            self._denylist.clear()
            self._refresh.clear()
