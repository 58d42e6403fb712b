from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from sessionkit.config import Settings, get_settings, reset_settings_cache
from sessionkit.logging import get_logger
from sessionkit.service.auth import AuthService
from sessionkit.service.identity import IdentityResolver, build_oauth_providers
from sessionkit.service.platforms import PlatformService
from sessionkit.service.token_stores import RefreshStore, RevocationStore
from sessionkit.service.tokens import TokenSigner
from sessionkit.storage.memory import MemoryStore
from sessionkit.storage.memory_cache import MemoryTokenCache
from sessionkit.storage.postgres import PostgresStore
from sessionkit.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)

RedisBackend = Union[RedisCache, SyncRedisCache]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in ``url`` with ``***`` so it can be logged."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    host = parsed.hostname or ""
    if parsed.port:
        host += f":{parsed.port}"
    userinfo = f"{parsed.username or ''}:***"
    return urlunparse(parsed._replace(netloc=f"{userinfo}@{host}"))


def _connect_redis(settings: Settings) -> tuple[Optional[RedisBackend], Optional[Exception]]:
    """Open and ping the configured Redis, returning ``(cache, error)``."""
    if not settings.redis_url:
        return None, None
    # TestClient drives the app from another thread, so tests use the blocking client
    backend_cls = SyncRedisCache if settings.test_mode else RedisCache
    try:
        cache = backend_cls(settings.redis_url)
        cache.verify_connection()
    except Exception as exc:
        return None, exc
    return cache, None


class Runtime:
    """Wires stores, caches and services once per process."""

    def __init__(self):
        self.settings = get_settings()
        store_kind = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_kind,
            test_mode=self.settings.test_mode,
        )

        try:
            if self.settings.use_memory_store:
                self.store = MemoryStore(fs_root=self.settings.shared_fs_root)
            else:
                self.store = PostgresStore(self.settings.database_url)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_kind,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache, redis_error = _connect_redis(self.settings)
        if self.cache is None:
            self._allow_memory_cache(redis_error)
        token_cache = self.cache or MemoryTokenCache()

        self.signer = TokenSigner(self.settings)
        self.revocations = RevocationStore(token_cache)
        self.refresh_tokens = RefreshStore(token_cache)
        self.identity = IdentityResolver(self.store, build_oauth_providers(self.settings))
        self.auth = AuthService(
            self.settings,
            self.signer,
            self.identity,
            self.revocations,
            self.refresh_tokens,
        )
        self.platforms = PlatformService(self.store)

        logger.info(
            "runtime_initialized",
            store_type=store_kind,
            redis_enabled=self.cache is not None,
            providers=sorted(self.identity.providers),
        )

    def _allow_memory_cache(self, redis_error: Optional[Exception]) -> None:
        """Permit the in-process token cache, or refuse to start without Redis."""
        if self.settings.test_mode:
            mode = "TEST_MODE"
        elif self.settings.allow_redis_fallback_dev:
            mode = "ALLOW_REDIS_FALLBACK_DEV"
        else:
            raise RuntimeError(
                "token revocation and refresh rotation need Redis at REDIS_URL; "
                "set TEST_MODE or ALLOW_REDIS_FALLBACK_DEV to run on process memory"
            ) from redis_error
        logger.warning(
            "redis_disabled_fallback",
            mode=mode,
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process-wide Runtime, building it on first call."""
    global runtime
    if runtime is None:
        with _runtime_lock:
            if runtime is None:
                runtime = Runtime()
    return runtime


def _close_cache(cache: RedisBackend) -> None:
    if isinstance(cache, SyncRedisCache):
        cache.client.close()
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(cache.close())
    else:
        loop.create_task(cache.close())


def reset_runtime_for_tests() -> Runtime:
    """Rebuild settings and the runtime; refused outside TEST_MODE."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        if not get_settings().test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        previous, runtime = runtime, None
        if previous is not None and previous.cache is not None:
            try:
                _close_cache(previous.cache)
            except Exception as exc:
                logger.warning("runtime_cache_close_failed", error=str(exc))
        runtime = Runtime()
        return runtime
