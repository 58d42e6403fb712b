from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sessionkit.api.error_handling import register_exception_handlers
from sessionkit.api.routes import router
from sessionkit.config import Settings
from sessionkit.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"
__build__ = _settings.build_sha

# Seconds a single dependency ping may take before /healthz reports it down
PING_TIMEOUT_SECONDS = 3

# Used when CORS_ALLOW_ORIGINS is empty; credentials rule out "*"
_DEV_ORIGINS = ["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"]

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "API-Version": __version__,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    from sessionkit.service.runtime import get_runtime

    get_runtime()
    yield
    try:
        await get_runtime().close()
    except Exception as exc:
        logger.error("runtime_close_failed", error=str(exc))
    else:
        logger.info("runtime_closed")


app = FastAPI(title="sessionkit", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins or _DEV_ORIGINS,
    allow_credentials=_settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["API-Version", "X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Reuse the caller's X-Request-ID, or mint one, and echo it back."""
    request_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    path = request.url.path
    # Responses carry bearer tokens
    if path.startswith("/api/") or path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store")
    if _settings.enable_hsts and request.url.scheme == "https":
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


register_exception_handlers(app)
app.include_router(router)


async def _ping(component: str, check: Callable[[], None]) -> bool:
    try:
        await asyncio.wait_for(asyncio.to_thread(check), PING_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("health_ping_timeout", component=component, timeout=PING_TIMEOUT_SECONDS)
        return False
    except Exception as exc:
        logger.error("health_ping_failed", component=component, error=str(exc))
        return False
    return True


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    from sessionkit.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}

    verify_store = getattr(runtime.store, "verify_connection", None)
    if verify_store is None:
        checks["database"] = {"status": "healthy", "type": "memory"}
    else:
        store_up = await _ping("database", verify_store)
        checks["database"] = {"status": "healthy" if store_up else "unhealthy"}

    if runtime.cache is None:
        checks["redis"] = {"status": "not_configured"}
    else:
        cache_up = await _ping("redis", runtime.cache.verify_connection)
        checks["redis"] = {"status": "healthy" if cache_up else "unhealthy"}

    healthy = all(c["status"] != "unhealthy" for c in checks.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "build": __build__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
