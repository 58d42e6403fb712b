from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionkit.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REDIRECT_ALLOWLIST = [
    "http://localhost:3000/login/oauth2/code/kakao",
    "https://ckok.kr/login/oauth2/code/kakao",
]


def env_field(default: Any, env: str, **kwargs: Any):
    """``Field`` tagged with the environment variable that overrides it."""
    schema_extra = dict(kwargs.pop("json_schema_extra", None) or {})
    schema_extra["env"] = env
    return Field(default, json_schema_extra=schema_extra, **kwargs)


def _env_name(name: str, info: Any) -> str:
    schema_extra = info.json_schema_extra
    if isinstance(schema_extra, dict) and schema_extra.get("env"):
        return schema_extra["env"]
    return name.upper()


class Settings(BaseModel):
    """Runtime settings for the session service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/sessionkit", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/sessionkit", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and allow runtime resets.",
    )
    # Signing
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("sessionkit", "JWT_ISSUER")
    jwt_audience: str = env_field("sessionkit-clients", "JWT_AUDIENCE")
    access_token_ttl_minutes: int = env_field(
        30,
        "ACCESS_TOKEN_TTL_MINUTES",
        description="Lifetime of access tokens in minutes",
    )
    refresh_token_ttl_minutes: int = env_field(
        14 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Lifetime of refresh tokens (and their stored record) in minutes",
    )
    # OAuth settings
    oauth_redirect_allowlist: list[str] = env_field(
        list(DEFAULT_REDIRECT_ALLOWLIST),
        "OAUTH_REDIRECT_ALLOWLIST",
        description="Comma-separated redirect URIs accepted verbatim for login",
    )
    default_oauth_provider: str = env_field("kakao", "DEFAULT_OAUTH_PROVIDER")
    oauth_kakao_client_id: str | None = env_field(None, "OAUTH_KAKAO_CLIENT_ID")
    oauth_kakao_client_secret: str | None = env_field(None, "OAUTH_KAKAO_CLIENT_SECRET")
    oauth_google_client_id: str | None = env_field(None, "OAUTH_GOOGLE_CLIENT_ID")
    oauth_google_client_secret: str | None = env_field(None, "OAUTH_GOOGLE_CLIENT_SECRET")
    oauth_github_client_id: str | None = env_field(None, "OAUTH_GITHUB_CLIENT_ID")
    oauth_github_client_secret: str | None = env_field(None, "OAUTH_GITHUB_CLIENT_SECRET")
    oauth_http_timeout_seconds: float = env_field(10.0, "OAUTH_HTTP_TIMEOUT_SECONDS")
    # HTTP surface
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    cors_allow_credentials: bool = env_field(True, "CORS_ALLOW_CREDENTIALS")
    enable_hsts: bool = env_field(False, "ENABLE_HSTS")
    build_sha: str = env_field("dev", "BUILD_SHA")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        """Read each field from its variable in the process environment, then `.env`."""
        sources = (os.environ, dotenv_values(".env"))
        values: dict[str, Any] = {}
        for name, info in cls.model_fields.items():
            env_name = _env_name(name, info)
            found = next((src[env_name] for src in sources if env_name in src), None)
            if found is not None:
                values[name] = found
        return cls(**values)

    @field_validator("oauth_redirect_allowlist", "cors_allow_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("access_token_ttl_minutes", "refresh_token_ttl_minutes")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token TTL must be positive")
        return value

    @field_validator("default_oauth_provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return value.strip().lower()

    # Runs before type coercion so an unset secret (None) reaches the generator
    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: Any) -> Any:
        if value:
            return value
        return _shared_jwt_secret(Path(os.getenv("SHARED_FS_ROOT", "/srv/sessionkit")))


_MIN_SECRET_LENGTH = 32


def _shared_jwt_secret(fs_root: Path) -> str:
    """Return the signing secret stored under ``fs_root``, creating it on first use.

    Every process sharing the directory signs with the same key, and tokens
    survive restarts.
    """
    secret_path = fs_root / ".jwt_secret"
    if secret_path.is_file() and not secret_path.is_symlink():
        try:
            stored = secret_path.read_text().strip()
        except OSError as exc:
            logger.error("jwt_secret_read_failed", error=str(exc), path=str(secret_path))
        else:
            if len(stored) >= _MIN_SECRET_LENGTH:
                return stored
            logger.warning("jwt_secret_too_short", path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        # Readers see either the old file or the complete new one
        fd, tmp_name = tempfile.mkstemp(dir=fs_root, prefix=".jwt_secret_")
        with os.fdopen(fd, "w") as handle:
            handle.write(generated)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, secret_path)
    except OSError as exc:
        logger.error("jwt_secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            "cannot persist a JWT secret; set JWT_SECRET or make SHARED_FS_ROOT writable"
        ) from exc
    logger.info("jwt_secret_generated", path=str(secret_path))
    return generated


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded from the environment on first use."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


def reset_settings_cache() -> None:
    global _settings_cache
    _settings_cache = None
