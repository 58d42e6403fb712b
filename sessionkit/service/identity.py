from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol, Tuple
from urllib.parse import urlencode

import httpx

from sessionkit.config import Settings
from sessionkit.logging import get_logger
from sessionkit.service.errors import UnsupportedProvider, UpstreamAuthError
from sessionkit.storage.errors import ConstraintViolation
from sessionkit.storage.models import ProviderProfile, User

# OAuth provider configurations
OAUTH_PROVIDERS = {
    "kakao": {
        "auth_url": "https://kauth.kakao.com/oauth/authorize",
        "token_url": "https://kauth.kakao.com/oauth/token",
        "userinfo_url": "https://kapi.kakao.com/v2/user/me",
        "scope": None,
    },
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "scope": "read:user user:email",
    },
}

logger = get_logger(__name__)


class OAuthProvider(Protocol):
    name: str

    def authorization_url(self, redirect_uri: str, state: Optional[str] = None) -> str: ...

    async def exchange_code(self, code: str, redirect_uri: str) -> str: ...

    async def fetch_profile(self, provider_token: str) -> ProviderProfile: ...


class UserStore(Protocol):
    def create_user(
        self,
        provider: str,
        provider_uid: str,
        *,
        nickname: Optional[str] = None,
        email: Optional[str] = None,
        profile_image: Optional[str] = None,
        role: str = "user",
    ) -> User: ...

    def get_user_by_provider(self, provider: str, provider_uid: str) -> Optional[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...


def parse_oauth_userinfo(provider: str, userinfo: dict) -> ProviderProfile:
    """Parse user info from an OAuth provider into a ``ProviderProfile``."""
    if provider == "kakao":
        account = userinfo.get("kakao_account") or {}
        profile = account.get("profile") or {}
        properties = userinfo.get("properties") or {}
        uid, nickname = userinfo.get("id"), profile.get("nickname") or properties.get("nickname")
        email = account.get("email")
        picture = profile.get("profile_image_url") or properties.get("profile_image")
    elif provider == "google":
        uid, nickname = userinfo.get("id"), userinfo.get("name")
        email, picture = userinfo.get("email"), userinfo.get("picture")
    elif provider == "github":
        uid, nickname = userinfo.get("id"), userinfo.get("login")
        email, picture = userinfo.get("email"), userinfo.get("avatar_url")
    else:
        uid, nickname = userinfo.get("id") or userinfo.get("sub"), userinfo.get("name")
        email, picture = userinfo.get("email"), userinfo.get("picture")
    if uid is None or uid == "":
        raise UpstreamAuthError(
            "identity provider returned no user id", detail={"provider": provider}
        )
    return ProviderProfile(
        provider_uid=str(uid), nickname=nickname, email=email, profile_image=picture
    )


class HttpOAuthProvider:
    """Authorization-code exchange against a provider's token and userinfo endpoints."""

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any],
        client_id: Optional[str],
        client_secret: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.name = name
        self.config = config
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._transport = transport

    def _require_client_id(self) -> str:
        if not self.client_id:
            logger.warning("oauth_not_configured", provider=self.name)
            raise UpstreamAuthError(
                f"OAuth provider {self.name} is not configured",
                detail={"provider": self.name},
            )
        return self.client_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=False, transport=self._transport
        )

    def authorization_url(self, redirect_uri: str, state: Optional[str] = None) -> str:
        params = {
            "client_id": self._require_client_id(),
            "redirect_uri": redirect_uri,
            "response_type": "code",
        }
        if self.config.get("scope"):
            params["scope"] = self.config["scope"]
        if state:
            params["state"] = state
        return f"{self.config['auth_url']}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        token_data = {
            "grant_type": "authorization_code",
            "client_id": self._require_client_id(),
            "redirect_uri": redirect_uri,
            "code": code,
        }
        if self.client_secret:
            token_data["client_secret"] = self.client_secret
        try:
            async with self._client() as client:
                response = await client.post(
                    self.config["token_url"],
                    data=token_data,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                token_result = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_exchange_http_error",
                provider=self.name,
                status_code=exc.response.status_code,
            )
            raise UpstreamAuthError(
                "identity provider rejected the authorization code",
                detail={"provider": self.name},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_exchange_error", provider=self.name, error=str(exc))
            raise UpstreamAuthError(
                "identity provider is unavailable", detail={"provider": self.name}
            ) from exc

        access_token = (
            token_result.get("access_token") if isinstance(token_result, dict) else None
        )
        if not access_token:
            logger.error("oauth_no_access_token", provider=self.name)
            raise UpstreamAuthError(
                "identity provider returned no access token",
                detail={"provider": self.name},
            )
        return access_token

    async def fetch_profile(self, provider_token: str) -> ProviderProfile:
        headers = {"Authorization": f"Bearer {provider_token}"}
        if self.name == "github":
            headers["Accept"] = "application/vnd.github+json"
        try:
            async with self._client() as client:
                response = await client.get(self.config["userinfo_url"], headers=headers)
                response.raise_for_status()
                userinfo = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_userinfo_error", provider=self.name, error=str(exc))
            raise UpstreamAuthError(
                "could not load the user profile from the identity provider",
                detail={"provider": self.name},
            ) from exc
        if not isinstance(userinfo, dict):
            logger.error(
                "oauth_userinfo_invalid_format", provider=self.name, type=str(type(userinfo))
            )
            raise UpstreamAuthError(
                "identity provider returned an invalid profile",
                detail={"provider": self.name},
            )
        return parse_oauth_userinfo(self.name, userinfo)


def build_oauth_providers(
    settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, HttpOAuthProvider]:
    """Instantiate every registered provider with its configured credentials."""
    providers: Dict[str, HttpOAuthProvider] = {}
    for name, config in OAUTH_PROVIDERS.items():
        providers[name] = HttpOAuthProvider(
            name,
            config,
            getattr(settings, f"oauth_{name}_client_id", None),
            getattr(settings, f"oauth_{name}_client_secret", None),
            timeout=settings.oauth_http_timeout_seconds,
            transport=transport,
        )
    return providers


class IdentityResolver:
    """Maps a provider identity to an internal user, creating it on first sight."""

    def __init__(self, store: UserStore, providers: Mapping[str, OAuthProvider]) -> None:
        self.store = store
        self.providers = dict(providers)

    def provider(self, name: str) -> OAuthProvider:
        try:
            return self.providers[name]
        except KeyError:
            raise UnsupportedProvider(
                f"unsupported identity provider: {name}", detail={"provider": name}
            ) from None

    async def resolve(
        self, provider_name: str, code: str, redirect_uri: str
    ) -> Tuple[User, bool]:
        provider = self.provider(provider_name)
        provider_token = await provider.exchange_code(code, redirect_uri)
        profile = await provider.fetch_profile(provider_token)
        return self.find_or_create_user(provider_name, profile)

    def find_or_create_user(
        self, provider: str, profile: ProviderProfile
    ) -> Tuple[User, bool]:
        """Return ``(user, is_new)``; repeated calls yield the same user."""
        existing = self.store.get_user_by_provider(provider, profile.provider_uid)
        if existing:
            return existing, False
        try:
            user = self.store.create_user(
                provider,
                profile.provider_uid,
                nickname=profile.nickname,
                email=profile.email,
                profile_image=profile.profile_image,
            )
        except ConstraintViolation:
            # Lost a race with a concurrent first login for the same identity
            existing = self.store.get_user_by_provider(provider, profile.provider_uid)
            if existing is None:
                raise
            return existing, False
        logger.info("user_registered", provider=provider, user_id=user.id)
        return user, True
