from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from sessionkit.config import Settings
from sessionkit.logging import get_logger
from sessionkit.service.errors import (
    AlreadyLoggedOut,
    InvalidRedirect,
    LoggedOutCredential,
    MalformedCredential,
    NoActiveSession,
    RefreshMismatch,
)
from sessionkit.service.identity import IdentityResolver
from sessionkit.service.token_stores import RefreshStore, RevocationStore
from sessionkit.service.tokens import TokenPair, TokenSigner
from sessionkit.storage.models import User

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class AuthContext:
    user_id: str
    jti: str
    expires_at: int


@dataclass
class LoginResult:
    user: User
    is_new: bool
    tokens: TokenPair

    @property
    def login_type(self) -> str:
        return "registration" if self.is_new else "login"


def extract_bearer(header: Optional[str]) -> str:
    """Return the token from an ``Authorization`` header.

    The scheme must be the literal ``Bearer `` prefix; anything else is malformed.
    """
    if not header or not header.startswith(BEARER_PREFIX):
        raise MalformedCredential("missing bearer token")
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise MalformedCredential("missing bearer token")
    return token


class AuthService:
    """Login, logout, refresh and redirect flows over one single-session-per-user model."""

    def __init__(
        self,
        settings: Settings,
        signer: TokenSigner,
        identity: IdentityResolver,
        revocations: RevocationStore,
        refresh_tokens: RefreshStore,
    ) -> None:
        self.settings = settings
        self.signer = signer
        self.identity = identity
        self.revocations = revocations
        self.refresh_tokens = refresh_tokens
        self.logger = logger

    def _check_redirect(self, redirect_uri: str) -> str:
        if redirect_uri not in self.settings.oauth_redirect_allowlist:
            self.logger.warning("redirect_uri_rejected", redirect_uri=redirect_uri)
            raise InvalidRedirect(
                "redirect URI is not allowed", detail={"redirect_uri": redirect_uri}
            )
        return redirect_uri

    async def login(self, provider: str, code: str, redirect_uri: str) -> LoginResult:
        self._check_redirect(redirect_uri)
        user, is_new = await self.identity.resolve(provider, code, redirect_uri)
        tokens = self.signer.issue_pair(user.id)
        # Overwrites any refresh token from an earlier session
        await self.refresh_tokens.save(
            user.id,
            tokens.refresh_token,
            self.signer.seconds_until(tokens.refresh_expires_at),
        )
        self.logger.info(
            "login_completed", provider=provider, user_id=user.id, is_new=is_new
        )
        return LoginResult(user=user, is_new=is_new, tokens=tokens)

    async def logout(self, authorization: Optional[str]) -> str:
        """Revoke the presented access token and end the user's session.

        Returns the id of the user that was logged out.
        """
        token = extract_bearer(authorization)
        if await self.revocations.is_revoked(token):
            raise AlreadyLoggedOut("already logged out")
        claims = self.signer.verify(token)
        # Two logouts racing past the check above: the denylist insert picks one
        if not await self.revocations.revoke(token, self.signer.remaining_lifetime(claims)):
            self.logger.info("logout_rejected", reason="revoked", user_id=claims.subject)
            raise AlreadyLoggedOut("already logged out")
        await self.refresh_tokens.clear(claims.subject)
        self.logger.info("logout_completed", user_id=claims.subject, jti=claims.jti)
        return claims.subject

    async def refresh(
        self, authorization: Optional[str], refresh_token: Optional[str]
    ) -> TokenPair:
        token = extract_bearer(authorization)
        # The access token may legitimately have expired by now
        claims = self.signer.verify_ignoring_expiry(token)
        if await self.revocations.is_revoked(token):
            self.logger.warning("refresh_rejected", reason="revoked", user_id=claims.subject)
            raise LoggedOutCredential("token has been logged out")

        stored = await self.refresh_tokens.get(claims.subject)
        if stored is None:
            self.logger.warning("refresh_rejected", reason="no_session", user_id=claims.subject)
            raise NoActiveSession("no active session")
        presented = refresh_token or ""
        if not hmac.compare_digest(stored.encode(), presented.encode()):
            self.logger.warning("refresh_rejected", reason="mismatch", user_id=claims.subject)
            raise RefreshMismatch("refresh token does not match")

        tokens = self.signer.issue_pair(claims.subject)
        rotated = await self.refresh_tokens.rotate(
            claims.subject,
            stored,
            tokens.refresh_token,
            self.signer.seconds_until(tokens.refresh_expires_at),
        )
        if not rotated:
            self.logger.warning(
                "refresh_rejected", reason="concurrent_rotation", user_id=claims.subject
            )
            raise RefreshMismatch("refresh token does not match")
        self.logger.info("refresh_completed", user_id=claims.subject)
        return tokens

    def login_redirect(self, redirect_uri: str, provider: Optional[str] = None) -> str:
        """Build the provider authorization URL for an allowlisted redirect URI."""
        self._check_redirect(redirect_uri)
        name = provider or self.settings.default_oauth_provider
        return self.identity.provider(name).authorization_url(redirect_uri)

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve the caller of a protected endpoint from its access token."""
        token = extract_bearer(authorization)
        if await self.revocations.is_revoked(token):
            raise LoggedOutCredential("token has been logged out")
        claims = self.signer.verify(token)
        return AuthContext(
            user_id=claims.subject, jti=claims.jti, expires_at=claims.expires_at
        )
