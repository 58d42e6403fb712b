from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """A failure the API reports to the caller instead of a generic 500.

    Subclasses fix the HTTP ``status_code`` and the ``error_code`` placed in
    the error envelope. Codes in use:
    - unauthorized (401)
    - token_expired (401)
    - invalid_refresh_token (401)
    - validation_error (400)
    - not_found (404)
    - conflict (409)
    - upstream_error (500)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Input was rejected before any state changed."""
    status_code = 400
    error_code = "validation_error"


class InvalidRedirect(ValidationError):
    """Redirect URI is not on the allowlist."""


class UnsupportedProvider(ValidationError):
    """No identity provider is registered under the requested name."""


class AuthenticationError(ServiceError):
    """The caller could not be identified from its bearer token."""
    status_code = 401
    error_code = "unauthorized"


class MalformedCredential(AuthenticationError):
    """Bearer header, signature, or token structure is invalid."""


class ExpiredCredential(AuthenticationError):
    """Token signature is valid but the token is past expiry."""
    error_code = "token_expired"


class LoggedOutCredential(AuthenticationError):
    """Token is valid but was revoked by a logout."""


class AlreadyLoggedOut(AuthenticationError):
    """Logout was already performed with this token."""


class NoActiveSession(AuthenticationError):
    """No refresh record is stored for the token's owner."""
    error_code = "invalid_refresh_token"


class RefreshMismatch(AuthenticationError):
    """Presented refresh token is not the user's current one."""
    error_code = "invalid_refresh_token"


class NotFoundError(ServiceError):
    """Resource does not exist for the calling user."""
    status_code = 404
    error_code = "not_found"


class ServerError(ServiceError):
    """Failure on our side or a dependency's."""
    status_code = 500
    error_code = "server_error"


class UpstreamAuthError(ServerError):
    """Identity provider rejected the exchange or could not be reached."""
    error_code = "upstream_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidRedirect",
    "UnsupportedProvider",
    "AuthenticationError",
    "MalformedCredential",
    "ExpiredCredential",
    "LoggedOutCredential",
    "AlreadyLoggedOut",
    "NoActiveSession",
    "RefreshMismatch",
    "NotFoundError",
    "ServerError",
    "UpstreamAuthError",
]
