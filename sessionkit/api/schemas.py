from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from sessionkit.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "token_expired",
    "invalid_refresh_token",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "upstream_error",
    "server_error",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid.uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format shared by every JSON response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class OAuthLoginRequest(BaseModel):
    """Authorization code handed back by the provider, plus the redirect it was issued for."""

    model_config = ConfigDict(populate_by_name=True)

    authorization_code: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        validation_alias=AliasChoices("authorization_code", "authorizationCode"),
    )
    redirect_uri: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        validation_alias=AliasChoices("redirect_uri", "redirectUri"),
    )


class TokenRefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(
        ...,
        max_length=4096,
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
    )


class UserResponse(BaseModel):
    id: str
    nickname: Optional[str] = None
    email: Optional[str] = None
    profile_image: Optional[str] = None
    role: str = "user"
    provider: str
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: int


class LoginResponse(TokenResponse):
    login_type: Literal["registration", "login"]
    user: UserResponse


class LogoutResponse(BaseModel):
    message: str = "logged out"


class SnsPlatformRequest(BaseModel):
    """Body for adding or editing a profile platform.

    ``verified`` may be sent by clients but is ignored; only the server sets it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    platform_type: str = Field(
        ...,
        min_length=1,
        max_length=32,
        validation_alias=AliasChoices("platform_type", "platformType"),
    )
    account_url: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        validation_alias=AliasChoices("account_url", "accountUrl"),
    )
    account_name: Optional[str] = Field(
        None,
        max_length=255,
        validation_alias=AliasChoices("account_name", "accountName"),
    )

    @field_validator("platform_type", "account_url")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class PlatformResponse(BaseModel):
    id: int
    platform_type: str
    account_url: str
    account_name: Optional[str] = None
    verified: bool = False
