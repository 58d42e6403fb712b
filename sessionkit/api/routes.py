from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import RedirectResponse

from sessionkit.api.schemas import (
    Envelope,
    LoginResponse,
    LogoutResponse,
    OAuthLoginRequest,
    PlatformResponse,
    SnsPlatformRequest,
    TokenRefreshRequest,
    TokenResponse,
    UserResponse,
)
from sessionkit.service.auth import AuthContext
from sessionkit.service.errors import NotFoundError, ValidationError
from sessionkit.service.runtime import get_runtime
from sessionkit.service.tokens import TokenPair

router = APIRouter(prefix="/api")


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


def _user_to_response(user) -> UserResponse:
    return UserResponse(
        id=user.id,
        nickname=user.nickname,
        email=user.email,
        profile_image=user.profile_image,
        role=user.role,
        provider=user.provider,
        created_at=user.created_at,
    )


def _platform_to_response(platform) -> PlatformResponse:
    return PlatformResponse(
        id=platform.id,
        platform_type=platform.platform_type,
        account_url=platform.account_url,
        account_name=platform.account_name,
        verified=platform.verified,
    )


def _tokens_to_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_at=tokens.expires_at,
    )


# Fixed paths are registered before the /auth/{provider} catch-all.
@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    await runtime.auth.logout(authorization)
    return Envelope(status="ok", data=LogoutResponse())


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(
    body: TokenRefreshRequest,
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(authorization, body.refresh_token)
    return Envelope(status="ok", data=_tokens_to_response(tokens))


@router.get("/auth/login-redirect", status_code=302, tags=["auth"])
async def login_redirect(
    redirect_uri: Optional[str] = Query(None, max_length=2048),
    redirect_uri_camel: Optional[str] = Query(None, alias="redirectUri", max_length=2048),
    provider: Optional[str] = Query(None, max_length=32),
):
    target = redirect_uri or redirect_uri_camel
    if not target:
        raise ValidationError("redirect_uri is required", detail={"field": "redirect_uri"})
    runtime = get_runtime()
    url = runtime.auth.login_redirect(target, provider)
    return RedirectResponse(url, status_code=302)


@router.post("/auth/{provider}", response_model=Envelope, tags=["auth"])
async def oauth_login(provider: str, body: OAuthLoginRequest):
    runtime = get_runtime()
    result = await runtime.auth.login(
        provider.lower(), body.authorization_code, body.redirect_uri
    )
    tokens = result.tokens
    return Envelope(
        status="ok",
        data=LoginResponse(
            login_type=result.login_type,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_at=tokens.expires_at,
            user=_user_to_response(result.user),
        ),
    )


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_me(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = runtime.store.get_user(principal.user_id)
    if not user:
        raise NotFoundError("user not found", detail={"user_id": principal.user_id})
    return Envelope(status="ok", data=_user_to_response(user))


@router.get("/users/platforms", response_model=Envelope, tags=["platforms"])
async def list_platforms(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    platforms = runtime.platforms.list_platforms(principal.user_id)
    return Envelope(
        status="ok", data=[_platform_to_response(p) for p in platforms]
    )


@router.post(
    "/users/platforms", response_model=Envelope, status_code=201, tags=["platforms"]
)
async def add_platform(
    body: SnsPlatformRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    platform = runtime.platforms.add_platform(
        principal.user_id, body.platform_type, body.account_url, body.account_name
    )
    return Envelope(status="ok", data=_platform_to_response(platform))


@router.get("/users/platforms/{platform_id}", response_model=Envelope, tags=["platforms"])
async def get_platform(platform_id: int, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    platform = runtime.platforms.get_platform(principal.user_id, platform_id)
    return Envelope(status="ok", data=_platform_to_response(platform))


@router.put("/users/platforms/{platform_id}", response_model=Envelope, tags=["platforms"])
async def update_platform(
    platform_id: int,
    body: SnsPlatformRequest,
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    # platform_type and verified are fixed once registered
    platform = runtime.platforms.update_platform(
        principal.user_id, platform_id, body.account_url, body.account_name
    )
    return Envelope(status="ok", data=_platform_to_response(platform))


@router.delete("/users/platforms/{platform_id}", response_model=Envelope, tags=["platforms"])
async def delete_platform(platform_id: int, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    runtime.platforms.remove_platform(principal.user_id, platform_id)
    return Envelope(status="ok", data={"deleted": True, "platform_id": platform_id})
