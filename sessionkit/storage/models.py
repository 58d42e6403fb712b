from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """Internal user identity bound to exactly one provider account."""

    id: str
    provider: str
    provider_uid: str
    nickname: Optional[str] = None
    email: Optional[str] = None
    profile_image: Optional[str] = None
    role: str = "user"
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class UserAuthProvider:
    id: int
    user_id: str
    provider: str
    provider_uid: str
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class ProviderProfile:
    """User info as reported by an identity provider, normalized across providers."""

    provider_uid: str
    nickname: Optional[str] = None
    email: Optional[str] = None
    profile_image: Optional[str] = None


@dataclass
class UserSnsPlatform:
    """A social media account a user has listed on their profile."""

    id: int
    user_id: str
    platform_type: str
    account_url: str
    account_name: Optional[str] = None
    # Never set through the API; reserved for an out-of-band verification step
    verified: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
