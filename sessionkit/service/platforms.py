from __future__ import annotations

from typing import List, Optional, Protocol

from sessionkit.logging import get_logger
from sessionkit.service.errors import NotFoundError, ValidationError
from sessionkit.storage.errors import ConstraintViolation
from sessionkit.storage.models import UserSnsPlatform


class PlatformStore(Protocol):
    def list_platforms(self, user_id: str) -> List[UserSnsPlatform]: ...

    def get_platform(self, user_id: str, platform_id: int) -> Optional[UserSnsPlatform]: ...

    def create_platform(
        self,
        user_id: str,
        platform_type: str,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> UserSnsPlatform: ...

    def update_platform(
        self,
        user_id: str,
        platform_id: int,
        *,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> Optional[UserSnsPlatform]: ...

    def delete_platform(self, user_id: str, platform_id: int) -> bool: ...


class PlatformService:
    """Social media accounts listed on a user's profile.

    Every call is scoped to the authenticated owner: a platform that belongs
    to someone else is reported exactly like one that does not exist.
    """

    def __init__(self, store: PlatformStore) -> None:
        self.store = store
        self.logger = get_logger(__name__)

    def list_platforms(self, user_id: str) -> List[UserSnsPlatform]:
        platforms = self.store.list_platforms(user_id)
        self.logger.info("platforms_listed", user_id=user_id, count=len(platforms))
        return platforms

    def get_platform(self, user_id: str, platform_id: int) -> UserSnsPlatform:
        platform = self.store.get_platform(user_id, platform_id)
        if platform is None:
            raise _not_found(platform_id)
        return platform

    def add_platform(
        self,
        user_id: str,
        platform_type: str,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> UserSnsPlatform:
        try:
            platform = self.store.create_platform(
                user_id, platform_type, account_url, account_name
            )
        except ConstraintViolation as exc:
            self.logger.warning(
                "platform_add_rejected", user_id=user_id, platform_type=platform_type
            )
            raise ValidationError(exc.message, detail=exc.detail) from exc
        self.logger.info(
            "platform_added",
            user_id=user_id,
            platform_id=platform.id,
            platform_type=platform_type,
        )
        return platform

    def update_platform(
        self,
        user_id: str,
        platform_id: int,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> UserSnsPlatform:
        try:
            platform = self.store.update_platform(
                user_id, platform_id, account_url=account_url, account_name=account_name
            )
        except ConstraintViolation as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        if platform is None:
            raise _not_found(platform_id)
        self.logger.info("platform_updated", user_id=user_id, platform_id=platform_id)
        return platform

    def remove_platform(self, user_id: str, platform_id: int) -> None:
        if not self.store.delete_platform(user_id, platform_id):
            raise _not_found(platform_id)
        self.logger.info("platform_removed", user_id=user_id, platform_id=platform_id)


def _not_found(platform_id: int) -> NotFoundError:
    return NotFoundError("platform not found", detail={"platform_id": platform_id})
