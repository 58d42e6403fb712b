from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sessionkit.logging import get_logger
from sessionkit.storage.errors import ConstraintViolation
from sessionkit.storage.models import User, UserAuthProvider, UserSnsPlatform

_DATETIME_FIELDS = ("created_at", "updated_at")


def _to_json(record: Any) -> dict:
    data = asdict(record)
    for name in _DATETIME_FIELDS:
        if isinstance(data.get(name), datetime):
            data[name] = data[name].isoformat()
    return data


def _from_json(cls, data: dict):
    values = dict(data)
    for name in _DATETIME_FIELDS:
        if isinstance(values.get(name), str):
            values[name] = datetime.fromisoformat(values[name])
    return cls(**values)


class MemoryStore:
    """Process-local repository with a JSON snapshot in ``fs_root/state``.

    Enforces the same uniqueness rules as the Postgres schema and raises
    ``ConstraintViolation`` where Postgres would raise a unique violation.
    """

    def __init__(self, fs_root: str = "/tmp/sessionkit") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.auth_links: List[UserAuthProvider] = []
        self.platforms: Dict[int, UserSnsPlatform] = {}
        # Reentrant: mutators snapshot state while still holding it
        self._data_lock = threading.RLock()
        self.snapshot_path = Path(fs_root) / "state" / "memory_store.json"
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        if self.snapshot_path.exists():
            self._restore()
        else:
            self._snapshot()

    # users
    def create_user(
        self,
        provider: str,
        provider_uid: str,
        *,
        nickname: Optional[str] = None,
        email: Optional[str] = None,
        profile_image: Optional[str] = None,
        role: str = "user",
    ) -> User:
        with self._data_lock:
            if self._link_for(provider, provider_uid) is not None:
                raise ConstraintViolation(
                    "provider identity already linked",
                    {"provider": provider, "field": "provider_uid"},
                )
            user = User(
                id=str(uuid.uuid4()),
                provider=provider,
                provider_uid=provider_uid,
                nickname=nickname,
                email=email,
                profile_image=profile_image,
                role=role,
            )
            self.users[user.id] = user
            self.auth_links.append(
                UserAuthProvider(
                    id=len(self.auth_links) + 1,
                    user_id=user.id,
                    provider=provider,
                    provider_uid=provider_uid,
                )
            )
            self._snapshot()
            return user

    def _link_for(self, provider: str, provider_uid: str) -> Optional[UserAuthProvider]:
        return next(
            (
                link
                for link in self.auth_links
                if link.provider == provider and link.provider_uid == provider_uid
            ),
            None,
        )

    def get_user_by_provider(self, provider: str, provider_uid: str) -> Optional[User]:
        with self._data_lock:
            link = self._link_for(provider, provider_uid)
            return self.users.get(link.user_id) if link else None

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    # sns platforms
    def list_platforms(self, user_id: str) -> List[UserSnsPlatform]:
        with self._data_lock:
            owned = [p for p in self.platforms.values() if p.user_id == user_id]
        return sorted(owned, key=lambda p: p.id)

    def get_platform(self, user_id: str, platform_id: int) -> Optional[UserSnsPlatform]:
        with self._data_lock:
            platform = self.platforms.get(platform_id)
        if platform is None or platform.user_id != user_id:
            return None
        return platform

    def create_platform(
        self,
        user_id: str,
        platform_type: str,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> UserSnsPlatform:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            self._check_platform_unique(user_id, platform_type, account_url)
            platform = UserSnsPlatform(
                id=max(self.platforms, default=0) + 1,
                user_id=user_id,
                platform_type=platform_type,
                account_url=account_url,
                account_name=account_name,
            )
            self.platforms[platform.id] = platform
            self._snapshot()
            return platform

    def update_platform(
        self,
        user_id: str,
        platform_id: int,
        *,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> Optional[UserSnsPlatform]:
        with self._data_lock:
            platform = self.get_platform(user_id, platform_id)
            if platform is None:
                return None
            self._check_platform_unique(
                user_id, platform.platform_type, account_url, ignore_id=platform_id
            )
            platform.account_url = account_url
            platform.account_name = account_name
            platform.updated_at = datetime.utcnow()
            self._snapshot()
            return platform

    def delete_platform(self, user_id: str, platform_id: int) -> bool:
        with self._data_lock:
            if self.get_platform(user_id, platform_id) is None:
                return False
            del self.platforms[platform_id]
            self._snapshot()
            return True

    def _check_platform_unique(
        self,
        user_id: str,
        platform_type: str,
        account_url: str,
        ignore_id: Optional[int] = None,
    ) -> None:
        for other in self.platforms.values():
            if other.id == ignore_id:
                continue
            if (other.user_id, other.platform_type, other.account_url) == (
                user_id,
                platform_type,
                account_url,
            ):
                raise ConstraintViolation(
                    "platform account already registered",
                    {"platform_type": platform_type, "field": "account_url"},
                )

    # snapshot
    def _snapshot(self) -> None:
        with self._data_lock:
            state = {
                "users": [_to_json(u) for u in self.users.values()],
                "auth_links": [_to_json(link) for link in self.auth_links],
                "platforms": [_to_json(p) for p in self.platforms.values()],
            }
        try:
            self.snapshot_path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"cannot write store snapshot {self.snapshot_path}: {exc}") from exc

    def _restore(self) -> None:
        state = json.loads(self.snapshot_path.read_text())
        with self._data_lock:
            self.users = {u["id"]: _from_json(User, u) for u in state.get("users", [])}
            self.auth_links = [
                _from_json(UserAuthProvider, link) for link in state.get("auth_links", [])
            ]
            self.platforms = {
                p["id"]: _from_json(UserSnsPlatform, p) for p in state.get("platforms", [])
            }
        self.logger.info(
            "memory_store_restored",
            users=len(self.users),
            platforms=len(self.platforms),
        )
