from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sessionkit.logging import get_logger
from sessionkit.storage.errors import ConstraintViolation
from sessionkit.storage.models import User, UserSnsPlatform

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        provider TEXT NOT NULL,
        provider_uid TEXT NOT NULL,
        nickname TEXT,
        email TEXT,
        profile_image TEXT,
        role TEXT NOT NULL DEFAULT 'user',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_auth_provider (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        provider TEXT NOT NULL,
        provider_uid TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (provider, provider_uid)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_sns_platform (
        id BIGSERIAL PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        platform_type TEXT NOT NULL,
        account_url TEXT NOT NULL,
        account_name TEXT,
        verified BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (user_id, platform_type, account_url)
    )
    """,
)

_USER_BY_PROVIDER_SQL = """
    SELECT u.* FROM user_auth_provider p
    JOIN app_user u ON u.id = p.user_id
    WHERE p.provider = %s AND p.provider_uid = %s
"""


class PostgresStore:
    """User and profile repository on a psycopg connection pool.

    Every public method borrows one pooled connection; a block that exits
    cleanly commits, one that raises rolls back.
    """

    def __init__(self, dsn: str) -> None:
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        with self.pool.connection() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready", tables=len(_SCHEMA_STATEMENTS))

    def verify_connection(self) -> None:
        with self.pool.connection() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

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
        user = User(
            id=str(uuid.uuid4()),
            provider=provider,
            provider_uid=provider_uid,
            nickname=nickname,
            email=email,
            profile_image=profile_image,
            role=role,
        )
        try:
            with self.pool.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, provider, provider_uid, nickname, email, profile_image, role)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (user.id, provider, provider_uid, nickname, email, profile_image, role),
                )
                conn.execute(
                    "INSERT INTO user_auth_provider (user_id, provider, provider_uid) VALUES (%s, %s, %s)",
                    (user.id, provider, provider_uid),
                )
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "provider identity already linked",
                {"provider": provider, "field": "provider_uid"},
            ) from exc
        return user

    def get_user_by_provider(self, provider: str, provider_uid: str) -> Optional[User]:
        with self.pool.connection() as conn:
            row = conn.execute(_USER_BY_PROVIDER_SQL, (provider, provider_uid)).fetchone()
        return _user_from_row(row) if row else None

    def get_user(self, user_id: str) -> Optional[User]:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT * FROM app_user WHERE id = %s", (user_id,)).fetchone()
        return _user_from_row(row) if row else None

    # sns platforms
    def list_platforms(self, user_id: str) -> List[UserSnsPlatform]:
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM user_sns_platform WHERE user_id = %s ORDER BY id",
                (user_id,),
            ).fetchall()
        return [_platform_from_row(row) for row in rows]

    def get_platform(self, user_id: str, platform_id: int) -> Optional[UserSnsPlatform]:
        with self.pool.connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_sns_platform WHERE id = %s AND user_id = %s",
                (platform_id, user_id),
            ).fetchone()
        return _platform_from_row(row) if row else None

    def create_platform(
        self,
        user_id: str,
        platform_type: str,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> UserSnsPlatform:
        try:
            with self.pool.connection() as conn:
                row = conn.execute(
                    """
                    INSERT INTO user_sns_platform (user_id, platform_type, account_url, account_name)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, platform_type, account_url, account_name),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "platform account already registered",
                {"platform_type": platform_type, "field": "account_url"},
            ) from exc
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("user does not exist", {"user_id": user_id}) from exc
        return _platform_from_row(row)

    def update_platform(
        self,
        user_id: str,
        platform_id: int,
        *,
        account_url: str,
        account_name: Optional[str] = None,
    ) -> Optional[UserSnsPlatform]:
        try:
            with self.pool.connection() as conn:
                row = conn.execute(
                    """
                    UPDATE user_sns_platform
                    SET account_url = %s, account_name = %s, updated_at = now()
                    WHERE id = %s AND user_id = %s
                    RETURNING *
                    """,
                    (account_url, account_name, platform_id, user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "platform account already registered",
                {"platform_id": platform_id, "field": "account_url"},
            ) from exc
        return _platform_from_row(row) if row else None

    def delete_platform(self, user_id: str, platform_id: int) -> bool:
        with self.pool.connection() as conn:
            row = conn.execute(
                "DELETE FROM user_sns_platform WHERE id = %s AND user_id = %s RETURNING id",
                (platform_id, user_id),
            ).fetchone()
        return row is not None


def _user_from_row(row: dict) -> User:
    return User(
        id=str(row["id"]),
        provider=row["provider"],
        provider_uid=str(row["provider_uid"]),
        nickname=row.get("nickname"),
        email=row.get("email"),
        profile_image=row.get("profile_image"),
        role=row.get("role") or "user",
        created_at=row.get("created_at") or datetime.utcnow(),
    )


def _platform_from_row(row: dict) -> UserSnsPlatform:
    return UserSnsPlatform(
        id=int(row["id"]),
        user_id=str(row["user_id"]),
        platform_type=row["platform_type"],
        account_url=row["account_url"],
        account_name=row.get("account_name"),
        verified=bool(row.get("verified", False)),
        created_at=row.get("created_at") or datetime.utcnow(),
        updated_at=row.get("updated_at") or datetime.utcnow(),
    )
