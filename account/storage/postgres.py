from __future__ import annotations

from typing import Any, Dict, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from account.logging import get_logger
from account.storage.errors import ConstraintViolation
from account.storage.models import User


class PostgresUserStore:
    """Postgres-backed user repository."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``users`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    uid UUID PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    image_url TEXT NOT NULL DEFAULT '',
                    website TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            uid=str(row["uid"]),
            email=row["email"],
            password=row.get("password") or "",
            name=row.get("name") or "",
            image_url=row.get("image_url") or "",
            website=row.get("website") or "",
        )

    def create(self, user: User) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (uid, email, password, name, image_url, website)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        user.uid,
                        user.email,
                        user.password,
                        user.name,
                        user.image_url,
                        user.website,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._row_to_user(row)

    def find_by_id(self, uid: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE uid = %s", (uid,)).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def find_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = %s", (email,)
            ).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def update(self, user: User) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE users
                    SET email = %s, name = %s, website = %s, updated_at = now()
                    WHERE uid = %s
                    RETURNING *
                    """,
                    (user.email, user.name, user.website, user.uid),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        if not row:
            return None
        return self._row_to_user(row)

    def update_image(self, uid: str, image_url: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE users SET image_url = %s, updated_at = now() WHERE uid = %s RETURNING *",
                (image_url, uid),
            ).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    def close(self) -> None:
        self.pool.close()
