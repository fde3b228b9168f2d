from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from account.logging import get_logger
from account.storage.errors import ConstraintViolation, EntryNotFound, StoreTimeout
from account.storage.models import User

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_timeout(timeout: Optional[float]) -> None:
    if timeout is not None and timeout <= 0:
        raise StoreTimeout("deadline already passed before store call")


class MemoryTokenStore:
    """In-process revocation store for tests and single-node development.

    Entries expire lazily against ``clock``; an expired entry behaves exactly
    like a missing one.
    """

    def __init__(self, *, clock: Optional[Clock] = None) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock or _utcnow
        # user_id -> token_id -> expires_at
        self._entries: Dict[str, Dict[str, datetime]] = {}
        self._data_lock = threading.RLock()

    def _purge_expired(self, user_id: str) -> Dict[str, datetime]:
        now = self._clock()
        tokens = self._entries.get(user_id, {})
        for token_id in [tid for tid, exp in tokens.items() if exp <= now]:
            del tokens[token_id]
        if not tokens:
            self._entries.pop(user_id, None)
        return tokens

    async def set(
        self,
        user_id: str,
        token_id: str,
        ttl: timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        _check_timeout(timeout)
        with self._data_lock:
            self._entries.setdefault(user_id, {})[token_id] = self._clock() + ttl

    async def delete_one(
        self, user_id: str, token_id: str, *, timeout: Optional[float] = None
    ) -> None:
        _check_timeout(timeout)
        with self._data_lock:
            tokens = self._purge_expired(user_id)
            if token_id not in tokens:
                raise EntryNotFound(user_id, token_id)
            del tokens[token_id]
            if not tokens:
                self._entries.pop(user_id, None)

    async def delete_all(self, user_id: str, *, timeout: Optional[float] = None) -> int:
        _check_timeout(timeout)
        with self._data_lock:
            tokens = self._purge_expired(user_id)
            self._entries.pop(user_id, None)
            return len(tokens)

    def contains(self, user_id: str, token_id: str) -> bool:
        with self._data_lock:
            return token_id in self._purge_expired(user_id)

    def count(self, user_id: str) -> int:
        with self._data_lock:
            return len(self._purge_expired(user_id))


class MemoryUserStore:
    """Dict-backed user repository with the same contract as the Postgres store."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self._data_lock = threading.RLock()

    def _email_taken(self, email: str, *, exclude_uid: Optional[str] = None) -> bool:
        return any(
            u.email == email and u.uid != exclude_uid for u in self.users.values()
        )

    def create(self, user: User) -> User:
        with self._data_lock:
            if self._email_taken(user.email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            self.users[user.uid] = copy.copy(user)
            return copy.copy(user)

    def find_by_id(self, uid: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(uid)
            return copy.copy(user) if user else None

    def find_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return copy.copy(user) if user else None

    def update(self, user: User) -> Optional[User]:
        with self._data_lock:
            existing = self.users.get(user.uid)
            if not existing:
                return None
            if self._email_taken(user.email, exclude_uid=user.uid):
                raise ConstraintViolation("email already exists", {"field": "email"})
            existing.email = user.email
            existing.name = user.name
            existing.website = user.website
            return copy.copy(existing)

    def update_image(self, uid: str, image_url: str) -> Optional[User]:
        with self._data_lock:
            existing = self.users.get(uid)
            if not existing:
                return None
            existing.image_url = image_url
            return copy.copy(existing)


class MemoryImageStore:
    """Profile image objects held in a dict keyed by object name."""

    def __init__(self, base_url: str = "memory://images") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, tuple[bytes, str]] = {}
        self._data_lock = threading.Lock()

    def update_profile(self, obj_name: str, data: bytes, content_type: str) -> str:
        with self._data_lock:
            self.objects[obj_name] = (data, content_type)
        return f"{self.base_url}/{obj_name}"

    def delete_profile(self, obj_name: str) -> None:
        with self._data_lock:
            self.objects.pop(obj_name, None)
