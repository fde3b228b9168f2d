from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreError(Exception):
    """A backing store call failed (connection, protocol or server error)."""


class StoreTimeout(StoreError):
    """A backing store call did not complete within its timeout."""


class EntryNotFound(StoreError):
    """The revocation entry to delete was not present."""

    def __init__(self, user_id: str, token_id: str):
        super().__init__(f"no refresh token entry for user {user_id} / token {token_id}")
        self.user_id = user_id
        self.token_id = token_id


__all__ = ["ConstraintViolation", "StoreError", "StoreTimeout", "EntryNotFound"]
