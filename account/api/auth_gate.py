from __future__ import annotations

from typing import Callable, Optional, Protocol

from fastapi import Header, Request

from account.logging import bind_request_user, get_logger
from account.service.errors import AuthorizationError
from account.storage.models import User

logger = get_logger(__name__)

# one message for every rejection, whatever the cause
_REJECTED = "provide a valid identity token"


class IdentityValidator(Protocol):
    def validate_identity(self, token: str) -> User: ...


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class AuthorizationGate:
    """FastAPI dependency that binds the caller's identity to the request.

    A missing or non-Bearer header is rejected without consulting the
    validator. On success the user is stored on ``request.state.user`` and
    returned to the handler.
    """

    def __init__(self, validator: Callable[[], IdentityValidator]) -> None:
        self._validator = validator

    async def __call__(
        self,
        request: Request,
        authorization: Optional[str] = Header(None),
    ) -> User:
        token = extract_bearer(authorization)
        if token is None:
            logger.info(
                "authorization_header_rejected",
                path=request.url.path,
                present=authorization is not None,
            )
            raise AuthorizationError(_REJECTED)
        try:
            user = self._validator().validate_identity(token)
        except AuthorizationError as exc:
            raise AuthorizationError(_REJECTED) from exc
        request.state.user = user
        bind_request_user(user.uid)
        return user


def _runtime_tokens() -> IdentityValidator:
    from account.service.runtime import get_runtime

    return get_runtime().tokens


require_user = AuthorizationGate(_runtime_tokens)
