from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from account.logging import get_logger
from account.service import tokens
from account.service.errors import (
    AuthorizationError,
    InternalError,
    ServiceUnavailableError,
)
from account.storage.errors import StoreError, StoreTimeout
from account.storage.models import IDToken, RefreshToken, TokenPair, User

logger = get_logger(__name__)


class RevocationStore(Protocol):
    async def set(
        self,
        user_id: str,
        token_id: str,
        ttl: timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> None: ...

    async def delete_one(
        self, user_id: str, token_id: str, *, timeout: Optional[float] = None
    ) -> None: ...

    async def delete_all(
        self, user_id: str, *, timeout: Optional[float] = None
    ) -> int: ...


@dataclass
class TokenServiceConfig:
    store: RevocationStore
    private_key: RSAPrivateKey
    public_key: RSAPublicKey
    refresh_secret: str
    id_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=3)
    store_timeout: Optional[float] = None
    clock: Optional[Callable[[], datetime]] = None


class TokenService:
    """Issues, validates and rotates identity/refresh token pairs.

    Only the revocation store holds state. Rotation is single use: the previous
    refresh token's entry must be deleted before a new pair is minted, so two
    concurrent rotations of the same token cannot both succeed.
    """

    def __init__(self, config: TokenServiceConfig) -> None:
        if not config.refresh_secret:
            raise ValueError("refresh secret must not be empty")
        self.store = config.store
        self._private_key = config.private_key
        self._public_key = config.public_key
        self._refresh_secret = config.refresh_secret
        self.id_token_ttl = config.id_token_ttl
        self.refresh_token_ttl = config.refresh_token_ttl
        self.store_timeout = config.store_timeout
        self.clock: Callable[[], datetime] = config.clock or (
            lambda: datetime.now(timezone.utc)
        )

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.store_timeout if timeout is None else timeout

    async def issue_pair(
        self,
        user: User,
        prev_token_id: str = "",
        *,
        timeout: Optional[float] = None,
    ) -> TokenPair:
        """Mint a new pair for ``user``, consuming ``prev_token_id`` first if given.

        An empty ``prev_token_id`` starts an additional session (signup/signin).
        """
        bound = self._timeout(timeout)
        if prev_token_id:
            try:
                await self.store.delete_one(user.uid, prev_token_id, timeout=bound)
            except StoreError as exc:
                logger.warning(
                    "refresh_token_delete_failed",
                    user_id=user.uid,
                    token_id=prev_token_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise AuthorizationError("invalid refresh token") from exc

        now = self.clock()
        try:
            id_token = tokens.encode_identity(
                user, self._private_key, self.id_token_ttl, now=now
            )
            refresh = tokens.encode_refresh(
                user.uid, self._refresh_secret, self.refresh_token_ttl, now=now
            )
        except tokens.TokenEncodeError as exc:
            logger.error("token_signing_failed", user_id=user.uid, error=str(exc))
            raise InternalError() from exc

        try:
            await self.store.set(
                user.uid, refresh.id, refresh.expires_in, timeout=bound
            )
        except StoreTimeout as exc:
            logger.error(
                "refresh_token_store_timeout",
                user_id=user.uid,
                token_id=refresh.id,
                error=str(exc),
            )
            raise ServiceUnavailableError() from exc
        except StoreError as exc:
            logger.error(
                "refresh_token_store_failed",
                user_id=user.uid,
                token_id=refresh.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise InternalError() from exc

        logger.info(
            "token_pair_issued",
            user_id=user.uid,
            token_id=refresh.id,
            rotated_from=prev_token_id or None,
        )
        return TokenPair(id_token=IDToken(ss=id_token), refresh_token=refresh)

    def validate_identity(self, token: str) -> User:
        """Return the user embedded in a valid identity token; the store is not consulted."""
        try:
            claims = tokens.decode_identity(token, self._public_key)
        except tokens.TokenDecodeError as exc:
            logger.info("id_token_invalid", reason=exc.kind.value, error=exc.message)
            raise AuthorizationError("unable to verify user from identity token") from exc
        return claims.user

    def validate_refresh(self, token: str) -> RefreshToken:
        """Check signature and expiry of a refresh token.

        Revocation is only enforced when the token is consumed by
        :meth:`issue_pair`.
        """
        try:
            claims = tokens.decode_refresh(token, self._refresh_secret)
        except tokens.TokenDecodeError as exc:
            logger.info("refresh_token_invalid", reason=exc.kind.value, error=exc.message)
            raise AuthorizationError("unable to verify user from refresh token") from exc
        return RefreshToken(id=claims.token_id, uid=claims.uid, ss=token)

    async def signout(self, uid: str, *, timeout: Optional[float] = None) -> None:
        """Revoke every refresh token of ``uid``; idempotent."""
        try:
            removed = await self.store.delete_all(uid, timeout=self._timeout(timeout))
        except StoreTimeout as exc:
            logger.error("signout_timeout", user_id=uid, error=str(exc))
            raise ServiceUnavailableError() from exc
        except StoreError as exc:
            logger.error(
                "signout_failed",
                user_id=uid,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise InternalError() from exc
        logger.info("user_signed_out", user_id=uid, revoked=removed)
