"""Signed token encoding and decoding.

Identity tokens are RS256 JWTs carrying the public user record; refresh tokens
are HS256 JWTs carrying only the user id and a random token id (``jti``) that
doubles as the revocation handle. Functions here are pure: they never touch the
revocation store and report failures as :class:`TokenDecodeError` with a
``kind`` meant for server-side logs only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from account.storage.models import RefreshToken, User

IDENTITY_ALGORITHM = "RS256"
REFRESH_ALGORITHM = "HS256"
DEFAULT_KEY_BITS = 2048


class TokenErrorKind(str, Enum):
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"


class TokenDecodeError(Exception):
    def __init__(self, kind: TokenErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class TokenEncodeError(Exception):
    """Signing failed, e.g. an unusable key."""


@dataclass(frozen=True)
class IdentityClaims:
    user: User
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    token_id: str
    uid: str
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _encode(payload: Dict[str, Any], key: Any, algorithm: str) -> str:
    try:
        return jwt.encode(payload, key, algorithm=algorithm)
    except (jwt.PyJWTError, TypeError, ValueError) as exc:
        raise TokenEncodeError(f"unable to sign {algorithm} token: {exc}") from exc


def _decode(token: str, key: Any, algorithm: str, required: list[str]) -> Dict[str, Any]:
    if not token or not isinstance(token, str):
        raise TokenDecodeError(TokenErrorKind.MALFORMED, "empty token")
    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as exc:
        raise TokenDecodeError(TokenErrorKind.MALFORMED, f"unreadable header: {exc}") from exc
    # Reject algorithm confusion (e.g. HS256 signed with the RSA public key)
    if header.get("alg") != algorithm:
        raise TokenDecodeError(
            TokenErrorKind.MALFORMED,
            f"unexpected algorithm {header.get('alg')!r}, expected {algorithm}",
        )
    try:
        return jwt.decode(
            token,
            key,
            algorithms=[algorithm],
            options={"require": required},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenDecodeError(TokenErrorKind.EXPIRED, "token has expired") from exc
    except jwt.InvalidSignatureError as exc:
        raise TokenDecodeError(
            TokenErrorKind.INVALID_SIGNATURE, "signature verification failed"
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise TokenDecodeError(TokenErrorKind.MALFORMED, str(exc)) from exc


def encode_identity(
    user: User,
    private_key: rsa.RSAPrivateKey,
    ttl: timedelta,
    *,
    now: Optional[datetime] = None,
) -> str:
    """Sign an identity token carrying ``user.public_dict()`` under the ``user`` claim."""
    issued = now or _utcnow()
    payload = {
        "user": user.public_dict(),
        "iat": _timestamp(issued),
        "exp": _timestamp(issued + ttl),
    }
    return _encode(payload, private_key, IDENTITY_ALGORITHM)


def decode_identity(token: str, public_key: rsa.RSAPublicKey) -> IdentityClaims:
    claims = _decode(token, public_key, IDENTITY_ALGORITHM, ["exp", "iat", "user"])
    user_claim = claims.get("user")
    if not isinstance(user_claim, dict) or not user_claim.get("uid"):
        raise TokenDecodeError(TokenErrorKind.MALFORMED, "user claim missing uid")
    return IdentityClaims(
        user=User.from_public_dict(user_claim),
        issued_at=_from_timestamp(claims["iat"]),
        expires_at=_from_timestamp(claims["exp"]),
    )


def encode_refresh(
    uid: str,
    secret: str,
    ttl: timedelta,
    *,
    now: Optional[datetime] = None,
) -> RefreshToken:
    """Sign a refresh token with a fresh random token id."""
    issued = now or _utcnow()
    token_id = str(uuid.uuid4())
    payload = {
        "uid": uid,
        "jti": token_id,
        "iat": _timestamp(issued),
        "exp": _timestamp(issued + ttl),
    }
    ss = _encode(payload, secret, REFRESH_ALGORITHM)
    return RefreshToken(id=token_id, uid=uid, ss=ss, expires_in=ttl)


def decode_refresh(token: str, secret: str) -> RefreshClaims:
    claims = _decode(token, secret, REFRESH_ALGORITHM, ["exp", "iat", "jti", "uid"])
    try:
        token_id = str(uuid.UUID(str(claims["jti"])))
        uid = str(uuid.UUID(str(claims["uid"])))
    except ValueError as exc:
        raise TokenDecodeError(
            TokenErrorKind.MALFORMED, "jti and uid must be UUIDs"
        ) from exc
    return RefreshClaims(
        token_id=token_id,
        uid=uid,
        issued_at=_from_timestamp(claims["iat"]),
        expires_at=_from_timestamp(claims["exp"]),
    )


def generate_private_key(bits: int = DEFAULT_KEY_BITS) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def load_private_key(pem: bytes) -> rsa.RSAPrivateKey:
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key must be an RSA key")
    return key


def load_public_key(pem: bytes) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("public key must be an RSA key")
    return key
