"""Unit tests for the signed token codec.

Tests for:
- Identity token claims and credential exclusion
- Refresh token ids and claims
- Failure kinds: malformed, bad signature, expired
- Algorithm confusion rejection
"""

import base64
import json
import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from cryptography.hazmat.primitives import serialization

from account.service import tokens
from account.service.tokens import TokenDecodeError, TokenErrorKind
from account.storage.models import User

SECRET = "codec-refresh-secret-with-enough-length-0123456789"


@pytest.fixture
def user():
    return User(
        uid=str(uuid.uuid4()),
        email="bob@bob.com",
        password="$argon2id$v=19$stored-hash",
        name="Bob",
        image_url="https://images.example.com/abc",
        website="https://bob.example.com",
    )


def _b64_json(segment: str) -> dict:
    padded = segment + "=" * (-len(segment) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


class TestIdentityTokens:
    """Tests for RS256 identity tokens."""

    def test_round_trip_preserves_public_fields(self, rsa_key, user):
        ss = tokens.encode_identity(user, rsa_key, timedelta(minutes=15))
        claims = tokens.decode_identity(ss, rsa_key.public_key())

        assert claims.user.uid == user.uid
        assert claims.user.email == user.email
        assert claims.user.name == user.name
        assert claims.user.image_url == user.image_url
        assert claims.user.website == user.website
        assert claims.user.password == ""

    def test_credential_never_encoded(self, rsa_key, user):
        ss = tokens.encode_identity(user, rsa_key, timedelta(minutes=15))
        payload = _b64_json(ss.split(".")[1])

        assert "password" not in payload["user"]
        assert user.password not in ss
        assert user.password not in json.dumps(payload)

    def test_claims_carry_issue_and_expiry(self, rsa_key, user):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        ss = tokens.encode_identity(user, rsa_key, timedelta(minutes=15), now=now)
        claims = tokens.decode_identity(ss, rsa_key.public_key())

        assert claims.issued_at == now
        assert claims.expires_at == now + timedelta(minutes=15)

    def test_expired_token_reports_expired(self, rsa_key, user):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        ss = tokens.encode_identity(user, rsa_key, timedelta(minutes=15), now=past)

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_identity(ss, rsa_key.public_key())
        assert excinfo.value.kind == TokenErrorKind.EXPIRED

    def test_foreign_key_reports_invalid_signature(self, rsa_key, user):
        other = tokens.generate_private_key()
        ss = tokens.encode_identity(user, other, timedelta(minutes=15))

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_identity(ss, rsa_key.public_key())
        assert excinfo.value.kind == TokenErrorKind.INVALID_SIGNATURE

    def test_garbage_reports_malformed(self, rsa_key):
        for bad in ["", "not-a-token", "a.b", "a.b.c"]:
            with pytest.raises(TokenDecodeError) as excinfo:
                tokens.decode_identity(bad, rsa_key.public_key())
            assert excinfo.value.kind == TokenErrorKind.MALFORMED

    def test_hs256_identity_token_rejected(self, rsa_key, user):
        now = datetime.now(timezone.utc)
        forged = jwt.encode(
            {
                "user": user.public_dict(),
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_identity(forged, rsa_key.public_key())
        assert excinfo.value.kind == TokenErrorKind.MALFORMED

    def test_missing_user_claim_is_malformed(self, rsa_key):
        now = datetime.now(timezone.utc)
        ss = jwt.encode(
            {
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(minutes=5)).timestamp()),
            },
            rsa_key,
            algorithm="RS256",
        )

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_identity(ss, rsa_key.public_key())
        assert excinfo.value.kind == TokenErrorKind.MALFORMED


class TestRefreshTokens:
    """Tests for HS256 refresh tokens."""

    def test_encode_returns_id_uid_and_lifetime(self, user):
        refresh = tokens.encode_refresh(user.uid, SECRET, timedelta(days=3))

        assert uuid.UUID(refresh.id)
        assert refresh.uid == user.uid
        assert refresh.expires_in == timedelta(days=3)

    def test_every_token_gets_a_fresh_id(self, user):
        ids = {tokens.encode_refresh(user.uid, SECRET, timedelta(days=3)).id for _ in range(5)}
        assert len(ids) == 5

    def test_round_trip(self, user):
        refresh = tokens.encode_refresh(user.uid, SECRET, timedelta(days=3))
        claims = tokens.decode_refresh(refresh.ss, SECRET)

        assert claims.token_id == refresh.id
        assert claims.uid == user.uid

    def test_payload_has_only_session_claims(self, user):
        refresh = tokens.encode_refresh(user.uid, SECRET, timedelta(days=3))
        payload = _b64_json(refresh.ss.split(".")[1])

        assert set(payload) == {"uid", "jti", "iat", "exp"}

    def test_wrong_secret_reports_invalid_signature(self, user):
        refresh = tokens.encode_refresh(user.uid, SECRET, timedelta(days=3))

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_refresh(refresh.ss, SECRET + "-other")
        assert excinfo.value.kind == TokenErrorKind.INVALID_SIGNATURE

    def test_expired_reports_expired(self, user):
        past = datetime.now(timezone.utc) - timedelta(days=4)
        refresh = tokens.encode_refresh(user.uid, SECRET, timedelta(days=3), now=past)

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_refresh(refresh.ss, SECRET)
        assert excinfo.value.kind == TokenErrorKind.EXPIRED

    def test_non_uuid_jti_is_malformed(self, user):
        now = datetime.now(timezone.utc)
        ss = jwt.encode(
            {
                "uid": user.uid,
                "jti": "not-a-uuid",
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(days=1)).timestamp()),
            },
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_refresh(ss, SECRET)
        assert excinfo.value.kind == TokenErrorKind.MALFORMED

    def test_identity_token_not_accepted_as_refresh(self, rsa_key, user):
        id_token = tokens.encode_identity(user, rsa_key, timedelta(minutes=15))

        with pytest.raises(TokenDecodeError) as excinfo:
            tokens.decode_refresh(id_token, SECRET)
        assert excinfo.value.kind == TokenErrorKind.MALFORMED


class TestKeyHelpers:
    def test_pem_round_trip(self, rsa_key):
        private_pem = rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        public_pem = rsa_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

        loaded_private = tokens.load_private_key(private_pem)
        loaded_public = tokens.load_public_key(public_pem)

        assert loaded_private.key_size == rsa_key.key_size
        assert loaded_public.public_numbers() == rsa_key.public_key().public_numbers()
