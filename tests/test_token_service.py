"""Unit tests for the session engine.

Tests for:
- Pair issuance and identity validation
- Single-use refresh rotation
- Signout and idempotency
- Tamper detection and uniform authorization errors
- Store failure mapping
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from account.service.errors import (
    AuthorizationError,
    InternalError,
    ServiceUnavailableError,
)
from account.service.token_service import TokenService, TokenServiceConfig
from account.storage.errors import StoreError, StoreTimeout
from account.storage.memory import MemoryTokenStore
from account.storage.models import User

SECRET = "engine-refresh-secret-with-enough-length-0123456789"


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def service(store, rsa_key):
    return TokenService(
        TokenServiceConfig(
            store=store,
            private_key=rsa_key,
            public_key=rsa_key.public_key(),
            refresh_secret=SECRET,
            id_token_ttl=timedelta(minutes=15),
            refresh_token_ttl=timedelta(days=3),
        )
    )


@pytest.fixture
def user():
    return User(
        uid=str(uuid.uuid4()),
        email="bob@bob.com",
        password="$argon2id$v=19$m=65536,t=3,p=4$c2FsdA$aGFzaA",
        name="Bob",
    )


def _flip_last_char(token: str) -> str:
    head, tail = token[:-2], token[-2:]
    flipped = "A" if tail[0] != "A" else "B"
    return head + flipped + tail[1]


class FailingStore:
    """Revocation store stub raising a configured error on every call."""

    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls: list[str] = []

    async def set(self, user_id, token_id, ttl, *, timeout=None):
        self.calls.append("set")
        raise self.exc

    async def delete_one(self, user_id, token_id, *, timeout=None):
        self.calls.append("delete_one")
        raise self.exc

    async def delete_all(self, user_id, *, timeout=None):
        self.calls.append("delete_all")
        raise self.exc


def _service_with(store, rsa_key) -> TokenService:
    return TokenService(
        TokenServiceConfig(
            store=store,
            private_key=rsa_key,
            public_key=rsa_key.public_key(),
            refresh_secret=SECRET,
        )
    )


class TestIssueAndValidate:
    """Tests for issuing pairs and validating identity tokens."""

    async def test_identity_round_trip_without_credential(self, service, user):
        pair = await service.issue_pair(user)
        validated = service.validate_identity(pair.id_token.ss)

        assert validated.uid == user.uid
        assert validated.email == user.email
        assert validated.name == user.name
        assert validated.password == ""
        assert user.password not in pair.id_token.ss
        assert user.password not in pair.refresh_token.ss

    async def test_issue_records_revocation_entry(self, service, store, user):
        pair = await service.issue_pair(user)

        assert store.contains(user.uid, pair.refresh_token.id)

    async def test_refresh_validates_before_expiry(self, service, user):
        pair = await service.issue_pair(user)
        refresh = service.validate_refresh(pair.refresh_token.ss)

        assert refresh.uid == user.uid
        assert refresh.id == pair.refresh_token.id
        assert refresh.ss == pair.refresh_token.ss

    async def test_refresh_rejected_after_expiry(self, service, user):
        service.clock = lambda: datetime.now(timezone.utc) - timedelta(days=4)
        pair = await service.issue_pair(user)

        with pytest.raises(AuthorizationError):
            service.validate_refresh(pair.refresh_token.ss)

    async def test_identity_rejected_after_expiry(self, service, user):
        service.clock = lambda: datetime.now(timezone.utc) - timedelta(hours=1)
        pair = await service.issue_pair(user)

        with pytest.raises(AuthorizationError):
            service.validate_identity(pair.id_token.ss)

    async def test_tampered_tokens_rejected(self, service, user):
        pair = await service.issue_pair(user)

        with pytest.raises(AuthorizationError):
            service.validate_identity(_flip_last_char(pair.id_token.ss))
        with pytest.raises(AuthorizationError):
            service.validate_refresh(_flip_last_char(pair.refresh_token.ss))

    async def test_tokens_not_interchangeable(self, service, user):
        pair = await service.issue_pair(user)

        with pytest.raises(AuthorizationError):
            service.validate_identity(pair.refresh_token.ss)
        with pytest.raises(AuthorizationError):
            service.validate_refresh(pair.id_token.ss)

    async def test_failure_messages_do_not_reveal_cause(self, service, user):
        service.clock = lambda: datetime.now(timezone.utc) - timedelta(hours=1)
        expired = (await service.issue_pair(user)).id_token.ss
        service.clock = lambda: datetime.now(timezone.utc)
        forged = _flip_last_char((await service.issue_pair(user)).id_token.ss)

        messages = set()
        for token in (expired, forged, "garbage"):
            with pytest.raises(AuthorizationError) as excinfo:
                service.validate_identity(token)
            messages.add(excinfo.value.message)
        assert len(messages) == 1

    def test_empty_refresh_secret_refused(self, store, rsa_key):
        with pytest.raises(ValueError):
            TokenService(
                TokenServiceConfig(
                    store=store,
                    private_key=rsa_key,
                    public_key=rsa_key.public_key(),
                    refresh_secret="",
                )
            )


class TestRotation:
    """Tests for single-use refresh rotation."""

    async def test_rotation_issues_new_id_and_consumes_old(self, service, store, user):
        first = await service.issue_pair(user)
        refresh = service.validate_refresh(first.refresh_token.ss)
        second = await service.issue_pair(user, refresh.id)

        assert second.refresh_token.id != first.refresh_token.id
        assert not store.contains(user.uid, first.refresh_token.id)
        assert store.contains(user.uid, second.refresh_token.id)

    async def test_reused_refresh_token_rejected(self, service, user):
        first = await service.issue_pair(user)
        await service.issue_pair(user, first.refresh_token.id)

        with pytest.raises(AuthorizationError):
            await service.issue_pair(user, first.refresh_token.id)

    async def test_concurrent_rotation_only_one_succeeds(self, service, user):
        first = await service.issue_pair(user)

        results = await asyncio.gather(
            service.issue_pair(user, first.refresh_token.id),
            service.issue_pair(user, first.refresh_token.id),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, AuthorizationError)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1

    async def test_unknown_previous_id_rejected_without_minting(self, service, store, user):
        with pytest.raises(AuthorizationError):
            await service.issue_pair(user, str(uuid.uuid4()))

        assert store.count(user.uid) == 0

    async def test_sessions_are_independent(self, service, store, user):
        device_a = await service.issue_pair(user)
        device_b = await service.issue_pair(user)

        rotated = await service.issue_pair(user, device_a.refresh_token.id)

        assert store.contains(user.uid, device_b.refresh_token.id)
        assert store.contains(user.uid, rotated.refresh_token.id)
        assert store.count(user.uid) == 2


class TestSignout:
    """Tests for signing a user out of every session."""

    async def test_signout_blocks_rotation(self, service, user):
        pair = await service.issue_pair(user)
        await service.signout(user.uid)

        refresh = service.validate_refresh(pair.refresh_token.ss)
        with pytest.raises(AuthorizationError):
            await service.issue_pair(user, refresh.id)

    async def test_signout_does_not_block_new_signin(self, service, store, user):
        await service.issue_pair(user)
        await service.signout(user.uid)

        fresh = await service.issue_pair(user)
        assert store.contains(user.uid, fresh.refresh_token.id)

    async def test_signout_idempotent(self, service, user):
        await service.issue_pair(user)
        await service.signout(user.uid)
        await service.signout(user.uid)
        await service.signout(str(uuid.uuid4()))

    async def test_identity_token_survives_signout(self, service, user):
        pair = await service.issue_pair(user)
        await service.signout(user.uid)

        assert service.validate_identity(pair.id_token.ss).uid == user.uid

    async def test_signout_only_affects_that_user(self, service, store, user):
        other = User(uid=str(uuid.uuid4()), email="alice@example.com")
        other_pair = await service.issue_pair(other)
        await service.issue_pair(user)

        await service.signout(user.uid)

        assert store.count(user.uid) == 0
        assert store.contains(other.uid, other_pair.refresh_token.id)


class TestStoreFailures:
    """Tests for mapping store failures onto error kinds."""

    async def test_set_failure_is_internal(self, rsa_key, user):
        store = FailingStore(StoreError("connection refused"))
        service = _service_with(store, rsa_key)

        with pytest.raises(InternalError) as excinfo:
            await service.issue_pair(user)
        assert "connection refused" not in excinfo.value.message

    async def test_set_timeout_is_service_unavailable(self, rsa_key, user):
        service = _service_with(FailingStore(StoreTimeout("slow")), rsa_key)

        with pytest.raises(ServiceUnavailableError):
            await service.issue_pair(user)

    async def test_delete_failure_is_authorization_and_skips_minting(self, rsa_key, user):
        store = FailingStore(StoreError("boom"))
        service = _service_with(store, rsa_key)

        with pytest.raises(AuthorizationError):
            await service.issue_pair(user, str(uuid.uuid4()))
        assert store.calls == ["delete_one"]

    async def test_signout_failure_is_internal(self, rsa_key, user):
        service = _service_with(FailingStore(StoreError("boom")), rsa_key)

        with pytest.raises(InternalError):
            await service.signout(user.uid)

    async def test_non_positive_timeout_rejected_before_call(self, service, store, user):
        with pytest.raises(ServiceUnavailableError):
            await service.issue_pair(user, timeout=0)
        assert store.count(user.uid) == 0
