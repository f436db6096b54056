"""Tests for the per-request session validator and token versions."""

import threading
import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from vetconnect.core.exceptions import InvalidTokenError
from vetconnect.core.session import Principal, RejectReason, SessionValidator
from vetconnect.core.token_blacklist import InMemoryRevocationStore, NullRevocationStore, RevocationStore
from vetconnect.services.auth_service import AuthService
from vetconnect.services.token_version import TokenVersionStore


class TestTokenVersionStore:

    def test_new_account_starts_at_one(self, db_session, test_user):
        assert TokenVersionStore(db_session).current_version(test_user.id) == 1

    def test_bump_increments_and_persists(self, db_session, test_user):
        versions = TokenVersionStore(db_session)
        assert versions.bump(test_user.id) == 2
        assert versions.bump(test_user.id) == 3
        db_session.commit()

        db_session.refresh(test_user)
        assert test_user.token_version == 3

    def test_unknown_account(self, db_session):
        versions = TokenVersionStore(db_session)
        with pytest.raises(LookupError):
            versions.current_version(uuid.uuid4())
        with pytest.raises(LookupError):
            versions.bump(uuid.uuid4())


class TestSessionValidator:
    """Each step of the authentication state machine."""

    def _token(self, codec, user, **kwargs):
        return codec.issue_access_token(user.id, user.email, user.token_version, **kwargs)

    def test_valid_token_authenticates(self, validator, codec, test_user):
        result = validator.resolve(self._token(codec, test_user))

        assert result.authenticated
        assert result.reason is None
        principal = result.principal
        assert isinstance(principal, Principal)
        assert principal.id == test_user.id
        assert principal.email == test_user.email
        assert principal.role == "USER"
        assert principal.token_version == 1
        assert principal.authorities == ("ROLE_USER",)
        assert not principal.is_admin

    def test_admin_principal(self, validator, codec, admin_user):
        principal = validator.authenticate(self._token(codec, admin_user))
        assert principal.is_admin
        assert principal.has_role("ADMIN")

    @pytest.mark.parametrize("token", [None, ""])
    def test_no_token(self, validator, token):
        result = validator.resolve(token)
        assert not result.authenticated
        assert result.reason == RejectReason.NO_TOKEN

    def test_garbage_token(self, validator):
        assert validator.resolve("garbage").reason == RejectReason.INVALID_TOKEN

    def test_expired_token(self, validator, codec, clock, test_user):
        token = self._token(codec, test_user, ttl=timedelta(minutes=1))
        clock.advance(61)
        assert validator.resolve(token).reason == RejectReason.INVALID_TOKEN

    def test_refresh_token_cannot_authenticate_requests(self, validator, codec, test_user):
        token = codec.issue_refresh_token(test_user.id, test_user.email, test_user.token_version)
        assert validator.resolve(token).reason == RejectReason.INVALID_TOKEN

    def test_individually_revoked_token(self, validator, codec, revocation_store, test_user):
        token = self._token(codec, test_user)
        revocation_store.revoke_token(token, codec.time_until_expiry(token))
        assert validator.resolve(token).reason == RejectReason.TOKEN_REVOKED

    def test_account_wide_revocation(self, validator, codec, revocation_store, test_user):
        """Every earlier token of the account is rejected, revoked individually or not."""
        first = self._token(codec, test_user)
        second = self._token(codec, test_user)
        revocation_store.revoke_token(first, codec.time_until_expiry(first))

        revocation_store.revoke_all_for_account(test_user.id, codec.max_token_lifetime)

        assert validator.resolve(first).reason == RejectReason.TOKEN_REVOKED
        assert validator.resolve(second).reason == RejectReason.ACCOUNT_REVOKED

    def test_account_wide_revocation_lapses(self, validator, codec, clock, revocation_store, test_user):
        token = self._token(codec, test_user, ttl=timedelta(hours=1))
        revocation_store.revoke_all_for_account(test_user.id, timedelta(minutes=10))

        clock.advance(minutes=10)
        assert validator.resolve(token).authenticated

    def test_missing_account(self, validator, codec):
        token = codec.issue_access_token(uuid.uuid4(), "ghost@test.com", 1)
        assert validator.resolve(token).reason == RejectReason.ACCOUNT_UNAVAILABLE

    def test_suspended_account(self, validator, codec, db_session, test_user):
        token = self._token(codec, test_user)
        test_user.is_active = False
        db_session.commit()
        assert validator.resolve(token).reason == RejectReason.ACCOUNT_UNAVAILABLE

    def test_soft_deleted_account(self, validator, codec, db_session, test_user):
        token = self._token(codec, test_user)
        test_user.is_deleted = True
        db_session.commit()
        assert validator.resolve(token).reason == RejectReason.ACCOUNT_UNAVAILABLE

    def test_version_bump_invalidates_token(self, validator, codec, db_session, test_user):
        """Signature and expiry are fine, but the version is stale."""
        token = self._token(codec, test_user)
        TokenVersionStore(db_session).bump(test_user.id)
        db_session.commit()

        result = validator.resolve(token)
        assert result.reason == RejectReason.VERSION_MISMATCH
        assert codec.validate(token)

    def test_token_without_version_rejected(self, validator, codec, test_user):
        token = codec._issue(test_user.id, test_user.email, None, codec.access_ttl, "access")
        assert validator.resolve(token).reason == RejectReason.VERSION_MISMATCH

    def test_unexpected_error_means_anonymous(self, codec, test_user):
        """A collaborator blowing up yields an anonymous result, never an exception."""
        store = MagicMock(spec=RevocationStore)
        store.is_token_revoked.return_value = False
        store.is_all_revoked_for_account.return_value = False
        versions = MagicMock()
        versions.current_version.side_effect = RuntimeError("database gone")
        validator = SessionValidator(codec, store, lambda subject: test_user, versions)

        result = validator.resolve(self._token(codec, test_user))

        assert not result.authenticated
        assert result.reason == RejectReason.ERROR

    def test_unconfigured_store_skips_revocation_checks(self, codec, db_session, test_user):
        validator = SessionValidator(
            codec,
            NullRevocationStore(),
            lambda subject: test_user,
            TokenVersionStore(db_session),
        )
        assert validator.authenticate(self._token(codec, test_user)) is not None

    def test_validation_is_read_only(self, validator, codec, db_session, revocation_store, test_user):
        token = self._token(codec, test_user)
        validator.resolve(token)
        validator.resolve(token)

        assert TokenVersionStore(db_session).current_version(test_user.id) == 1
        assert not revocation_store.is_token_revoked(token)


class TestSessionScenarios:

    def test_logout_then_reuse(self, validator, codec, revocation_store, test_user):
        """A logged-out token dies; a newly issued token for the same account works."""
        token = codec.issue_access_token(test_user.id, test_user.email, 1)
        assert validator.authenticate(token) is not None

        revocation_store.revoke_token(token, codec.time_until_expiry(token))
        assert validator.authenticate(token) is None

        fresh = codec.issue_access_token(test_user.id, test_user.email, 1)
        assert validator.authenticate(fresh) is not None

    def test_password_change_invalidates_all_sessions(self, validator, codec, db_session, test_user):
        """Bumping the version kills every outstanding token at once."""
        t1 = codec.issue_access_token(test_user.id, test_user.email, 1)
        t2 = codec.issue_access_token(test_user.id, test_user.email, 1)
        assert validator.authenticate(t1) is not None
        assert validator.authenticate(t2) is not None

        new_version = TokenVersionStore(db_session).bump(test_user.id)
        db_session.commit()
        assert new_version == 2

        assert validator.authenticate(t1) is None
        assert validator.authenticate(t2) is None

        fresh = codec.issue_access_token(test_user.id, test_user.email, new_version)
        principal = validator.authenticate(fresh)
        assert principal is not None
        assert principal.token_version == 2


class GatedRevocationStore(InMemoryRevocationStore):
    """Holds every claim until ``parties`` callers are waiting, then lets them race."""

    def __init__(self, parties, **kwargs):
        super().__init__(**kwargs)
        self.barrier = threading.Barrier(parties)

    def claim_token(self, token, ttl):
        self.barrier.wait(timeout=5)
        return super().claim_token(token, ttl)


class TestRefreshRotation:

    def test_concurrent_refresh_has_one_winner(self, codec, clock, db_session, test_user):
        store = GatedRevocationStore(2, clock=clock.time)
        refresh_token = codec.issue_refresh_token(test_user.id, test_user.email, test_user.token_version)
        outcomes = []

        def refresh():
            try:
                AuthService.refresh_tokens(db_session, codec, store, refresh_token)
                outcomes.append("ok")
            except InvalidTokenError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=refresh) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "rejected"]
        assert store.is_token_revoked(refresh_token)

    def test_blacklisted_refresh_token_rejected(self, codec, revocation_store, db_session, test_user):
        refresh_token = codec.issue_refresh_token(test_user.id, test_user.email, test_user.token_version)
        revocation_store.revoke_token(refresh_token, 60)

        with pytest.raises(InvalidTokenError):
            AuthService.refresh_tokens(db_session, codec, revocation_store, refresh_token)
