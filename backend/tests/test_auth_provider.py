"""
Auth provider tests: accounts, sessions and state callbacks.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from stockapp.models import AuthSession
from stockapp.store import (
    AuthError,
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    SessionExpiredError,
    WeakPasswordError,
    new_auth_provider,
)
from stockapp.store import auth_provider
from stockapp.store.auth_provider import hash_token, validate_password_strength
from stockapp.time_utils import utcnow

EMAIL = "stocker@stockapp.test"
PASSWORD = "Stocker123!"


class TestPasswordStrength:

    @pytest.mark.parametrize("password", ["short1!", "alllower123!", "ALLUPPER123!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_are_rejected(self, password):
        with pytest.raises(WeakPasswordError):
            validate_password_strength(password)

    def test_strong_password_passes(self):
        validate_password_strength(PASSWORD)


class TestAccounts:

    def test_create_account_signs_in(self, db_session):
        auth = new_auth_provider()

        event = auth.create_account(EMAIL, PASSWORD, display_name="Stocker")

        assert auth.current_user == event
        assert event.email == EMAIL
        assert event.display_name == "Stocker"
        assert auth.session_token

    def test_duplicate_email_is_rejected(self, db_session):
        new_auth_provider().create_account(EMAIL, PASSWORD)

        with pytest.raises(EmailAlreadyInUseError):
            new_auth_provider().create_account(EMAIL, PASSWORD)

    def test_invalid_email_is_rejected(self, db_session):
        with pytest.raises(InvalidCredentialsError):
            new_auth_provider().create_account("not-an-email", PASSWORD)

    def test_authenticate(self, db_session):
        created = new_auth_provider().create_account(EMAIL, PASSWORD)
        auth = new_auth_provider()

        event = auth.authenticate(EMAIL, PASSWORD)

        assert event.subject_id == created.subject_id
        with pytest.raises(InvalidCredentialsError):
            new_auth_provider().authenticate(EMAIL, "Wrong123!")
        with pytest.raises(InvalidCredentialsError):
            new_auth_provider().authenticate("nobody@stockapp.test", PASSWORD)

    def test_non_string_credentials_are_rejected(self, db_session):
        with pytest.raises(InvalidCredentialsError):
            new_auth_provider().create_account(5, PASSWORD)
        with pytest.raises(WeakPasswordError):
            new_auth_provider().create_account(EMAIL, 12345678)
        with pytest.raises(InvalidCredentialsError):
            new_auth_provider().authenticate({"email": EMAIL}, PASSWORD)


class TestSessions:

    def test_restore_and_sign_out(self, db_session):
        auth = new_auth_provider()
        auth.create_account(EMAIL, PASSWORD)
        token = auth.session_token

        restored = new_auth_provider()
        assert restored.restore(token).email == EMAIL

        auth.sign_out()

        assert auth.current_user is None
        with pytest.raises(SessionExpiredError):
            new_auth_provider().restore(token)

    def test_idle_session_expires(self, db_session):
        auth = new_auth_provider()
        auth.create_account(EMAIL, PASSWORD)
        session = AuthSession.query.filter_by(token_hash=hash_token(auth.session_token)).one()
        session.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        with pytest.raises(SessionExpiredError):
            new_auth_provider().restore(auth.session_token)

        assert db_session.get(AuthSession, session.id).revoked_reason == "Idle timeout"

    def test_new_sign_in_replaces_previous_session(self, db_session):
        auth = new_auth_provider()
        auth.create_account(EMAIL, PASSWORD)
        first_token = auth.session_token

        auth.authenticate(EMAIL, PASSWORD)

        assert auth.session_token != first_token
        with pytest.raises(SessionExpiredError):
            new_auth_provider().restore(first_token)

    def test_database_failure_on_restore_is_auth_error(self, db_session, monkeypatch):
        def unreachable(token):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(auth_provider, "validate_session", unreachable)

        with pytest.raises(AuthError) as excinfo:
            new_auth_provider().restore("any-token")

        assert not isinstance(excinfo.value, SessionExpiredError)


class TestStateCallbacks:

    def test_callback_fires_immediately_and_on_changes(self, db_session):
        auth = new_auth_provider()
        events = []

        subscription = auth.on_auth_state_change(events.append)
        auth.create_account(EMAIL, PASSWORD)
        auth.sign_out()
        subscription.cancel()
        auth.authenticate(EMAIL, PASSWORD)

        assert events[0] is None
        assert events[1].email == EMAIL
        assert events[2] is None
        assert len(events) == 3
