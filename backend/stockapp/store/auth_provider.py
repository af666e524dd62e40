# Overview: Email/password auth provider with hashed session tokens.

"""
Auth provider backed by the application database.

Each provider instance holds at most one signed-in session, the way a
client SDK does: sign-in and sign-up attach a session, sign_out() revokes
it, and listeners registered with on_auth_state_change() hear about every
transition. Requests restore their session from a bearer token with
restore().

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens are 32 random bytes; only their SHA-256 is stored
- 24-hour absolute timeout, 2-hour idle timeout
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import threading
from datetime import timedelta
from typing import Callable, Optional

import bcrypt
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuthAccount, AuthSession
from ..time_utils import utcnow
from .base import (
    AuthError,
    AuthEvent,
    AuthProvider,
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    SessionExpiredError,
    Subscription,
    WeakPasswordError,
)

logger = logging.getLogger(__name__)

# Configuration constants
SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises WeakPasswordError if requirements not met.
    """
    if not password or len(password) < 8:
        raise WeakPasswordError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise WeakPasswordError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise WeakPasswordError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise WeakPasswordError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise WeakPasswordError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = 12) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12 unless overridden)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (ValueError, TypeError):
        return False


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _event_for(account: AuthAccount) -> AuthEvent:
    return AuthEvent(subject_id=account.uid, email=account.email, display_name=account.display_name)


class SqlAuthProvider(AuthProvider):
    """AuthProvider storing accounts and sessions in the application database."""

    def __init__(self, *, bcrypt_rounds: int = 12):
        self._bcrypt_rounds = bcrypt_rounds
        self._lock = threading.Lock()
        self._current: Optional[AuthEvent] = None
        self._token: Optional[str] = None
        self._callbacks: list[Callable[[Optional[AuthEvent]], None]] = []

    @property
    def current_user(self) -> Optional[AuthEvent]:
        return self._current

    @property
    def session_token(self) -> Optional[str]:
        return self._token

    # ------------------------------------------------------------------
    # Sign-up / sign-in / sign-out
    # ------------------------------------------------------------------

    def create_account(self, email: str, password: str, display_name: Optional[str] = None) -> AuthEvent:
        """Create an account and sign it in (the new session replaces any current one)."""
        if not isinstance(email, str) or "@" not in email.strip():
            raise InvalidCredentialsError("A valid email address is required")
        if not isinstance(password, str):
            raise WeakPasswordError("Password must be a string")
        email = email.strip()
        validate_password_strength(password)

        try:
            if AuthAccount.query.filter_by(email=email).first() is not None:
                raise EmailAlreadyInUseError("The email address is already in use by another account")

            account = AuthAccount(
                uid=secrets.token_hex(14),
                email=email,
                display_name=display_name,
                password_hash=hash_password(password, self._bcrypt_rounds),
                is_active=True,
            )
            db.session.add(account)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError(f"Could not create account: {exc}") from exc

        logger.info("created auth account %s", account.uid)
        return self._start_session(account)

    def authenticate(self, email: str, password: str) -> AuthEvent:
        if not isinstance(email, str) or not isinstance(password, str):
            raise InvalidCredentialsError("Invalid email or password")
        email = email.strip()
        try:
            account = AuthAccount.query.filter_by(email=email).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError(f"Could not reach auth backend: {exc}") from exc

        if account is None or not account.is_active or not verify_password(password or "", account.password_hash):
            raise InvalidCredentialsError("Invalid email or password")

        return self._start_session(account)

    def sign_out(self) -> None:
        with self._lock:
            token, self._token = self._token, None
            had_user = self._current is not None
            self._current = None

        if token is not None:
            try:
                revoke_session(token, reason="Sign out")
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise AuthError(f"Could not revoke session: {exc}") from exc

        if had_user:
            self._emit(None)

    def restore(self, token: str) -> AuthEvent:
        """Attach an existing session token; raises SessionExpiredError when it is not valid."""
        try:
            account = validate_session(token)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError(f"Could not reach auth backend: {exc}") from exc
        if account is None:
            raise SessionExpiredError("Invalid or expired token")
        event = _event_for(account)
        with self._lock:
            self._token = token
            self._current = event
        self._emit(event)
        return event

    def on_auth_state_change(self, callback: Callable[[Optional[AuthEvent]], None]) -> Subscription:
        with self._lock:
            self._callbacks.append(callback)
            current = self._current

        def _detach():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        subscription = Subscription(on_cancel=_detach)
        callback(current)
        return subscription

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_session(self, account: AuthAccount) -> AuthEvent:
        token = generate_token()
        now = utcnow()
        try:
            account.last_login_at = now
            db.session.add(AuthSession(
                account_id=account.id,
                token_hash=hash_token(token),
                created_at=now,
                last_used_at=now,
                expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
                is_revoked=False,
            ))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError(f"Could not start session: {exc}") from exc

        event = _event_for(account)
        with self._lock:
            previous = self._token
            self._token = token
            self._current = event
        if previous is not None:
            revoke_session(previous, reason="Replaced by new sign-in")
        self._emit(event)
        return event

    def _emit(self, event: Optional[AuthEvent]) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(event)


def validate_session(token: str) -> Optional[AuthAccount]:
    """
    Return the account behind a session token, or None.

    Returns None if the token is unknown, revoked, past its absolute
    timeout, idle for too long (revoked as a side effect) or its account
    was deactivated. Updates last_used_at on success.
    """
    if not token:
        return None

    now = utcnow()
    session = AuthSession.query.filter_by(token_hash=hash_token(token), is_revoked=False).first()
    if session is None:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "Idle timeout"
        db.session.commit()
        return None

    account = session.account
    if account is None or not account.is_active:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "Account deactivated"
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return account


def revoke_session(token: str, reason: str = "Sign out") -> bool:
    """Revoke a session token. Returns False when it was unknown or already revoked."""
    session = AuthSession.query.filter_by(token_hash=hash_token(token), is_revoked=False).first()
    if session is None:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()
    return True


def cleanup_expired_sessions() -> int:
    """Delete expired or revoked sessions older than 30 days; returns the count deleted."""
    cutoff = utcnow() - timedelta(days=30)
    deleted = AuthSession.query.filter(
        db.or_(
            AuthSession.expires_at < utcnow(),
            AuthSession.is_revoked.is_(True),
        ),
        AuthSession.created_at < cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
