# Overview: Maps auth sessions to application user records and tracks the current identity.

"""
Identity resolution.

An auth event (subject id, email, display name) becomes a full user record
from the `users` collection:

- Existing record: loaded, with the live email (and display name, when the
  auth event carries one) taking precedence over the stored values. The
  bootstrap admin email resolves to admin whatever role is stored.
- No record: a default one is written. Its role is admin only when the
  email equals the configured bootstrap admin email (case-sensitive).
- Store failure: a minimal fallback record is returned instead, so a
  caller never waits on identity because of a transient store error.

IdentityContext owns the "current identity" for one consumer (an HTTP
request, a CLI session, a test). It is created explicitly, attached to an
auth provider with init(), and detached with teardown().
"""

from __future__ import annotations

import logging
from typing import Optional

from ..store import AuthEvent, AuthProvider, DocumentStore, StoreError
from ..time_utils import now_iso
from .role_policy import ROLE_ADMIN, ROLE_USER, is_admin, is_user

logger = logging.getLogger(__name__)

USERS = "users"

LOADING = "loading"
RESOLVED = "resolved"


def role_for_email(email: Optional[str], bootstrap_admin_email: Optional[str]) -> str:
    if bootstrap_admin_email and email == bootstrap_admin_email:
        return ROLE_ADMIN
    return ROLE_USER


def build_default_user(event: AuthEvent, bootstrap_admin_email: Optional[str]) -> dict:
    return {
        "id": event.subject_id,
        "uid": event.subject_id,
        "email": event.email,
        "displayName": event.display_name or "",
        "name": event.display_name or event.email,
        "role": role_for_email(event.email, bootstrap_admin_email),
        "createdAt": now_iso(),
    }


def fallback_identity(event: AuthEvent, bootstrap_admin_email: Optional[str]) -> dict:
    return {
        "id": event.subject_id,
        "uid": event.subject_id,
        "email": event.email,
        "displayName": event.display_name or "",
        "role": role_for_email(event.email, bootstrap_admin_email),
    }


def resolve_identity(
    store: DocumentStore,
    event: AuthEvent,
    *,
    bootstrap_admin_email: Optional[str] = None,
) -> dict:
    """Produce the user record for a signed-in account (never raises StoreError)."""
    try:
        existing = store.get_document(USERS, event.subject_id)
        if existing is not None:
            identity = dict(existing)
            identity["id"] = event.subject_id
            identity["uid"] = event.subject_id
            identity["email"] = event.email
            if event.display_name:
                identity["displayName"] = event.display_name
            if role_for_email(event.email, bootstrap_admin_email) == ROLE_ADMIN and identity.get("role") != ROLE_ADMIN:
                logger.warning("user %s is the bootstrap admin but stored as %r; resolving as admin",
                               event.subject_id, identity.get("role"))
                identity["role"] = ROLE_ADMIN
            return identity

        user = build_default_user(event, bootstrap_admin_email)
        store.set_document(USERS, event.subject_id, user)
        logger.info("created user record %s with role %s", event.subject_id, user["role"])
        return user
    except StoreError as exc:
        logger.warning("could not resolve user %s, using fallback identity: %s", event.subject_id, exc)
        return fallback_identity(event, bootstrap_admin_email)


class IdentityContext:
    """
    Current identity for one consumer of the auth provider.

    state is "loading" until the first auth event arrives, then "resolved"
    for good; identity is the user record, or None when signed out.
    """

    def __init__(self, store: DocumentStore, *, bootstrap_admin_email: Optional[str] = None):
        self._store = store
        self._bootstrap_admin_email = bootstrap_admin_email
        self._auth: Optional[AuthProvider] = None
        self._subscription = None
        self.state = LOADING
        self.identity: Optional[dict] = None

    def init(self, auth: AuthProvider) -> "IdentityContext":
        if self._subscription is not None:
            raise RuntimeError("IdentityContext is already attached to an auth provider")
        self._auth = auth
        self._subscription = auth.on_auth_state_change(self._on_auth_event)
        return self

    def teardown(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.cancel()

    def _on_auth_event(self, event: Optional[AuthEvent]) -> None:
        if event is None:
            self.identity = None
        else:
            self.identity = resolve_identity(
                self._store, event, bootstrap_admin_email=self._bootstrap_admin_email
            )
        self.state = RESOLVED

    @property
    def loading(self) -> bool:
        return self.state == LOADING

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.get("id") if self.identity else None

    @property
    def is_admin(self) -> bool:
        return is_admin(self.identity)

    @property
    def is_user(self) -> bool:
        return is_user(self.identity)

    def logout(self) -> None:
        """Clear the identity immediately, then sign the provider out."""
        self.identity = None
        self.state = RESOLVED
        if self._auth is not None:
            self._auth.sign_out()
