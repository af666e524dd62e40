# Overview: Idempotent creation of the designated administrator account.

"""
Initial admin bootstrap.

Safe to run on every start. Steps:

1. A `users` record with the bootstrap email exists -> nothing to do.
2. Otherwise create the auth account and its admin user record.
3. If the auth account already exists without a user record (left over
   from an earlier partial run), sign in with the bootstrap credentials and
   create or promote the record.

Work happens on a fresh auth provider that is always signed out again, so
no caller's session is replaced. Failures are returned, never raised.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..store import (
    AuthError,
    AuthProvider,
    DocumentStore,
    EmailAlreadyInUseError,
    Filter,
    StoreError,
)
from ..time_utils import now_iso
from .identity_service import USERS
from .results import OperationResult
from .role_policy import ROLE_ADMIN

logger = logging.getLogger(__name__)


def _admin_record(uid: str, email: str, name: str) -> dict:
    return {
        "uid": uid,
        "name": name,
        "displayName": name,
        "email": email,
        "role": ROLE_ADMIN,
        "createdAt": now_iso(),
        "isInitialAdmin": True,
    }


def ensure_initial_admin(
    store: DocumentStore,
    auth_factory: Callable[[], AuthProvider],
    *,
    email: str,
    password: str,
    name: str = "Administrator",
) -> OperationResult:
    if not email or not password:
        return OperationResult.fail("Bootstrap admin email and password must be configured", "validation")

    try:
        existing = store.query_collection(USERS, [Filter("email", email)])
    except StoreError as exc:
        logger.error("Could not look up bootstrap admin: %s", exc)
        return OperationResult.fail(str(exc), "store_error")

    if existing:
        logger.info("Admin user already exists")
        return OperationResult.ok(message="Admin user already exists", created=False)

    auth = auth_factory()
    try:
        try:
            event = auth.create_account(email, password, display_name=name)
            store.set_document(USERS, event.subject_id, _admin_record(event.subject_id, email, name))
            message = "Admin user created successfully"
        except EmailAlreadyInUseError:
            logger.info("Admin exists in auth, checking user record...")
            event = auth.authenticate(email, password)
            record = store.get_document(USERS, event.subject_id)
            if record is None:
                store.set_document(USERS, event.subject_id, _admin_record(event.subject_id, email, name))
                logger.info("Admin user record created")
            elif record.get("role") != ROLE_ADMIN:
                store.update_document(USERS, event.subject_id, {"role": ROLE_ADMIN, "isInitialAdmin": True})
                logger.info("User role updated to admin")
            message = "Admin user setup completed"
    except (AuthError, StoreError) as exc:
        logger.error("Error setting up initial admin: %s", exc)
        return OperationResult.fail(f"Failed to setup admin: {exc}", "bootstrap_failed")
    finally:
        if auth.current_user is not None:
            try:
                auth.sign_out()
            except AuthError as exc:
                logger.warning("Could not sign out bootstrap session: %s", exc)

    logger.info(message)
    return OperationResult.ok(message=message, created=True, uid=event.subject_id)
