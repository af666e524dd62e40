# Overview: Account sign-up, sign-in and user record management.

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..store import (
    AuthError,
    AuthProvider,
    DocumentNotFoundError,
    DocumentStore,
    StoreError,
)
from ..time_utils import now_iso
from ..validation import ValidationError, optional_str
from .identity_service import USERS, role_for_email
from .results import OperationResult
from .role_policy import ROLE_ADMIN, ROLE_USER, is_admin, validate_role

logger = logging.getLogger(__name__)

# Fields a profile update may not touch; roles change through set_user_role
PROTECTED_PROFILE_FIELDS = {"uid", "email", "role", "isInitialAdmin", "createdAt", "createdBy"}


def _user_record(uid: str, email: str, user_data: dict, role: str) -> dict:
    name = optional_str(user_data, "name").strip()
    record = {
        k: v for k, v in user_data.items()
        if k not in PROTECTED_PROFILE_FIELDS and k not in ("password", "id")
    }
    record.update({
        "uid": uid,
        "email": email,
        "displayName": name,
        "name": name or email,
        "role": role,
        "createdAt": now_iso(),
    })
    return record


def register_user(
    store: DocumentStore,
    auth: AuthProvider,
    email: str,
    password: str,
    user_data: dict,
    *,
    bootstrap_admin_email: Optional[str] = None,
) -> OperationResult:
    """Self sign-up. The new account stays signed in on `auth`; its role is never caller-chosen."""
    try:
        optional_str(user_data, "name")
    except ValidationError as exc:
        return OperationResult.fail(str(exc), "validation")
    try:
        event = auth.create_account(email, password, display_name=user_data.get("name"))
        record = _user_record(event.subject_id, event.email, user_data, role_for_email(event.email, bootstrap_admin_email))
        store.set_document(USERS, event.subject_id, record)
    except (AuthError, StoreError) as exc:
        return OperationResult.fail(str(exc), "auth_error" if isinstance(exc, AuthError) else "store_error")
    return OperationResult.ok(user={"id": event.subject_id, **record})


def create_user_by_admin(
    store: DocumentStore,
    auth_factory: Callable[[], AuthProvider],
    identity: Optional[dict],
    email: str,
    password: str,
    user_data: dict,
) -> OperationResult:
    """Create another account; its session is signed out so the admin's own session is untouched."""
    if not is_admin(identity):
        return OperationResult.fail("Admin role required to create users", "permission_denied")
    try:
        optional_str(user_data, "name")
        role = validate_role(user_data.get("role") or ROLE_USER)
    except ValueError as exc:
        return OperationResult.fail(str(exc), "validation")

    auth = auth_factory()
    try:
        event = auth.create_account(email, password, display_name=user_data.get("name"))
        record = _user_record(event.subject_id, event.email, user_data, role)
        record["createdBy"] = identity.get("id")
        store.set_document(USERS, event.subject_id, record)
    except (AuthError, StoreError) as exc:
        return OperationResult.fail(str(exc), "auth_error" if isinstance(exc, AuthError) else "store_error")
    finally:
        if auth.current_user is not None:
            try:
                auth.sign_out()
            except AuthError as exc:
                logger.warning("Could not sign out session of new user: %s", exc)

    logger.info("user %s created by %s with role %s", event.subject_id, identity.get("id"), role)
    return OperationResult.ok(user={"id": event.subject_id, **record})


def login_user(auth: AuthProvider, email: str, password: str) -> OperationResult:
    try:
        event = auth.authenticate(email, password)
    except AuthError as exc:
        return OperationResult.fail(str(exc), "auth_error")
    return OperationResult.ok(
        user={"id": event.subject_id, "email": event.email, "displayName": event.display_name},
        token=getattr(auth, "session_token", None),
    )


def logout_user(auth: AuthProvider) -> OperationResult:
    try:
        auth.sign_out()
    except AuthError as exc:
        return OperationResult.fail(str(exc), "auth_error")
    return OperationResult.ok()


def check_user_role(store: DocumentStore, user_id: str) -> OperationResult:
    try:
        record = store.get_document(USERS, user_id)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    if record is None:
        return OperationResult.fail("User not found", "not_found")
    return OperationResult.ok(role=record.get("role") or ROLE_USER)


def get_all_users(store: DocumentStore, identity: Optional[dict]) -> OperationResult:
    if not is_admin(identity):
        return OperationResult.fail("Admin role required to list users", "permission_denied")
    try:
        users = store.query_collection(USERS)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(users=users)


def get_user_by_id(store: DocumentStore, identity: Optional[dict], user_id: str) -> OperationResult:
    if not (is_admin(identity) or (identity and identity.get("id") == user_id)):
        return OperationResult.fail("Not allowed to view this user", "permission_denied")
    try:
        record = store.get_document(USERS, user_id)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    if record is None:
        return OperationResult.fail("User not found", "not_found")
    return OperationResult.ok(user=record)


def update_user_profile(
    store: DocumentStore,
    identity: Optional[dict],
    user_id: str,
    user_data: dict,
) -> OperationResult:
    """Admins edit anyone, users edit themselves; last writer wins."""
    if not (is_admin(identity) or (identity and identity.get("id") == user_id)):
        return OperationResult.fail("Not allowed to edit this user", "permission_denied")

    protected = PROTECTED_PROFILE_FIELDS & set(user_data)
    if protected:
        return OperationResult.fail(f"Field not allowed: {', '.join(sorted(protected))}", "validation")

    try:
        store.update_document(USERS, user_id, {**user_data, "lastUpdated": now_iso()})
    except DocumentNotFoundError:
        return OperationResult.fail("User not found", "not_found")
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(id=user_id)


def set_user_role(
    store: DocumentStore,
    identity: Optional[dict],
    user_id: str,
    role: str,
    *,
    bootstrap_admin_email: Optional[str] = None,
) -> OperationResult:
    if not is_admin(identity):
        return OperationResult.fail("Admin role required to change roles", "permission_denied")
    try:
        validate_role(role)
    except ValueError as exc:
        return OperationResult.fail(str(exc), "validation")

    try:
        record = store.get_document(USERS, user_id)
        if record is None:
            return OperationResult.fail("User not found", "not_found")
        if role != ROLE_ADMIN and bootstrap_admin_email and record.get("email") == bootstrap_admin_email:
            return OperationResult.fail("The bootstrap administrator must keep the admin role", "validation")
        store.update_document(USERS, user_id, {"role": role, "lastUpdated": now_iso()})
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")

    logger.info("role of %s set to %s by %s", user_id, role, identity.get("id"))
    return OperationResult.ok(id=user_id, role=role)


def delete_user(store: DocumentStore, identity: Optional[dict], user_id: str) -> OperationResult:
    """
    Delete the user record only.

    The auth account survives; signing in again recreates a default record.
    """
    if not is_admin(identity):
        return OperationResult.fail("Admin role required to delete users", "permission_denied")
    try:
        if store.get_document(USERS, user_id) is None:
            return OperationResult.fail("User not found", "not_found")
        store.delete_document(USERS, user_id)
    except StoreError as exc:
        return OperationResult.fail(str(exc), "store_error")
    return OperationResult.ok(id=user_id)
