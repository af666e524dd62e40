# Overview: Pure role predicates gating privileged operations.

"""
Role policy.

Two roles exist: "admin" and "user". The predicates below are the single
place that decides what a resolved identity may do. They are checked by
every privileged service call; route decorators repeat the check only to
answer with HTTP 403 early.
"""

from __future__ import annotations

from typing import Optional

from ..store import PermissionDeniedError

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)


def is_admin(identity: Optional[dict]) -> bool:
    return identity is not None and identity.get("role") == ROLE_ADMIN


def is_user(identity: Optional[dict]) -> bool:
    """True only for the "user" role; an unresolved identity is neither."""
    return identity is not None and identity.get("role") == ROLE_USER


def require_admin(identity: Optional[dict], action: str = "perform this action") -> None:
    if not is_admin(identity):
        raise PermissionDeniedError(f"Admin role required to {action}")


def validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"role must be one of: {', '.join(ROLES)}")
    return role
