"""
Initial admin bootstrap tests.

Verifies:
- Repeated runs leave exactly one initial admin
- An auth account left without a user record is repaired
- Failures come back as results and never raise
"""

from stockapp.models import AuthAccount
from stockapp.services.bootstrap_service import ensure_initial_admin
from stockapp.services.identity_service import USERS
from stockapp.store import Filter, new_auth_provider

EMAIL = "boot@stockapp.test"
PASSWORD = "BootPass123!"


def _bootstrap(store, password=PASSWORD):
    return ensure_initial_admin(store, new_auth_provider, email=EMAIL, password=password, name="Boot Admin")


def test_repeated_runs_create_one_admin(store):
    results = [_bootstrap(store) for _ in range(3)]

    assert all(r.success for r in results)
    assert results[0].data["created"] is True
    assert results[1].data["message"] == "Admin user already exists"

    admins = store.query_collection(USERS, [Filter("isInitialAdmin", True)])
    assert len(admins) == 1
    assert admins[0]["role"] == "admin"
    assert admins[0]["email"] == EMAIL
    assert admins[0]["displayName"] == "Boot Admin"
    assert AuthAccount.query.filter_by(email=EMAIL).count() == 1


def test_auth_account_without_record_is_repaired(store):
    auth = new_auth_provider()
    event = auth.create_account(EMAIL, PASSWORD)
    auth.sign_out()

    result = _bootstrap(store)

    assert result.success
    assert result.data["message"] == "Admin user setup completed"
    record = store.get_document(USERS, event.subject_id)
    assert record["role"] == "admin"
    assert record["isInitialAdmin"] is True


def test_existing_non_admin_record_is_promoted(store):
    auth = new_auth_provider()
    event = auth.create_account(EMAIL, PASSWORD)
    auth.sign_out()
    store.set_document(USERS, event.subject_id, {"email": "renamed@stockapp.test", "role": "user"})

    result = _bootstrap(store)

    assert result.success
    assert store.get_document(USERS, event.subject_id)["role"] == "admin"


def test_wrong_password_for_existing_account_is_reported(store):
    auth = new_auth_provider()
    auth.create_account(EMAIL, PASSWORD)
    auth.sign_out()

    result = _bootstrap(store, password="Different123!")

    assert not result.success
    assert result.code == "bootstrap_failed"
    assert store.query_collection(USERS) == []


def test_missing_credentials_are_rejected(store):
    result = ensure_initial_admin(store, new_auth_provider, email="", password="")

    assert not result.success
    assert result.code == "validation"
