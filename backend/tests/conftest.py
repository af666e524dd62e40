"""
Pytest fixtures for stockapp backend tests.

Provides the app on an in-memory SQLite database, a fresh database per test,
document stores for both backends, and signed-in admin/user clients.
"""

import pytest
from stockapp import create_app
from stockapp.extensions import db
from stockapp.services.bootstrap_service import ensure_initial_admin
from stockapp.services.catalog_service import PRODUCT_GROUPS
from stockapp.services.stock_service import PRODUCTS
from stockapp.store import MemoryDocumentStore, SqlDocumentStore, get_store, new_auth_provider

ADMIN_EMAIL = "admin@stockapp.test"
ADMIN_PASSWORD = "AdminPass123!"
USER_EMAIL = "clerk@stockapp.test"
USER_PASSWORD = "ClerkPass123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DOCUMENT_STORE_BACKEND': 'sql',
        'STORE_TRANSACTION_BACKOFF': 0.001,
        'BCRYPT_ROUNDS': 4,
        'AUTO_CREATE_TABLES': False,
        'BOOTSTRAP_ADMIN_ON_START': False,
        'BOOTSTRAP_ADMIN_EMAIL': ADMIN_EMAIL,
        'BOOTSTRAP_ADMIN_PASSWORD': ADMIN_PASSWORD,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    """The app's SQL document store over a clean database."""
    return get_store()


@pytest.fixture(scope='function')
def memory_store():
    return MemoryDocumentStore(backoff_base=0.001)


@pytest.fixture(scope='function', params=['memory', 'sql'])
def any_store(request):
    """Runs a test once per store backend."""
    if request.param == 'memory':
        return MemoryDocumentStore(backoff_base=0.001)
    request.getfixturevalue('db_session')
    return SqlDocumentStore(backoff_base=0.001)


@pytest.fixture
def admin_identity():
    return {"id": "admin-uid", "uid": "admin-uid", "email": ADMIN_EMAIL, "role": "admin"}


@pytest.fixture
def user_identity():
    return {"id": "user-uid", "uid": "user-uid", "email": USER_EMAIL, "role": "user"}


def _seed_product(store, *, stock=50, cartons=5, group_id="grp-1", product_id="prod-1", name="Basmati Rice 5kg"):
    """Write a group and a product directly, bypassing the admin gate."""
    store.set_document(PRODUCT_GROUPS, group_id, {"name": "Grains", "description": ""})
    store.set_document(PRODUCTS, product_id, {
        "name": name,
        "groupId": group_id,
        "mrp": 499,
        "unit": "bag",
        "stock": stock,
        "cartons": cartons,
    })
    return product_id


@pytest.fixture
def seed_product():
    return _seed_product


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seed_admin(store):
    result = ensure_initial_admin(
        store,
        new_auth_provider,
        email=ADMIN_EMAIL,
        password=ADMIN_PASSWORD,
    )
    assert result.success, result.error
    return result


@pytest.fixture(scope='function')
def admin_headers(client, seed_admin):
    token = get_auth_token(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert token
    return auth_headers(token)


@pytest.fixture(scope='function')
def user_headers(client, store):
    resp = client.post('/api/auth/register', json={
        'email': USER_EMAIL,
        'password': USER_PASSWORD,
        'name': 'Counter Clerk',
    })
    assert resp.status_code == 201, resp.json
    return auth_headers(resp.json['token'])
