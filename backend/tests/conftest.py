"""
Pytest fixtures for the distro backend tests.

Provides the application over in-memory SQLite, a per-test clean database,
staff accounts for each role, a small catalog and a test client.
"""

import pytest
from distro import create_app
from distro.extensions import db
from distro.models import User, Product, Customer
from distro.models.users import ROLE_ADMIN, ROLE_SECRETARY, ROLE_SALES, ROLE_DRIVER
from distro.services.auth_service import hash_password


TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATIONS_ASYNC': False,
        'NOTIFY_WEBHOOK_URL': '',
        'SCHEMA_CHECK_ON_STARTUP': False,
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
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(session, name, email, role, **kwargs):
    user = User(
        name=name,
        email=email,
        role=role,
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        **kwargs,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Ada Admin", "admin@distro.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def secretary(db_session):
    return _make_user(db_session, "Sam Secretary", "secretary@distro.test", ROLE_SECRETARY)


@pytest.fixture(scope='function')
def sales_rep(db_session):
    return _make_user(db_session, "Rae Sales", "sales@distro.test", ROLE_SALES)


@pytest.fixture(scope='function')
def driver(db_session):
    return _make_user(db_session, "Dan Driver", "driver@distro.test", ROLE_DRIVER)


@pytest.fixture(scope='function')
def products(db_session):
    """Three products: plenty, some, and none in the warehouse."""
    cola = Product(sku="COLA-1", name="Cola", stock=100, price_cents=150, cost_price_cents=100)
    water = Product(sku="WATER-1", name="Water", stock=20, price_cents=100, cost_price_cents=60)
    juice = Product(sku="JUICE-1", name="Juice", stock=0, price_cents=300, cost_price_cents=200)
    db_session.add_all([cola, water, juice])
    db_session.commit()
    return {"cola": cola, "water": water, "juice": juice}


@pytest.fixture(scope='function')
def customer(db_session):
    cust = Customer(name="Corner Shop", phone="555-0100", location="Main St", route="North")
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def headers_for():
    """Helper to create actor headers for a user."""
    def _headers(user) -> dict:
        return {'X-Actor-Id': str(user.id)}
    return _headers
